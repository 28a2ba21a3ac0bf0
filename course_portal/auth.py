import base64
import hmac
import logging
import time
from dataclasses import dataclass

from course_portal.errors import InvalidInput, Unauthorized

logger = logging.getLogger(__name__)

AUTHORIZED_USERS = frozenset(
    {
        "bcsf23m020@pucit.edu.pk",
        "bcsf23m002@pucit.edu.pk",
        "bcsf23m018@pucit.edu.pk",
    }
)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    email: str


class CredentialGate:
    """Allow-list plus shared password check.

    Tokens are opaque to the server: ``verify`` only checks that one was
    presented alongside an allow-listed email. There is no session store,
    expiry or revocation; logging out means the client drops its token.
    """

    def __init__(self, password: str, authorized_users: frozenset[str] = AUTHORIZED_USERS):
        self.password = password.encode("utf-8")
        self.authorized_users = frozenset(authorized_users)

    def is_authorized(self, email: str | None) -> bool:
        return bool(email) and email in self.authorized_users

    def require_authorized(self, email: str | None) -> None:
        if not self.is_authorized(email):
            raise Unauthorized()

    def _issue(self, email: str) -> str:
        raw = f"{email}:{int(time.time() * 1000)}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def login(self, email: str | None, password: str | None) -> IssuedToken:
        if not email or not password:
            raise InvalidInput("Email and password are required")
        if not self.is_authorized(email):
            logger.warning("Rejected login for non allow-listed email %s", email)
            raise Unauthorized("This email is not authorized for TA access")
        if not hmac.compare_digest(self.password, password.encode("utf-8")):
            logger.warning("Rejected login for %s: invalid password", email)
            raise Unauthorized("Invalid password")

        logger.info("Issued token for %s", email)
        return IssuedToken(token=self._issue(email), email=email)

    def verify(self, email: str | None, token: str | None) -> bool:
        return self.is_authorized(email) and bool(token)
