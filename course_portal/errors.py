"""Error taxonomy shared by the stores, the handler and the HTTP layer.

Every error carries the HTTP status it maps to so the app can render a
``{"success": false, "message": ...}`` body without a lookup table.
"""


class PortalError(Exception):
    status_code = 500
    default_message = "request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(PortalError):
    status_code = 400
    default_message = "invalid request parameters"


class UnsupportedType(PortalError):
    status_code = 400
    default_message = "Only PDF and DOCX files are allowed"


class Unauthorized(PortalError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(PortalError):
    status_code = 404
    default_message = "File not found"


class PayloadTooLarge(PortalError):
    status_code = 413
    default_message = "File exceeds max upload size"


class InternalError(PortalError):
    status_code = 500
    default_message = "Internal server error"
