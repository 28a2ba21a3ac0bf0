import base64
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePath

from course_portal.errors import InternalError, NotFound, PayloadTooLarge
from course_portal.models import DiskContent, InlineContent, file_type_for

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:[^,]*,")


def decode_payload(data: str) -> bytes:
    """Decode base64 text, with or without a ``data:<mime>;base64,`` prefix.

    Raises ValueError (binascii.Error) on malformed input.
    """
    return base64.b64decode(DATA_URL_PREFIX.sub("", data, count=1), validate=True)


@dataclass(frozen=True)
class UploadPayload:
    name: str
    content: bytes
    encoded: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


class ContentStore(ABC):
    max_size_bytes: int | None = None

    def init(self) -> None:
        pass

    @abstractmethod
    def store(self, payload: UploadPayload) -> InlineContent | DiskContent:
        ...

    @abstractmethod
    def retrieve(self, ref: InlineContent | DiskContent) -> bytes:
        ...

    @abstractmethod
    def delete(self, ref: InlineContent | DiskContent) -> None:
        ...


class DiskContentStore(ContentStore):
    def __init__(self, root_dir: str, max_size_bytes: int = 10 * 1024 * 1024):
        self.root = Path(root_dir)
        self.max_size_bytes = max_size_bytes

    def init(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _target_name(self, original_name: str) -> str:
        # only the validated extension survives from the uploader's name
        file_type = file_type_for(original_name)
        return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}.{file_type.value}"

    def _own(self, ref: InlineContent | DiskContent) -> DiskContent:
        if not isinstance(ref, DiskContent):
            raise InternalError("Stored content does not belong to the disk backend")
        return ref

    def store(self, payload: UploadPayload) -> DiskContent:
        if payload.size > self.max_size_bytes:
            raise PayloadTooLarge(f"File exceeds max upload size of {self.max_size_bytes} bytes")

        filename = self._target_name(payload.name)
        target = self.root / filename
        try:
            target.write_bytes(payload.content)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise InternalError("Error uploading file") from exc

        logger.info("Saved %s as %s (%d bytes)", payload.name, target, payload.size)
        return DiskContent(filename=filename, size=payload.size)

    def resolve(self, filename: str) -> Path:
        candidate = (self.root / filename).resolve()
        if candidate.parent != self.root.resolve() or not candidate.is_file():
            raise NotFound("File not found")
        return candidate

    def retrieve(self, ref: InlineContent | DiskContent) -> bytes:
        path = self.resolve(self._own(ref).filename)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise InternalError("Error reading file") from exc

    def delete(self, ref: InlineContent | DiskContent) -> None:
        target = self.root / PurePath(self._own(ref).filename).name
        target.unlink(missing_ok=True)
        logger.info("Removed %s", target)


class InlineContentStore(ContentStore):
    """Keeps bytes inside the record itself as base64 text."""

    def _own(self, ref: InlineContent | DiskContent) -> InlineContent:
        if not isinstance(ref, InlineContent):
            raise InternalError("Stored content does not belong to the inline backend")
        return ref

    def store(self, payload: UploadPayload) -> InlineContent:
        data = payload.encoded or base64.b64encode(payload.content).decode("ascii")
        return InlineContent(data=data)

    def retrieve(self, ref: InlineContent | DiskContent) -> bytes:
        try:
            return decode_payload(self._own(ref).data)
        except ValueError as exc:
            raise InternalError("Stored file data is corrupt") from exc

    def delete(self, ref: InlineContent | DiskContent) -> None:
        self._own(ref)
