"""Upload, list, download and delete orchestration.

The service is stateless between requests: every call goes back to the
metadata store, and the stores are the only place state lives.
"""
import logging
import time
from datetime import datetime, timezone

from course_portal.auth import CredentialGate
from course_portal.errors import InvalidInput, NotFound
from course_portal.models import Category, FileRecord, Snapshot, file_type_for
from course_portal.repository import MetadataStore
from course_portal.storage import ContentStore, UploadPayload

logger = logging.getLogger(__name__)


def next_file_id(existing_ids: set[str]) -> str:
    candidate = int(time.time() * 1000)
    while str(candidate) in existing_ids:
        candidate += 1
    return str(candidate)


class FileService:
    def __init__(self, gate: CredentialGate, metadata: MetadataStore, content: ContentStore):
        self.gate = gate
        self.metadata = metadata
        self.content = content

    @staticmethod
    def _upload_category(category: str | None) -> str:
        if not category:
            raise InvalidInput("category is required")
        try:
            return Category(category).value
        except ValueError as exc:
            raise InvalidInput(f"Unknown category: {category}") from exc

    @staticmethod
    def _existing_category(category: str | None) -> str:
        try:
            return Category(category).value
        except ValueError as exc:
            raise NotFound("Category not found") from exc

    def upload(self, *, email: str | None, category: str | None, payload: UploadPayload | None) -> FileRecord:
        self.gate.require_authorized(email)
        if payload is None or not payload.name or not payload.content:
            raise InvalidInput("File data required")
        file_type = file_type_for(payload.name)
        category = self._upload_category(category)

        ref = self.content.store(payload)
        try:
            existing_ids = {record.id for record in self.metadata.load_all()[category]}
            record = FileRecord(
                id=next_file_id(existing_ids),
                name=payload.name,
                type=file_type,
                content=ref,
                uploaded_by=email,
                uploaded_at=datetime.now(timezone.utc),
            )
            self.metadata.append(category, record)
        except Exception:
            logger.warning("Metadata write failed for %s, removing stored content", payload.name)
            try:
                self.content.delete(ref)
            except OSError:
                logger.exception("Could not remove orphaned content for %s", payload.name)
            raise

        logger.info("%s uploaded %s to %s as %s", email, record.name, category, record.id)
        return record

    def list_files(self) -> Snapshot:
        return self.metadata.load_all()

    def download(self, category: str, file_id: str) -> tuple[FileRecord, bytes]:
        category = self._existing_category(category)
        record = self.metadata.find(category, file_id)
        if record is None:
            raise NotFound("File not found")
        return record, self.content.retrieve(record.content)

    def delete(self, *, email: str | None, category: str, file_id: str) -> FileRecord:
        """Remove exactly one record, matched by id."""
        self.gate.require_authorized(email)
        category = self._existing_category(category)
        record = next((r for r in self.metadata.load_all()[category] if r.id == file_id), None)
        if record is None:
            raise NotFound("File not found")

        self.content.delete(record.content)
        removed = self.metadata.remove_by_id(category, file_id)
        if removed is None:
            raise NotFound("File not found")
        logger.info("%s deleted %s (%s) from %s", email, removed.name, removed.id, category)
        return removed

    def delete_by_name(self, *, email: str | None, category: str | None, name: str | None) -> list[FileRecord]:
        """Remove every record in ``category`` called ``name``.

        Only the in-memory backend supports this; the others raise NotFound.
        Unlike ``delete`` it takes out all same-named uploads at once.
        """
        self.gate.require_authorized(email)
        category = self._existing_category(category)
        if not name:
            raise InvalidInput("fileName is required")

        removed = self.metadata.remove_by_name(category, name)
        if not removed:
            raise NotFound("File not found")
        for record in removed:
            self.content.delete(record.content)
        logger.info("%s deleted %d file(s) named %s from %s", email, len(removed), name, category)
        return removed
