import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from course_portal.errors import InternalError, NotFound
from course_portal.models import Category, FileRecord, Snapshot

logger = logging.getLogger(__name__)


def empty_snapshot() -> Snapshot:
    return {category.value: [] for category in Category}


def find_record(records: list[FileRecord], file_id: str) -> FileRecord | None:
    """Look a record up by id, falling back to its position for legacy index links."""
    for record in records:
        if record.id == file_id:
            return record
    if file_id.isascii() and file_id.isdigit() and int(file_id) < len(records):
        return records[int(file_id)]
    return None


class MetadataStore(ABC):
    """Category -> ordered list of FileRecord, in upload order."""

    def init(self) -> None:
        pass

    def close(self) -> None:
        pass

    @abstractmethod
    def load_all(self) -> Snapshot:
        ...

    @abstractmethod
    def upsert_category(self, category: str) -> None:
        ...

    @abstractmethod
    def append(self, category: str, record: FileRecord) -> None:
        ...

    @abstractmethod
    def remove_by_id(self, category: str, file_id: str) -> FileRecord | None:
        ...

    def remove_by_name(self, category: str, name: str) -> list[FileRecord]:
        raise NotFound("Delete by name is not available for this storage backend")

    def find(self, category: str, file_id: str) -> FileRecord | None:
        records = self.load_all().get(category)
        if records is None:
            return None
        return find_record(records, file_id)


class JsonFileMetadataStore(MetadataStore):
    """Snapshot persisted as one JSON document, rewritten whole on every mutation.

    The load-modify-store cycle runs under a lock, and each write lands in a
    temp file that replaces the real one, so readers never see a partial file.
    Writers in other processes are not coordinated.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def init(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Snapshot:
        snapshot = empty_snapshot()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return snapshot
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable metadata file %s, starting empty: %s", self.path, exc)
            return snapshot

        if not isinstance(raw, dict):
            logger.warning("Metadata file %s is not a JSON object, starting empty", self.path)
            return snapshot
        try:
            for category, items in raw.items():
                snapshot[category] = [FileRecord.model_validate(item) for item in items]
        except (TypeError, ValidationError) as exc:
            logger.warning("Malformed records in %s, starting empty: %s", self.path, exc)
            return empty_snapshot()
        return snapshot

    def _write(self, snapshot: Snapshot) -> None:
        payload = {
            category: [record.model_dump(mode="json", by_alias=True) for record in records]
            for category, records in snapshot.items()
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise InternalError("Error saving file metadata") from exc

    @contextmanager
    def _mutate(self):
        with self._lock:
            snapshot = self._read()
            yield snapshot
            self._write(snapshot)

    def load_all(self) -> Snapshot:
        with self._lock:
            return self._read()

    def upsert_category(self, category: str) -> None:
        with self._lock:
            snapshot = self._read()
            if category not in snapshot:
                snapshot[category] = []
                self._write(snapshot)

    def append(self, category: str, record: FileRecord) -> None:
        with self._mutate() as snapshot:
            snapshot.setdefault(category, []).append(record)

    def remove_by_id(self, category: str, file_id: str) -> FileRecord | None:
        with self._mutate() as snapshot:
            records = snapshot.get(category)
            if records is None:
                return None
            for index, record in enumerate(records):
                if record.id == file_id:
                    return records.pop(index)
        return None


class InMemoryMetadataStore(MetadataStore):
    """Process-lifetime store; ``close`` wipes it."""

    def __init__(self):
        self._files: Snapshot = empty_snapshot()

    def close(self) -> None:
        self._files = empty_snapshot()

    def load_all(self) -> Snapshot:
        return {category: list(records) for category, records in self._files.items()}

    def upsert_category(self, category: str) -> None:
        self._files.setdefault(category, [])

    def append(self, category: str, record: FileRecord) -> None:
        self._files.setdefault(category, []).append(record)

    def remove_by_id(self, category: str, file_id: str) -> FileRecord | None:
        records = self._files.get(category)
        if records is None:
            return None
        for index, record in enumerate(records):
            if record.id == file_id:
                return records.pop(index)
        return None

    def remove_by_name(self, category: str, name: str) -> list[FileRecord]:
        """Remove every record called ``name``; same-named uploads go together."""
        records = self._files.get(category)
        if not records:
            return []
        removed = [record for record in records if record.name == name]
        self._files[category] = [record for record in records if record.name != name]
        return removed
