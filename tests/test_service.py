import pytest

from course_portal.auth import CredentialGate
from course_portal.errors import InternalError, InvalidInput, NotFound, Unauthorized, UnsupportedType
from course_portal.repository import InMemoryMetadataStore, JsonFileMetadataStore
from course_portal.service import FileService, next_file_id
from course_portal.storage import DiskContentStore, InlineContentStore, UploadPayload

TA_EMAIL = "bcsf23m002@pucit.edu.pk"


class FailingMetadataStore(InMemoryMetadataStore):
    def append(self, category, record):
        raise InternalError("Error saving file metadata")


def disk_service(tmp_path, metadata=None):
    content = DiskContentStore(str(tmp_path / "uploads"))
    content.init()
    metadata = metadata or JsonFileMetadataStore(str(tmp_path / "files.json"))
    metadata.init()
    return FileService(CredentialGate("pw"), metadata, content)


def test_next_file_id_skips_taken_ids(monkeypatch):
    monkeypatch.setattr("course_portal.service.time.time", lambda: 1700000000.0)
    assert next_file_id(set()) == "1700000000000"
    assert next_file_id({"1700000000000", "1700000000001"}) == "1700000000002"


def test_same_millisecond_uploads_get_distinct_ids(tmp_path, monkeypatch):
    monkeypatch.setattr("course_portal.service.time.time", lambda: 1700000000.0)
    service = disk_service(tmp_path)
    first = service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"a"))
    second = service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"b"))
    other = service.upload(email=TA_EMAIL, category="afternoonLab", payload=UploadPayload("a.pdf", b"c"))

    assert first.id == "1700000000000"
    assert second.id == "1700000000001"
    assert other.id == "1700000000000"


def test_failed_metadata_write_removes_stored_bytes(tmp_path):
    service = disk_service(tmp_path, metadata=FailingMetadataStore())
    with pytest.raises(InternalError):
        service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"bytes"))
    assert list((tmp_path / "uploads").iterdir()) == []


@pytest.mark.parametrize(
    "email,category,payload,error",
    [
        ("random@pucit.edu.pk", "morningLab", UploadPayload("a.pdf", b"x"), Unauthorized),
        (TA_EMAIL, "morningLab", None, InvalidInput),
        (TA_EMAIL, "morningLab", UploadPayload("", b"x"), InvalidInput),
        (TA_EMAIL, "morningLab", UploadPayload("a.pdf", b""), InvalidInput),
        (TA_EMAIL, "morningLab", UploadPayload("a.exe", b"x"), UnsupportedType),
        (TA_EMAIL, None, UploadPayload("a.pdf", b"x"), InvalidInput),
        (TA_EMAIL, "nightLab", UploadPayload("a.pdf", b"x"), InvalidInput),
    ],
)
def test_upload_validation_writes_nothing(tmp_path, email, category, payload, error):
    service = disk_service(tmp_path)
    with pytest.raises(error):
        service.upload(email=email, category=category, payload=payload)
    assert list((tmp_path / "uploads").iterdir()) == []
    assert not (tmp_path / "files.json").exists()


def test_unlisted_email_is_checked_before_file_payload(tmp_path):
    service = disk_service(tmp_path)
    with pytest.raises(Unauthorized):
        service.upload(email="random@pucit.edu.pk", category="morningLab", payload=None)


def test_download_and_delete_round_trip(tmp_path):
    service = disk_service(tmp_path)
    record = service.upload(email=TA_EMAIL, category="morningQuiz", payload=UploadPayload("q1.docx", b"quiz"))

    found, body = service.download("morningQuiz", record.id)
    assert found == record
    assert body == b"quiz"

    with pytest.raises(Unauthorized):
        service.delete(email="random@pucit.edu.pk", category="morningQuiz", file_id=record.id)
    assert service.delete(email=TA_EMAIL, category="morningQuiz", file_id=record.id) == record

    assert service.list_files()["morningQuiz"] == []
    with pytest.raises(NotFound):
        service.download("morningQuiz", record.id)
    with pytest.raises(NotFound):
        service.delete(email=TA_EMAIL, category="morningQuiz", file_id=record.id)
    assert list((tmp_path / "uploads").iterdir()) == []


def test_download_unknown_category_is_not_found(tmp_path):
    with pytest.raises(NotFound):
        disk_service(tmp_path).download("eveningLab", "1")


def test_delete_by_name_needs_memory_backend(tmp_path):
    service = disk_service(tmp_path)
    service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"x"))
    with pytest.raises(NotFound):
        service.delete_by_name(email=TA_EMAIL, category="morningLab", name="a.pdf")


def test_delete_by_name_on_memory_backend():
    service = FileService(CredentialGate("pw"), InMemoryMetadataStore(), InlineContentStore())
    service.upload(email=TA_EMAIL, category="afternoonLab", payload=UploadPayload("a.pdf", b"1"))
    service.upload(email=TA_EMAIL, category="afternoonLab", payload=UploadPayload("a.pdf", b"2"))

    with pytest.raises(InvalidInput):
        service.delete_by_name(email=TA_EMAIL, category="afternoonLab", name="")
    removed = service.delete_by_name(email=TA_EMAIL, category="afternoonLab", name="a.pdf")
    assert len(removed) == 2
    assert service.list_files()["afternoonLab"] == []
    with pytest.raises(NotFound):
        service.delete_by_name(email=TA_EMAIL, category="afternoonLab", name="a.pdf")


def test_delete_by_name_on_disk_keeps_record_and_bytes(tmp_path):
    service = disk_service(tmp_path)
    record = service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"x"))
    with pytest.raises(NotFound):
        service.delete_by_name(email=TA_EMAIL, category="morningLab", name="a.pdf")
    assert service.list_files()["morningLab"] == [record]
    assert service.download("morningLab", record.id)[1] == b"x"


def test_upload_writes_metadata_once(tmp_path, monkeypatch):
    metadata = JsonFileMetadataStore(str(tmp_path / "files.json"))
    service = disk_service(tmp_path, metadata=metadata)
    writes = []
    original_write = metadata._write
    monkeypatch.setattr(metadata, "_write", lambda snapshot: writes.append(1) or original_write(snapshot))

    service.upload(email=TA_EMAIL, category="morningLab", payload=UploadPayload("a.pdf", b"x"))
    assert len(writes) == 1
