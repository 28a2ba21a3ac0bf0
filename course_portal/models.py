from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from course_portal.errors import UnsupportedType


class Category(str, Enum):
    MORNING_LAB = "morningLab"
    MORNING_LAB_SOLUTION = "morningLabSolution"
    MORNING_QUIZ = "morningQuiz"
    MORNING_QUIZ_SOLUTION = "morningQuizSolution"
    AFTERNOON_LAB = "afternoonLab"
    AFTERNOON_LAB_SOLUTION = "afternoonLabSolution"
    AFTERNOON_QUIZ = "afternoonQuiz"
    AFTERNOON_QUIZ_SOLUTION = "afternoonQuizSolution"


class FileType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self]


MEDIA_TYPES = {
    FileType.PDF: "application/pdf",
    FileType.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def file_type_for(filename: str) -> FileType:
    """Map a filename to its FileType by lowercase extension."""
    suffix = PurePath(filename).suffix.lower().lstrip(".")
    try:
        return FileType(suffix)
    except ValueError as exc:
        raise UnsupportedType(
            f"{filename} is not a valid file. Only PDF and DOCX files are allowed."
        ) from exc


class InlineContent(BaseModel):
    kind: Literal["inline"] = "inline"
    data: str

    def public_fields(self) -> dict:
        return {"data": self.data}


class DiskContent(BaseModel):
    kind: Literal["disk"] = "disk"
    filename: str
    size: int

    @property
    def path(self) -> str:
        return f"/uploads/{self.filename}"

    def public_fields(self) -> dict:
        return {"filename": self.filename, "path": self.path, "size": self.size}


ContentRef = Annotated[InlineContent | DiskContent, Field(discriminator="kind")]


class FileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: FileType
    content: ContentRef
    uploaded_by: str = Field(alias="uploadedBy")
    uploaded_at: datetime = Field(alias="uploadedAt")

    def public_dict(self) -> dict:
        """Flatten the content reference back into the shape browsers consume."""
        body = self.model_dump(mode="json", by_alias=True, exclude={"content"})
        body.update(self.content.public_fields())
        return body


Snapshot = dict[str, list[FileRecord]]


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class LoginResponse(BaseModel):
    success: bool = True
    message: str = "Login successful"
    token: str
    email: str


class VerifyRequest(BaseModel):
    email: str | None = None
    token: str | None = None


class DeleteRequest(BaseModel):
    email: str | None = None


class DeleteByNameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    category: str | None = None
    file_name: str | None = Field(default=None, alias="fileName")


class InlineFile(BaseModel):
    name: str | None = None
    type: str | None = None
    data: str | None = None


class InlineUploadRequest(BaseModel):
    email: str | None = None
    category: str | None = None
    file: InlineFile | None = None


class SuccessResponse(BaseModel):
    success: bool = True
    message: str
