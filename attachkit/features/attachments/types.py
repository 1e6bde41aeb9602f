from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal, Protocol
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

PipelineStage = Literal[
    "idle",
    "staging",
    "normalizing",
    "classifying",
    "uploading",
    "cleaning_up",
    "done",
]
FileReportStatus = Literal["uploaded", "skipped", "unsupported", "failed"]


class SupportedFileType(Enum):
    """File kinds accepted by the upload server, keyed by canonical MIME type."""

    IMAGE_JP2 = ("image/jp2", ("jp2",))
    IMAGE_PNG = ("image/png", ("png",))
    IMAGE_JPEG = ("image/jpeg", ("jpeg", "jpg"))
    IMAGE_GIF = ("image/gif", ("gif",))
    SPREADSHEET = ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ("xlsx",))
    EXCEL = ("application/vnd.ms-excel", ("xls",))
    RTF = ("application/rtf", ("rtf",))
    WORDPROCESSING = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", ("docx",))
    PDF = ("application/pdf", ("pdf",))
    MSWORD = ("application/msword", ("doc",))
    CSV = ("text/csv", ("csv",))
    OPENDOCUMENT_TEXT = ("application/vnd.oasis.opendocument.text", ("odt",))
    ZIP = ("application/zip", ("zip",))
    VIDEO_MP4 = ("video/mp4", ("mp4",))
    VIDEO_QUICKTIME = ("video/quicktime", ("mov",))
    VIDEO_WEBM = ("video/webm", ("webm",))

    def __init__(self, mime_type: str, extensions: tuple[str, ...]) -> None:
        self.mime_type = mime_type
        self.extensions = extensions


class ScopedAccess(Protocol):
    """Access grant some sources require around every read (e.g. security-scoped documents)."""

    def begin_access(self) -> bool: ...

    def end_access(self) -> None: ...


@dataclass(frozen=True)
class LocalFileRef:
    """Source byte stream handed over by a picker, camera or file system.

    Exactly one of ``path`` or ``payload`` is set. Camera captures arrive as
    in-memory JPEG bytes and are staged under a generated name.
    """

    filename: str
    path: Path | None = None
    payload: bytes | None = field(default=None, repr=False)
    access: ScopedAccess | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_path(cls, path: str | Path, *, access: ScopedAccess | None = None) -> LocalFileRef:
        resolved = Path(path)
        return cls(filename=resolved.name, path=resolved, access=access)

    @classmethod
    def from_capture(cls, payload: bytes, *, extension: str = "jpg") -> LocalFileRef:
        return cls(filename=f"{uuid4()}.{extension.lstrip('.')}", payload=payload)


@dataclass(frozen=True)
class StagedFile:
    path: Path
    source_name: str

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        return self.path.stem

    @property
    def extension(self) -> str:
        return self.path.suffix.lstrip(".").lower()

    def replaced_by(self, path: Path) -> StagedFile:
        return StagedFile(path=path, source_name=self.source_name)


@dataclass
class StagingHandle:
    run_id: str
    root: Path
    closed: bool = False


class Attachment(BaseModel):
    payload: bytes = Field(repr=False)
    file_name: str
    mime_type: str
    source_name: str | None = None


class RemoteFile(BaseModel):
    """Descriptor returned by the upload server; unknown fields are preserved."""

    model_config = ConfigDict(extra="allow")

    id: str
    file_name: str | None = None
    mime_type: str | None = None
    url: str | None = None


class UploadResult(BaseModel):
    file_name: str
    remote_file: RemoteFile | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.remote_file is not None


class FileReport(BaseModel):
    source_name: str
    status: FileReportStatus
    detail: str | None = None


class BatchOutcome(BaseModel):
    files: list[RemoteFile] = Field(default_factory=list)
    error: str | None = None
    errors: list[str] = Field(default_factory=list)
    items: list[FileReport] = Field(default_factory=list)


class SupportedTypeEntry(BaseModel):
    name: str
    mime_type: str
    extensions: list[str]


class SupportedTypesResponse(BaseModel):
    types: list[SupportedTypeEntry]
    extensions: list[str]
