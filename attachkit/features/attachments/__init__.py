from .errors import (
    AttachmentsDomainError,
    CopyError,
    PipelineBusyError,
    StagingError,
    TranscodeError,
    UploadError,
)
from .http_upload import HttpUploadService
from .normalizer import Normalizer
from .pipeline import AttachmentPipeline
from .registry import classify, classify_filename, extensions_for_all, supported_types_response
from .staging import StagingArea, resolve_storage_path
from .types import (
    Attachment,
    BatchOutcome,
    FileReport,
    LocalFileRef,
    RemoteFile,
    ScopedAccess,
    StagedFile,
    StagingHandle,
    SupportedFileType,
    UploadResult,
)
from .uploads import UploadCoordinator, UploadService

__all__ = [
    "Attachment",
    "AttachmentPipeline",
    "AttachmentsDomainError",
    "BatchOutcome",
    "CopyError",
    "FileReport",
    "HttpUploadService",
    "LocalFileRef",
    "Normalizer",
    "PipelineBusyError",
    "RemoteFile",
    "ScopedAccess",
    "StagedFile",
    "StagingArea",
    "StagingError",
    "StagingHandle",
    "SupportedFileType",
    "TranscodeError",
    "UploadCoordinator",
    "UploadError",
    "UploadResult",
    "UploadService",
    "classify",
    "classify_filename",
    "extensions_for_all",
    "resolve_storage_path",
    "supported_types_response",
]
