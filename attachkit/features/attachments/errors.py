from __future__ import annotations


class AttachmentsDomainError(Exception):
    """Base exception for attachment staging, normalization and upload."""


class StagingError(AttachmentsDomainError):
    pass


class CopyError(AttachmentsDomainError):
    pass


class TranscodeError(AttachmentsDomainError):
    pass


class UploadError(AttachmentsDomainError):
    pass


class PipelineBusyError(AttachmentsDomainError):
    pass
