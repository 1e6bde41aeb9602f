from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import Protocol

from .types import Attachment, BatchOutcome, FileReport, RemoteFile, UploadResult

logger = logging.getLogger(__name__)


class UploadService(Protocol):
    async def upload(
        self,
        payload: bytes,
        *,
        mime_type: str,
        file_name: str,
        context: str,
    ) -> RemoteFile: ...


def _error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


class UploadCoordinator:
    """Uploads a batch concurrently and joins every result into one outcome."""

    def __init__(self, service: UploadService, *, max_concurrency: int = 0):
        self._service = service
        self._max_concurrency = max_concurrency

    async def _upload_one(
        self,
        attachment: Attachment,
        *,
        context: str,
        semaphore: asyncio.Semaphore | None,
    ) -> UploadResult:
        guard = semaphore if semaphore is not None else contextlib.nullcontext()
        try:
            async with guard:
                remote_file = await self._service.upload(
                    attachment.payload,
                    mime_type=attachment.mime_type,
                    file_name=attachment.file_name,
                    context=context,
                )
        except Exception as exc:
            logger.warning("Upload of '%s' failed: %s", attachment.file_name, exc)
            return UploadResult(file_name=attachment.file_name, error=_error_message(exc))
        if remote_file is None:
            return UploadResult(
                file_name=attachment.file_name,
                error=f"Upload of '{attachment.file_name}' returned no file descriptor.",
            )
        return UploadResult(file_name=attachment.file_name, remote_file=remote_file)

    async def upload_all(
        self,
        attachments: Sequence[Attachment],
        *,
        context: str,
    ) -> BatchOutcome:
        if not attachments:
            return BatchOutcome()

        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency > 0 else None
        results = await asyncio.gather(
            *(
                self._upload_one(attachment, context=context, semaphore=semaphore)
                for attachment in attachments
            )
        )

        outcome = BatchOutcome()
        for attachment, result in zip(attachments, results):
            source_name = attachment.source_name or attachment.file_name
            if result.ok:
                outcome.files.append(result.remote_file)
                outcome.items.append(FileReport(source_name=source_name, status="uploaded"))
                continue
            outcome.errors.append(result.error)
            outcome.items.append(FileReport(source_name=source_name, status="failed", detail=result.error))

        if outcome.errors:
            outcome.error = outcome.errors[-1]
        return outcome
