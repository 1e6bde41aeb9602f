from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Awaitable, Callable

from attachkit.core.config import Settings, get_settings

from .errors import CopyError, PipelineBusyError, StagingError, TranscodeError
from .normalizer import Normalizer
from .registry import classify
from .staging import StagingArea
from .types import (
    Attachment,
    BatchOutcome,
    FileReport,
    LocalFileRef,
    PipelineStage,
    StagedFile,
    StagingHandle,
)
from .uploads import UploadCoordinator, UploadService

_STATUS_CALLBACK = Callable[[str, str], Awaitable[None]]
logger = logging.getLogger(__name__)


async def _emit_status(callback: _STATUS_CALLBACK | None, stage: str, message: str) -> None:
    if callback is None:
        return
    await callback(stage, message)


def _read_attachment(staged: StagedFile) -> Attachment | None:
    file_type = classify(staged.extension)
    if file_type is None:
        return None
    return Attachment(
        payload=staged.path.read_bytes(),
        file_name=staged.stem,
        mime_type=file_type.mime_type,
        source_name=staged.source_name,
    )


class AttachmentPipeline:
    """Stages, normalizes, classifies and uploads one batch of picked files at a time."""

    def __init__(
        self,
        upload_service: UploadService,
        *,
        settings: Settings | None = None,
        staging: StagingArea | None = None,
        normalizer: Normalizer | None = None,
        coordinator: UploadCoordinator | None = None,
    ):
        self._settings = settings or get_settings()
        self._staging = staging or StagingArea(settings=self._settings)
        self._normalizer = normalizer or Normalizer(settings=self._settings)
        self._coordinator = coordinator or UploadCoordinator(
            upload_service,
            max_concurrency=self._settings.max_concurrent_uploads,
        )
        self._state: PipelineStage = "idle"

    @property
    def state(self) -> PipelineStage:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state not in {"idle", "done"}

    async def _transition(self, stage: PipelineStage, message: str, on_status: _STATUS_CALLBACK | None) -> None:
        self._state = stage
        await _emit_status(on_status, stage, message)

    async def run(
        self,
        refs: Sequence[LocalFileRef],
        *,
        context: str | None = None,
        on_status: _STATUS_CALLBACK | None = None,
    ) -> BatchOutcome:
        if self.busy:
            raise PipelineBusyError("An attachment batch is already in progress.")
        self._state = "staging"
        try:
            return await self._run(refs, context=context or self._settings.upload_context, on_status=on_status)
        finally:
            self._state = "done"

    async def _run(
        self,
        refs: Sequence[LocalFileRef],
        *,
        context: str,
        on_status: _STATUS_CALLBACK | None,
    ) -> BatchOutcome:
        await _emit_status(on_status, "staging", f"Staging {len(refs)} file(s).")
        try:
            handle = await asyncio.to_thread(self._staging.open)
        except StagingError as exc:
            logger.error("Attachment batch aborted: %s", exc)
            return BatchOutcome(error=str(exc), errors=[str(exc)])

        reports: list[FileReport] = []
        errors: list[str] = []
        try:
            staged = await self._stage_all(handle, refs, reports)

            await self._transition("normalizing", "Normalizing staged files.", on_status)
            normalized = await self._normalize_all(handle, staged, reports, errors)

            await self._transition("classifying", "Classifying normalized files.", on_status)
            attachments = await self._classify_all(normalized, reports)

            await self._transition("uploading", f"Uploading {len(attachments)} file(s).", on_status)
            outcome = await self._coordinator.upload_all(attachments, context=context)
        finally:
            try:
                await self._transition("cleaning_up", "Removing staged files.", on_status)
            finally:
                await asyncio.to_thread(self._cleanup, handle)

        outcome.items = reports + outcome.items
        outcome.errors = errors + outcome.errors
        if outcome.errors:
            outcome.error = outcome.errors[-1]
        await _emit_status(on_status, "done", "Attachment batch completed.")
        return outcome

    def _cleanup(self, handle: StagingHandle) -> None:
        self._staging.close(handle)
        self._normalizer.discard_transcodes(handle.run_id)

    async def _stage_all(
        self,
        handle: StagingHandle,
        refs: Sequence[LocalFileRef],
        reports: list[FileReport],
    ) -> list[StagedFile]:
        staged: list[StagedFile] = []
        seen: set[str] = set()
        for ref in refs:
            try:
                item = await asyncio.to_thread(self._staging.stage, handle, ref)
            except CopyError as exc:
                logger.warning("Skipping '%s': %s", ref.filename, exc)
                reports.append(FileReport(source_name=ref.filename, status="skipped", detail=str(exc)))
                continue
            if item.name in seen:
                continue
            seen.add(item.name)
            staged.append(item)
        return staged

    async def _normalize_all(
        self,
        handle: StagingHandle,
        staged: list[StagedFile],
        reports: list[FileReport],
        errors: list[str],
    ) -> list[StagedFile]:
        images: list[StagedFile] = []
        # "a.png" must not normalize onto a staged "a.jpg" or onto another image's output.
        reserved = {item.name for item in staged}
        seen: set[Path] = set()
        for item in staged:
            others = (reserved - {item.name}) | {image.name for image in images}
            try:
                image = await asyncio.to_thread(self._normalizer.normalize_image, item, reserved=others)
            except (OSError, ValueError) as exc:
                logger.warning("Could not normalize '%s': %s", item.source_name, exc)
                reports.append(FileReport(source_name=item.source_name, status="failed", detail=str(exc)))
                errors.append(str(exc))
                continue
            if image.path in seen:
                logger.warning("Skipping '%s': normalized output %s is already taken", item.source_name, image.path)
                reports.append(
                    FileReport(
                        source_name=item.source_name,
                        status="skipped",
                        detail=f"Normalized name '{image.name}' collides with another attachment.",
                    )
                )
                continue
            seen.add(image.path)
            images.append(image)

        async def _video(item: StagedFile) -> StagedFile | None:
            try:
                result = await self._normalizer.normalize_video(item, run_id=handle.run_id)
            except TranscodeError as exc:
                logger.warning("Dropping '%s': %s", item.source_name, exc)
                reports.append(FileReport(source_name=item.source_name, status="failed", detail=str(exc)))
                errors.append(str(exc))
                return None
            if result is None:
                reports.append(
                    FileReport(source_name=item.source_name, status="skipped", detail="Video conversion was cancelled.")
                )
            return result

        results = await asyncio.gather(*(_video(item) for item in images))
        return [item for item in results if item is not None]

    async def _classify_all(
        self,
        normalized: list[StagedFile],
        reports: list[FileReport],
    ) -> list[Attachment]:
        attachments: list[Attachment] = []
        for item in normalized:
            try:
                attachment = await asyncio.to_thread(_read_attachment, item)
            except OSError as exc:
                logger.warning("Could not read staged file '%s': %s", item.name, exc)
                reports.append(FileReport(source_name=item.source_name, status="skipped", detail=str(exc)))
                continue
            if attachment is None:
                logger.debug("Dropping unsupported file '%s'", item.name)
                reports.append(FileReport(source_name=item.source_name, status="unsupported"))
                continue
            attachments.append(attachment)
        return attachments
