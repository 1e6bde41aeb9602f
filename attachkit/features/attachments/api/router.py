from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from attachkit.core.config import get_settings
from attachkit.features.attachments import (
    AttachmentPipeline,
    BatchOutcome,
    HttpUploadService,
    LocalFileRef,
    PipelineBusyError,
    UploadService,
    supported_types_response,
)
from attachkit.features.attachments.types import SupportedTypesResponse

router = APIRouter(prefix="/api/attachments", tags=["attachments"])


async def get_upload_service(request: Request) -> AsyncIterator[UploadService]:
    # The app lifespan keeps one pooled client; without it, one client serves this request.
    shared = getattr(request.app.state, "upload_client", None)
    async with HttpUploadService(settings=get_settings(), client=shared) as service:
        yield service


def get_attachment_pipeline(
    upload_service: UploadService = Depends(get_upload_service),
) -> AttachmentPipeline:
    return AttachmentPipeline(upload_service, settings=get_settings())


async def _read_file_limited(upload: UploadFile, *, max_size: int) -> bytes:
    total = 0
    chunks: list[bytes] = []
    while True:
        chunk = await upload.read(1024 * 1024)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise HTTPException(
                status_code=413,
                detail=f"File '{upload.filename or 'upload'}' exceeds max size of {max_size} bytes.",
            )
        chunks.append(chunk)
    return b"".join(chunks)


@router.get("/types", response_model=SupportedTypesResponse)
async def list_supported_types() -> SupportedTypesResponse:
    return supported_types_response()


@router.post("", response_model=BatchOutcome)
async def upload_attachments(
    files: list[UploadFile] = File(...),
    context: str | None = Form(default=None),
    pipeline: AttachmentPipeline = Depends(get_attachment_pipeline),
) -> BatchOutcome:
    if not files:
        raise HTTPException(status_code=400, detail="Provide at least one file.")

    settings = get_settings()
    refs: list[LocalFileRef] = []
    for file in files:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Uploaded file is missing a filename.")
        data = await _read_file_limited(file, max_size=settings.attachment_max_size_bytes)
        if not data:
            raise HTTPException(status_code=400, detail=f"File '{file.filename}' is empty.")
        refs.append(LocalFileRef(filename=file.filename, payload=data))

    try:
        return await pipeline.run(refs, context=context)
    except PipelineBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
