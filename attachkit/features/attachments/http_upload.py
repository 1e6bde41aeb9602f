from __future__ import annotations

import httpx
from pydantic import ValidationError

from attachkit.core.config import Settings, get_settings

from .errors import UploadError
from .types import RemoteFile


def _response_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error") or payload.get("message")
        if isinstance(detail, str) and detail.strip():
            return detail.strip()
    return f"Upload server responded with status {response.status_code}."


class HttpUploadService:
    """Posts each attachment as a multipart form to the configured file endpoint.

    An injected client is shared and never closed here. Without one the service
    opens its own client on first use and keeps it until ``aclose``.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = False

    async def __aenter__(self) -> HttpUploadService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.upload_timeout_seconds)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    async def upload(
        self,
        payload: bytes,
        *,
        mime_type: str,
        file_name: str,
        context: str,
    ) -> RemoteFile:
        return await self._post(self._get_client(), payload, mime_type=mime_type, file_name=file_name, context=context)

    async def _post(
        self,
        client: httpx.AsyncClient,
        payload: bytes,
        *,
        mime_type: str,
        file_name: str,
        context: str,
    ) -> RemoteFile:
        try:
            response = await client.post(
                self._settings.upload_service_url,
                files={"file": (file_name, payload, mime_type)},
                data={"mime_type": mime_type, "file_name": file_name, "context": context},
            )
        except httpx.TimeoutException as exc:
            raise UploadError(f"Upload of '{file_name}' timed out.") from exc
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload of '{file_name}' failed: {exc}") from exc

        if response.is_error:
            raise UploadError(_response_detail(response))

        try:
            return RemoteFile.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UploadError(f"Upload server returned an invalid file descriptor for '{file_name}'.") from exc
