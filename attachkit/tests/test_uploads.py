from __future__ import annotations

import asyncio

import pytest

from attachkit.features.attachments import Attachment, RemoteFile, UploadCoordinator, UploadError


class _FakeUploadService:
    def __init__(
        self,
        *,
        failures: dict[str, str] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[dict[str, object]] = []
        self.settled: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, payload: bytes, *, mime_type: str, file_name: str, context: str) -> RemoteFile:
        self.calls.append({"file_name": file_name, "mime_type": mime_type, "context": context, "size": len(payload)})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(file_name, 0.01))
            if file_name in self.failures:
                raise UploadError(self.failures[file_name])
            return RemoteFile(id=f"remote-{file_name}", file_name=file_name, mime_type=mime_type)
        finally:
            self.in_flight -= 1
            self.settled.append(file_name)


def _attachment(name: str, mime_type: str = "application/pdf") -> Attachment:
    return Attachment(payload=f"{name}-bytes".encode(), file_name=name, mime_type=mime_type)


@pytest.mark.asyncio
async def test_upload_all_reports_every_success():
    service = _FakeUploadService()
    coordinator = UploadCoordinator(service)

    outcome = await coordinator.upload_all([_attachment("a"), _attachment("b")], context="comment")

    assert [item.id for item in outcome.files] == ["remote-a", "remote-b"]
    assert outcome.error is None
    assert outcome.errors == []
    assert [item.status for item in outcome.items] == ["uploaded", "uploaded"]
    assert {call["context"] for call in service.calls} == {"comment"}


@pytest.mark.asyncio
async def test_partial_failure_returns_successes_and_error_after_all_calls_settle():
    service = _FakeUploadService(
        failures={"b": "network timeout", "d": "quota exceeded"},
        delays={"a": 0.0, "b": 0.05, "c": 0.01, "d": 0.1},
    )
    coordinator = UploadCoordinator(service)

    outcome = await coordinator.upload_all(
        [_attachment(name) for name in ["a", "b", "c", "d"]],
        context="comment",
    )

    assert sorted(service.settled) == ["a", "b", "c", "d"]
    assert [item.id for item in outcome.files] == ["remote-a", "remote-c"]
    assert outcome.errors == ["network timeout", "quota exceeded"]
    assert outcome.error == "quota exceeded"
    failed = [item for item in outcome.items if item.status == "failed"]
    assert [(item.source_name, item.detail) for item in failed] == [
        ("b", "network timeout"),
        ("d", "quota exceeded"),
    ]


@pytest.mark.asyncio
async def test_uploads_are_dispatched_concurrently():
    service = _FakeUploadService(delays={name: 0.05 for name in "abcde"})
    coordinator = UploadCoordinator(service)

    await coordinator.upload_all([_attachment(name) for name in "abcde"], context="comment")

    assert service.max_in_flight == 5


@pytest.mark.asyncio
async def test_max_concurrency_limits_in_flight_uploads():
    service = _FakeUploadService(delays={name: 0.02 for name in "abcd"})
    coordinator = UploadCoordinator(service, max_concurrency=2)

    outcome = await coordinator.upload_all([_attachment(name) for name in "abcd"], context="comment")

    assert service.max_in_flight == 2
    assert len(outcome.files) == 4


@pytest.mark.asyncio
async def test_unexpected_exception_is_collected_as_error_message():
    class _ExplodingService:
        async def upload(self, payload, *, mime_type, file_name, context):
            raise RuntimeError()

    outcome = await UploadCoordinator(_ExplodingService()).upload_all([_attachment("a")], context="comment")

    assert outcome.files == []
    assert outcome.error == "RuntimeError"


@pytest.mark.asyncio
async def test_missing_descriptor_counts_as_failure():
    class _SilentService:
        async def upload(self, payload, *, mime_type, file_name, context):
            return None

    outcome = await UploadCoordinator(_SilentService()).upload_all([_attachment("a")], context="comment")

    assert outcome.files == []
    assert outcome.error is not None
    assert "no file descriptor" in outcome.error


@pytest.mark.asyncio
async def test_empty_batch_returns_empty_outcome():
    service = _FakeUploadService()

    outcome = await UploadCoordinator(service).upload_all([], context="comment")

    assert outcome.files == []
    assert outcome.error is None
    assert service.calls == []
