from __future__ import annotations

from pathlib import Path

import pytest

from attachkit.features.attachments import CopyError, LocalFileRef, StagingArea, StagingError


class _RecordingAccess:
    def __init__(self, *, grant: bool = True):
        self.grant = grant
        self.calls: list[str] = []

    def begin_access(self) -> bool:
        self.calls.append("begin")
        return self.grant

    def end_access(self) -> None:
        self.calls.append("end")


def _source(tmp_path: Path, name: str, payload: bytes = b"data") -> Path:
    source_dir = tmp_path / "picked"
    source_dir.mkdir(exist_ok=True)
    path = source_dir / name
    path.write_bytes(payload)
    return path


def test_open_creates_fresh_empty_directory_and_close_removes_it(tmp_path: Path) -> None:
    staging = StagingArea(root=tmp_path / "staging")

    handle = staging.open()

    assert handle.root.is_dir()
    assert list(handle.root.iterdir()) == []
    assert handle.root.parent == tmp_path / "staging"

    staging.close(handle)
    assert not handle.root.exists()
    assert handle.closed


def test_each_open_uses_its_own_directory(tmp_path: Path) -> None:
    staging = StagingArea(root=tmp_path / "staging")

    first = staging.open()
    second = staging.open()

    assert first.root != second.root
    staging.close(first)
    assert second.root.exists()
    staging.close(second)


def test_close_is_a_no_op_the_second_time(tmp_path: Path) -> None:
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    staging.close(handle)
    staging.close(handle)

    assert not handle.root.exists()


def test_open_raises_staging_error_when_root_is_unusable(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    staging = StagingArea(root=blocker)

    with pytest.raises(StagingError):
        staging.open()


def test_stage_copies_bytes_under_base_filename(tmp_path: Path) -> None:
    source = _source(tmp_path, "report.pdf", b"%PDF-1.7")
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    staged = staging.stage(handle, LocalFileRef.from_path(source))

    assert staged.path == handle.root / "report.pdf"
    assert staged.path.read_bytes() == b"%PDF-1.7"
    assert staged.source_name == "report.pdf"
    assert source.exists()
    staging.close(handle)


def test_staging_same_filename_twice_reuses_existing_copy(tmp_path: Path) -> None:
    source = _source(tmp_path, "report.pdf", b"first")
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    first = staging.stage(handle, LocalFileRef.from_path(source))
    source.unlink()
    second = staging.stage(handle, LocalFileRef.from_path(source))

    assert first.path == second.path
    assert [item.name for item in handle.root.iterdir()] == ["report.pdf"]
    assert second.path.read_bytes() == b"first"
    staging.close(handle)


def test_stage_capture_payload_uses_generated_name(tmp_path: Path) -> None:
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    staged = staging.stage(handle, LocalFileRef.from_capture(b"\xff\xd8\xff"))

    assert staged.extension == "jpg"
    assert staged.path.read_bytes() == b"\xff\xd8\xff"
    staging.close(handle)


def test_stage_missing_source_raises_copy_error_and_leaves_no_file(tmp_path: Path) -> None:
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    with pytest.raises(CopyError):
        staging.stage(handle, LocalFileRef.from_path(tmp_path / "missing.pdf"))

    assert list(handle.root.iterdir()) == []
    staging.close(handle)


def test_scoped_access_is_released_after_copy(tmp_path: Path) -> None:
    source = _source(tmp_path, "notes.docx")
    access = _RecordingAccess()
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    staging.stage(handle, LocalFileRef.from_path(source, access=access))

    assert access.calls == ["begin", "end"]
    staging.close(handle)


def test_scoped_access_is_released_when_copy_fails(tmp_path: Path) -> None:
    access = _RecordingAccess()
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    with pytest.raises(CopyError):
        staging.stage(handle, LocalFileRef.from_path(tmp_path / "gone.docx", access=access))

    assert access.calls == ["begin", "end"]
    staging.close(handle)


def test_denied_scoped_access_raises_copy_error_without_release(tmp_path: Path) -> None:
    source = _source(tmp_path, "notes.docx")
    access = _RecordingAccess(grant=False)
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    with pytest.raises(CopyError, match="not granted"):
        staging.stage(handle, LocalFileRef.from_path(source, access=access))

    assert access.calls == ["begin"]
    staging.close(handle)


def test_failing_scoped_access_raises_copy_error(tmp_path: Path) -> None:
    class _RevokedAccess(_RecordingAccess):
        def begin_access(self) -> bool:
            self.calls.append("begin")
            raise PermissionError("bookmark is stale")

    source = _source(tmp_path, "notes.docx")
    access = _RevokedAccess()
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()

    with pytest.raises(CopyError, match="bookmark is stale"):
        staging.stage(handle, LocalFileRef.from_path(source, access=access))

    assert access.calls == ["begin"]
    assert list(handle.root.iterdir()) == []
    staging.close(handle)


def test_stage_after_close_raises_staging_error(tmp_path: Path) -> None:
    source = _source(tmp_path, "a.pdf")
    staging = StagingArea(root=tmp_path / "staging")
    handle = staging.open()
    staging.close(handle)

    with pytest.raises(StagingError):
        staging.stage(handle, LocalFileRef.from_path(source))
