from __future__ import annotations

import logging
import shutil
from pathlib import Path
from uuid import uuid4

from attachkit.core.config import Settings, get_settings
from attachkit.features.shared.filenames import sanitize_filename

from .errors import CopyError, StagingError
from .types import LocalFileRef, StagedFile, StagingHandle

logger = logging.getLogger(__name__)


def resolve_storage_path(storage_path: str) -> Path:
    path = Path(storage_path)
    if not path.is_absolute():
        project_root = Path(__file__).resolve().parents[3]
        path = project_root / path
    return path


class StagingArea:
    """Per-batch scratch directories for picked files.

    Each ``open()`` creates a fresh directory named after a new run id. The
    directory is owned by a single pipeline run and removed by ``close()``.
    """

    def __init__(self, *, settings: Settings | None = None, root: Path | None = None):
        self._settings = settings or get_settings()
        self._root = root

    def _staging_root(self) -> Path:
        if self._root is not None:
            return self._root
        return resolve_storage_path(self._settings.attachment_staging_dir)

    def open(self) -> StagingHandle:
        run_id = uuid4().hex
        try:
            root = self._staging_root()
            root.mkdir(parents=True, exist_ok=True)
            workspace = root / run_id
            if workspace.exists():
                shutil.rmtree(workspace)
            workspace.mkdir()
        except OSError as exc:
            raise StagingError(f"Staging area is unavailable: {exc}") from exc
        logger.debug("Opened staging area %s", workspace)
        return StagingHandle(run_id=run_id, root=workspace)

    def stage(self, handle: StagingHandle, ref: LocalFileRef) -> StagedFile:
        if handle.closed:
            raise StagingError(f"Staging area '{handle.run_id}' is already closed.")

        target_name = sanitize_filename(ref.filename)
        target = handle.root / target_name
        if target.exists():
            logger.debug("Reusing staged copy of '%s'", target_name)
            return StagedFile(path=target, source_name=ref.filename)

        if ref.path is None and ref.payload is None:
            raise CopyError(f"File '{ref.filename}' has no readable source.")

        granted = False
        if ref.access is not None:
            try:
                granted = ref.access.begin_access()
            except Exception as exc:
                raise CopyError(f"Access to '{ref.filename}' failed: {exc}") from exc
            if not granted:
                raise CopyError(f"Access to '{ref.filename}' was not granted.")
        try:
            if ref.payload is not None:
                target.write_bytes(ref.payload)
            else:
                shutil.copyfile(ref.path, target)
        except OSError as exc:
            target.unlink(missing_ok=True)
            raise CopyError(f"Could not copy '{ref.filename}': {exc}") from exc
        finally:
            if granted:
                ref.access.end_access()

        return StagedFile(path=target, source_name=ref.filename)

    def close(self, handle: StagingHandle) -> None:
        if handle.closed:
            logger.debug("Staging area '%s' already closed", handle.run_id)
            return
        handle.closed = True
        try:
            shutil.rmtree(handle.root)
        except FileNotFoundError:
            return
        except OSError:
            logger.warning("Could not remove staging area %s", handle.root, exc_info=True)
