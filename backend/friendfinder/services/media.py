from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol

from friendfinder.core.errors import (
    PermissionDeniedError,
    TransientIOError,
    ValidationError,
)


logger = logging.getLogger(__name__)


class MediaStorage(Protocol):
    async def upload(self, data: bytes, path: str) -> str:
        """Store bytes under a relative path and return a download URL."""
        ...


def _safe_relative_path(path: str) -> PurePosixPath:
    rel = PurePosixPath(path)
    if not path or rel.is_absolute() or any(part in ("", ".", "..") for part in rel.parts):
        raise ValidationError(f"Invalid media path: {path!r}", code="MEDIA_PATH_INVALID")
    return rel


class LocalMediaStorage:
    """Filesystem-backed media store, served by the app under base_url."""

    def __init__(self, *, root_dir: str | Path, base_url: str) -> None:
        self._root = Path(root_dir)
        self._base_url = base_url.rstrip("/")

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a partial file; one temp file per upload.
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        try:
            tmp.write_bytes(data)
            tmp.replace(target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    async def upload(self, data: bytes, path: str) -> str:
        rel = _safe_relative_path(path)
        target = self._root.joinpath(*rel.parts)
        try:
            await asyncio.to_thread(self._write, target, data)
        except PermissionError as e:
            logger.warning("Media storage denied write to %s", target)
            raise PermissionDeniedError(
                "Media storage refused the upload", code="STORAGE_PERMISSION_DENIED"
            ) from e
        except OSError as e:
            logger.warning("Media storage write failed for %s: %s", target, e)
            raise TransientIOError(code="STORAGE_UNAVAILABLE") from e
        return f"{self._base_url}/{rel.as_posix()}"
