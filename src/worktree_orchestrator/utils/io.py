"""Small IO helpers for safe persistence and disk checks.

Provides atomic_write_text(), which writes to a temp file on the same
filesystem and then atomically replaces the destination, so a crash
mid-write leaves the previous file intact. free_disk_bytes() reports
free space for a path that may not exist yet.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: str | Path, data: str, perms: int | None = None) -> None:
    """Atomically write text content to path.

    Steps:
    - Ensure parent directory exists
    - Write to a NamedTemporaryFile in the same directory
    - fsync the temp file
    - os.replace() to move into place atomically
    - Restore the previous file mode, or apply perms if given

    If os.replace() fails, the temp file is cleaned up before re-raising.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    if perms is None:
        perms = dest.stat().st_mode & 0o777 if dest.exists() else 0o644

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            prefix=f".{dest.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_name = tmp.name

        os.chmod(tmp_name, perms)
        os.replace(tmp_name, dest)
        tmp_name = None
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug(f"Could not remove temp file {tmp_name}")


def nearest_existing_dir(path: str | Path) -> Path:
    """Walk up from path until an existing directory is found."""
    candidate = Path(path).absolute()
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


def free_disk_bytes(path: str | Path) -> int:
    """Free bytes on the filesystem that holds path (or its nearest ancestor)."""
    return shutil.disk_usage(str(nearest_existing_dir(path))).free
