"""Private temp directories for fetches, and cleanup of ones left by crashed runs."""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

FETCH_TEMP_PREFIX = "jobdash-fetch-"
FETCH_TEMP_MARKER_FILENAME = ".jobdash-fetch-tempdir"


@contextmanager
def fetch_temp_dir(temp_root: Path | None = None) -> Iterator[Path]:
    """Yield a marked temp directory that is removed on exit."""
    with tempfile.TemporaryDirectory(
        prefix=FETCH_TEMP_PREFIX,
        dir=str(temp_root) if temp_root is not None else None,
    ) as raw:
        path = Path(raw)
        (path / FETCH_TEMP_MARKER_FILENAME).touch()
        yield path


def _resolved(path: Path) -> Path | None:
    try:
        return path.resolve()
    except OSError:
        return None


def _is_safe_temp_root(root: Path) -> bool:
    """Return True only for roots under the system temp directory."""
    resolved_root = _resolved(root)
    system_temp = _resolved(Path(tempfile.gettempdir()))
    if resolved_root is None or system_temp is None:
        return False
    if resolved_root == Path(resolved_root.anchor):
        return False
    return resolved_root == system_temp or system_temp in resolved_root.parents


def _looks_like_fetch_temp_dir(path: Path) -> bool:
    """Return True only for directories that match the fetch temp layout."""
    if not path.is_dir() or path.is_symlink():
        return False
    if not path.name.startswith(FETCH_TEMP_PREFIX):
        return False
    try:
        entries = list(path.iterdir())
    except OSError:
        return False
    if not any(entry.name == FETCH_TEMP_MARKER_FILENAME for entry in entries):
        return False
    return all(entry.is_file() and not entry.is_symlink() for entry in entries)


def cleanup_stale_fetch_dirs(
    *,
    stale_after_seconds: int = 300,
    temp_root: Path | None = None,
) -> int:
    """Remove fetch temp directories left behind by previous runs.

    Args:
        stale_after_seconds: Minimum age required before deleting a directory.
        temp_root: Optional temp root override.

    Returns:
        Count of directories removed.
    """
    root = temp_root or Path(tempfile.gettempdir())
    if not root.is_dir():
        return 0
    if not _is_safe_temp_root(root):
        logger.warning("Skipping fetch temp cleanup for unsafe root: %s", root)
        return 0

    now = time.time()
    min_age_seconds = max(stale_after_seconds, 0)
    removed = 0
    for path in root.glob(f"{FETCH_TEMP_PREFIX}*"):
        if not _looks_like_fetch_temp_dir(path):
            continue
        try:
            age_seconds = now - path.stat().st_mtime
        except OSError:
            continue
        if age_seconds < min_age_seconds:
            continue
        try:
            shutil.rmtree(path, ignore_errors=False)
            removed += 1
            logger.info("Removed stale fetch temp dir: %s", path)
        except OSError:
            logger.info("Failed removing stale fetch temp dir: %s", path, exc_info=True)
    return removed
