"""File handler module: path validation and atomic working-copy writes.

Provides the file I/O used when materializing source blobs into the
destination working copy and when walking a working copy from disk.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Client metadata directories never mirrored from a working copy.
ADMIN_DIRS = frozenset({".svn", ".git", ".hg", "$tf"})

# =============================================================================
# Path Validation
# =============================================================================


def validate_relative_path(relative: str) -> str:
    """Reject paths that would escape the working copy root.

    Raises:
        ValueError: If *relative* is absolute or contains ``..`` segments.
    """
    if not relative or relative.startswith("/"):
        raise ValueError(f"Path must be relative: {relative!r}")
    if any(part in ("", ".", "..") for part in relative.split("/")):
        raise ValueError(f"Invalid path segment in {relative!r}")
    return relative


# =============================================================================
# File Read/Write
# =============================================================================


def write_file_atomic(
    path: Path,
    data: bytes,
    overwrite: bool = True,
    executable: bool = False,
) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    Writes to a temporary file in the target directory, then replaces the
    target with ``os.replace()`` so readers never see partial content.

    Args:
        path: Destination file path.
        data: Bytes to write.
        overwrite: If ``False``, refuse to replace an existing file.
        executable: Set the executable bits on the written file.

    Returns:
        Number of bytes written.

    Raises:
        FileExistsError: If *overwrite* is ``False`` and *path* exists.
    """
    if not overwrite and path.exists():
        raise FileExistsError(f"Refusing to overwrite existing file: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        mode = 0o755 if executable else 0o644
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


# =============================================================================
# Directory Walk
# =============================================================================


def walk_files(root: Path) -> list[str]:
    """Return every regular file under *root* as a relative POSIX path.

    Client metadata directories (``.svn``, ``.git``, ...) are skipped.
    The result is sorted for deterministic tree construction.
    """
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d.lower() not in ADMIN_DIRS]
        base = Path(dirpath).relative_to(root)
        for name in filenames:
            relative = (base / name).as_posix()
            found.append(relative)
    return sorted(found)
