"""Zip artifact helpers.

CI providers deliver artifacts as zip archives. Only a single named entry is
ever read, and its bytes are returned in memory; nothing is extracted to disk.
"""

from __future__ import annotations

import zipfile
from pathlib import PurePosixPath
from typing import BinaryIO, Optional

from .errors import ArchiveError


def _validate_member_path(member_name: str) -> PurePosixPath:
    """Validate archive member paths to prevent traversal attacks."""

    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ArchiveError(f"Unsafe absolute path detected in archive: {member_name}")
    if not relative.parts:
        raise ArchiveError(f"Empty path detected in archive: {member_name}")
    if any(part in {"", ".", ".."} for part in relative.parts):
        raise ArchiveError(f"Unsafe path detected in archive: {member_name}")
    return relative


def extract_entry(archive: BinaryIO, entry_name: str) -> Optional[bytes]:
    """Return the bytes of ``entry_name`` from a zip archive, or ``None`` if absent.

    Entry names are compared after normalizing backslashes to forward slashes,
    since Windows build agents produce either form.

    Raises:
        ArchiveError: If the archive is not a valid zip, a member path is
            unsafe, or the entry cannot be decompressed.
    """
    wanted = PurePosixPath(entry_name.replace("\\", "/"))
    try:
        with zipfile.ZipFile(archive) as zf:
            match: Optional[zipfile.ZipInfo] = None
            for info in zf.infolist():
                member = _validate_member_path(info.filename.rstrip("/\\") or info.filename)
                if info.is_dir():
                    continue
                if member == wanted and match is None:
                    match = info
            if match is None:
                return None
            return zf.read(match)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Artifact is not a valid zip archive: {exc}") from exc
    except (zipfile.LargeZipFile, NotImplementedError, EOFError) as exc:
        raise ArchiveError(f"Cannot read entry {entry_name!r}: {exc}") from exc


__all__ = ["extract_entry"]
