# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.store",
#   "purpose": "On-disk layout for stored artifacts, generated indexes and the current pointer.",
#   "sections": [
#     {
#       "id": "atomic-write-bytes",
#       "name": "_atomic_write_bytes",
#       "anchor": "function-atomic-write-bytes",
#       "kind": "function"
#     },
#     {
#       "id": "contentstore",
#       "name": "ContentStore",
#       "anchor": "class-contentstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""On-disk content store for the update engine.

Layout under ``root``::

    source/<name>/build.complog     latest raw artifact per source
    source/<name>/build.version     version key of that artifact
    index/<generated name>/...      one directory per generated index
    current.txt                     name of the currently published index
    regenerate.pending              present while stored artifacts await a published index

Artifact writes are atomic (temporary file, ``fsync``, ``os.replace``, then
``fsync`` of the parent directory), so a reader sees either the previous
complete file or the new complete file. The store itself holds no lock;
exclusive mutation is the coordinator's job.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

LOGGER = logging.getLogger(__name__)

ARTIFACT_FILE_NAME = "build.complog"
VERSION_FILE_NAME = "build.version"
CURRENT_POINTER_NAME = "current.txt"
PENDING_MARKER_NAME = "regenerate.pending"

_SAFE_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _fsync_dir(path: Path) -> None:
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _atomic_write_bytes(dest: Path, data: bytes) -> None:
    """Write ``data`` to ``dest`` so readers never observe a torn file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + f".tmp-{os.getpid()}")

    try:
        with open(tmp, "wb") as wf:
            wf.write(data)
            wf.flush()
            os.fsync(wf.fileno())
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    os.replace(tmp, dest)
    _fsync_dir(dest.parent)


def _check_segment(value: str, what: str) -> str:
    if not _SAFE_SEGMENT_RE.match(value):
        raise ValueError(f"unsafe {what}: {value!r}")
    return value


@dataclass(frozen=True)
class ContentStore:
    """Filesystem persistence rooted at ``root``.

    Attributes:
        root: Root directory of the persisted layout
    """

    root: Path

    @property
    def source_root(self) -> Path:
        return self.root / "source"

    @property
    def index_root(self) -> Path:
        return self.root / "index"

    def ensure_layout(self) -> None:
        """Create the ``source`` and ``index`` directories if absent."""
        self.source_root.mkdir(parents=True, exist_ok=True)
        self.index_root.mkdir(parents=True, exist_ok=True)

    # -- stored artifacts ---------------------------------------------------

    def source_dir(self, source_name: str) -> Path:
        return self.source_root / _check_segment(source_name, "source name")

    def artifact_path(self, source_name: str) -> Path:
        """Deterministic path of the stored artifact for ``source_name``."""
        return self.source_dir(source_name) / ARTIFACT_FILE_NAME

    def write_artifact(self, source_name: str, version_key: str, payload: bytes) -> Path:
        """Persist ``payload`` and its version key for ``source_name``.

        The artifact is replaced before the version sidecar, so after a crash
        between the two writes the sidecar holds the older key and the next
        poll ingests the source again instead of skipping it.
        """
        path = self.artifact_path(source_name)
        _atomic_write_bytes(path, payload)
        _atomic_write_bytes(path.with_name(VERSION_FILE_NAME), version_key.encode("utf-8"))
        LOGGER.debug("Stored artifact for %s (%d bytes) at %s", source_name, len(payload), path)
        return path

    def read_version_key(self, source_name: str) -> Optional[str]:
        """Return the persisted version key, or ``None`` if incomplete or absent."""
        artifact = self.artifact_path(source_name)
        sidecar = artifact.with_name(VERSION_FILE_NAME)
        if not artifact.is_file() or not sidecar.is_file():
            return None
        key = sidecar.read_text(encoding="utf-8").strip()
        return key or None

    def iter_stored_sources(self) -> Iterator[str]:
        """Yield names of sources that have a stored artifact, sorted."""
        if not self.source_root.is_dir():
            return
        for entry in sorted(self.source_root.iterdir()):
            if entry.is_dir() and (entry / ARTIFACT_FILE_NAME).is_file():
                yield entry.name

    # -- generated indexes --------------------------------------------------

    def new_index_name(self) -> str:
        """Return a fresh, unused index directory name."""
        return uuid.uuid4().hex

    def index_path(self, index_name: str) -> Path:
        return self.index_root / _check_segment(index_name, "index name")

    def list_index_names(self) -> List[str]:
        if not self.index_root.is_dir():
            return []
        return sorted(entry.name for entry in self.index_root.iterdir() if entry.is_dir())

    def delete_index(self, index_name: str) -> None:
        """Remove an index directory tree. Missing directories are ignored."""
        path = self.index_path(index_name)
        if path.exists():
            shutil.rmtree(path)
            LOGGER.debug("Deleted index directory %s", path)

    # -- current pointer ----------------------------------------------------

    def read_current_index_name(self) -> Optional[str]:
        pointer = self.root / CURRENT_POINTER_NAME
        if not pointer.is_file():
            return None
        name = pointer.read_text(encoding="utf-8").strip()
        if not name or not _SAFE_SEGMENT_RE.match(name):
            LOGGER.warning("Ignoring malformed current index pointer %s", pointer)
            return None
        return name

    def write_current_index_name(self, index_name: str) -> None:
        _check_segment(index_name, "index name")
        _atomic_write_bytes(self.root / CURRENT_POINTER_NAME, index_name.encode("utf-8"))

    # -- regeneration marker ------------------------------------------------

    def is_regeneration_pending(self) -> bool:
        return (self.root / PENDING_MARKER_NAME).is_file()

    def set_regeneration_pending(self, pending: bool) -> None:
        """Create or remove the marker recording that the index lags the stored artifacts."""
        marker = self.root / PENDING_MARKER_NAME
        if pending:
            _atomic_write_bytes(marker, b"")
        else:
            marker.unlink(missing_ok=True)


__all__ = [
    "ContentStore",
    "ARTIFACT_FILE_NAME",
    "VERSION_FILE_NAME",
    "CURRENT_POINTER_NAME",
    "PENDING_MARKER_NAME",
]
