# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.publication",
#   "purpose": "Atomically swappable handle to the currently served index plus background reclamation.",
#   "sections": [
#     {
#       "id": "repositoryindex",
#       "name": "RepositoryIndex",
#       "anchor": "class-repositoryindex",
#       "kind": "class"
#     },
#     {
#       "id": "publicationmanager",
#       "name": "PublicationManager",
#       "anchor": "class-publicationmanager",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Publication of generated indexes.

Readers (the serving layer) call :attr:`PublicationManager.current` and get an
immutable :class:`RepositoryIndex`. Reading it is a single attribute load and
never takes a lock; :meth:`PublicationManager.publish` replaces it with a single
assignment, so a reader holds either the old handle or the new one. Superseded
index directories are deleted on a background thread; a failed deletion is
logged and leaves an orphan that the next :meth:`PublicationManager.restore`
reclaims.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path, PurePosixPath
from typing import ClassVar, List, Optional

from .errors import PublicationError
from .store import ContentStore

LOGGER = logging.getLogger(__name__)


class RepositoryIndex:
    """Handle to one generated index directory; immutable once built."""

    EMPTY: ClassVar["RepositoryIndex"]

    __slots__ = ("name", "directory")

    def __init__(self, name: Optional[str], directory: Optional[Path]) -> None:
        self.name = name
        self.directory = directory

    @property
    def is_empty(self) -> bool:
        return self.directory is None

    def resolve(self, relative_path: str) -> Optional[Path]:
        """Map a request path onto this index, or ``None`` if it cannot be served.

        The empty sentinel serves nothing. Paths escaping the index directory
        are refused.
        """
        if self.directory is None:
            return None
        parts = [p for p in PurePosixPath(relative_path.replace("\\", "/")).parts if p != "/"]
        if any(p in ("..", ".") for p in parts):
            return None
        candidate = self.directory.joinpath(*parts) if parts else self.directory
        try:
            candidate.resolve().relative_to(self.directory.resolve())
        except ValueError:
            return None
        return candidate

    def __repr__(self) -> str:
        if self.is_empty:
            return "RepositoryIndex.EMPTY"
        return f"RepositoryIndex(name={self.name!r})"


RepositoryIndex.EMPTY = RepositoryIndex(None, None)


class PublicationManager:
    """Single writer of the current-index handle."""

    def __init__(self, store: ContentStore) -> None:
        self.store = store
        self._current: RepositoryIndex = RepositoryIndex.EMPTY
        self._publish_lock = threading.Lock()
        self._cleanup_threads: List[threading.Thread] = []

    @property
    def current(self) -> RepositoryIndex:
        return self._current

    def publish(self, index_name: str) -> RepositoryIndex:
        """Make ``index_name`` current and schedule removal of its predecessor.

        Raises:
            PublicationError: If the index directory does not exist or the
                pointer file cannot be written; the current index is unchanged.
        """
        directory = self.store.index_path(index_name)
        if not directory.is_dir():
            raise PublicationError(f"Index directory {directory} does not exist")
        replacement = RepositoryIndex(index_name, directory)

        with self._publish_lock:
            try:
                self.store.write_current_index_name(index_name)
            except OSError as exc:
                raise PublicationError(f"Cannot persist current index pointer: {exc}") from exc
            previous = self._current
            self._current = replacement

        LOGGER.info(
            "Published index %s (replacing %s)",
            index_name,
            previous.name or "nothing",
            extra={"stage": "publish"},
        )
        if not previous.is_empty and previous.name != index_name:
            self._schedule_cleanup(previous.name)  # type: ignore[arg-type]
        return replacement

    def restore(self) -> RepositoryIndex:
        """Reload the persisted current index and reclaim any other index directories."""
        name = self.store.read_current_index_name()
        restored = RepositoryIndex.EMPTY
        if name is not None:
            directory = self.store.index_path(name)
            if directory.is_dir():
                restored = RepositoryIndex(name, directory)
                LOGGER.info("Restored current index %s", name)
            else:
                LOGGER.warning("Current index %s is missing on disk, starting empty", name)

        with self._publish_lock:
            self._current = restored

        for orphan in self.store.list_index_names():
            if orphan != restored.name:
                self._schedule_cleanup(orphan)
        return restored

    def _schedule_cleanup(self, index_name: str) -> None:
        thread = threading.Thread(
            target=self._delete_index,
            args=(index_name,),
            name=f"complog-cleanup-{index_name[:8]}",
            daemon=True,
        )
        self._cleanup_threads = [t for t in self._cleanup_threads if t.is_alive()]
        self._cleanup_threads.append(thread)
        thread.start()

    def _delete_index(self, index_name: str) -> None:
        try:
            self.store.delete_index(index_name)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to delete superseded index %s: %s", index_name, exc)
            return
        LOGGER.debug("Reclaimed index %s", index_name)

    def wait_for_cleanup(self, timeout: Optional[float] = None) -> bool:
        """Join pending cleanup threads. Returns True when none remain alive."""
        for thread in list(self._cleanup_threads):
            thread.join(timeout)
        return not any(t.is_alive() for t in self._cleanup_threads)


__all__ = ["RepositoryIndex", "PublicationManager"]
