"""Ingestion coordinator: the single owner of per-source ingestion state.

Holds the map of source name to last-ingested version key and artifact path.
All mutations and snapshots take one coordinator-wide lock. The stored
artifact is replaced inside that lock, so a snapshot never lists a path whose
file is mid-write. Network and generator work happen outside the lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import raise_if_cancelled
from .sources.base import ComplogSource, IngestResult
from .store import ContentStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredArtifact:
    source_name: str
    version_key: str
    path: Path


class IngestionCoordinator:
    """Guards the source-name -> :class:`StoredArtifact` mapping."""

    def __init__(self, store: ContentStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._artifacts: Dict[str, StoredArtifact] = {}

    def restore(self, source_names: Iterable[str]) -> int:
        """Reload persisted version keys for ``source_names``.

        Stored artifacts of sources no longer configured are left on disk but
        not loaded, so they take no part in later snapshots.

        Returns:
            Number of sources restored.
        """
        names = list(source_names)
        restored: Dict[str, StoredArtifact] = {}
        for name in names:
            key = self.store.read_version_key(name)
            if key is None:
                continue
            restored[name] = StoredArtifact(name, key, self.store.artifact_path(name))

        with self._lock:
            self._artifacts.update(restored)

        for stale in sorted(set(self.store.iter_stored_sources()) - set(names)):
            LOGGER.info("Ignoring stored artifact of unconfigured source %s", stale)
        if restored:
            LOGGER.info("Restored version keys for %d source(s)", len(restored))
        return len(restored)

    def get_version_key(self, source_name: str) -> Optional[str]:
        """Return the last ingested version key, or ``None`` if never ingested."""
        with self._lock:
            stored = self._artifacts.get(source_name)
        return stored.version_key if stored is not None else None

    def record_ingested(self, source_name: str, version_key: str, payload: bytes) -> Path:
        """Persist ``payload`` as the source's artifact and remember ``version_key``."""
        with self._lock:
            path = self.store.write_artifact(source_name, version_key, payload)
            self._artifacts[source_name] = StoredArtifact(source_name, version_key, path)
        LOGGER.info(
            "Ingested %s: version %s (%d bytes)",
            source_name,
            version_key,
            len(payload),
            extra={"source": source_name, "stage": "ingest"},
        )
        return path

    def snapshot_artifact_paths(self) -> List[Path]:
        """Point-in-time list of stored artifact paths, ordered by source name."""
        with self._lock:
            return [self._artifacts[name].path for name in sorted(self._artifacts)]

    def snapshot(self) -> List[StoredArtifact]:
        with self._lock:
            return [self._artifacts[name] for name in sorted(self._artifacts)]

    def ingest_if_changed(
        self, source: ComplogSource, cancel: Optional[threading.Event] = None
    ) -> bool:
        """Run one ``try_ingest`` against the source's current key.

        ``source.commit`` runs only after the payload is stored, so a failed
        write or a cancellation leaves the source free to offer it again.

        Returns:
            True if a new artifact was recorded.

        Raises:
            Whatever the source raises; the poll loop contains it.
        """
        existing = self.get_version_key(source.name)
        result: IngestResult = source.try_ingest(existing, cancel)
        if not result.changed:
            LOGGER.debug("Source %s unchanged", source.name, extra={"source": source.name})
            return False

        if result.version_key is None or result.payload is None:
            raise ValueError(f"Source {source.name!r} reported a change without key or payload")
        if result.version_key == existing:
            LOGGER.debug("Source %s returned its current key, treating as unchanged", source.name)
            source.commit(result)
            return False

        raise_if_cancelled(cancel)
        self.record_ingested(source.name, result.version_key, result.payload)
        source.commit(result)
        return True


__all__ = ["IngestionCoordinator", "StoredArtifact"]
