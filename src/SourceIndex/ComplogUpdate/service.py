# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.service",
#   "purpose": "Poll loop: ingest every source, regenerate on change, publish, repeat.",
#   "sections": [
#     {
#       "id": "servicestate",
#       "name": "ServiceState",
#       "anchor": "class-servicestate",
#       "kind": "class"
#     },
#     {
#       "id": "pollroundsummary",
#       "name": "PollRoundSummary",
#       "anchor": "class-pollroundsummary",
#       "kind": "class"
#     },
#     {
#       "id": "complogupdateservice",
#       "name": "ComplogUpdateService",
#       "anchor": "class-complogupdateservice",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Poll loop for the compiler-log update engine.

One round (:meth:`ComplogUpdateService.run_once`) walks the sources in
configuration order, asks the coordinator to ingest each one, and, if any
changed, snapshots the stored artifacts, runs the generator and publishes the
result. Failures are contained per source and per round. The repeating loop
(:meth:`ComplogUpdateService.run_forever`) stops only on cancellation.

State machine::

    IDLE -> POLLING -> IDLE                 (nothing changed)
    IDLE -> POLLING -> REGENERATING -> IDLE (something changed)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .coordinator import IngestionCoordinator
from .errors import PollCancelled, describe_failure
from .logging_config import generate_round_id
from .publication import PublicationManager
from .sources.base import ComplogSource

LOGGER = logging.getLogger(__name__)


class IndexBuilder(Protocol):
    def generate(
        self, artifact_paths: Sequence[Path], cancel: Optional[threading.Event] = None
    ) -> str: ...


class ServiceState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    REGENERATING = "regenerating"


@dataclass
class PollRoundSummary:
    """What one round did, for logs, the CLI and tests."""

    round_id: str
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    regenerated: bool = False
    published_index: Optional[str] = None
    regeneration_error: Optional[str] = None
    cancelled: bool = False
    duration_s: float = 0.0

    @property
    def any_changed(self) -> bool:
        return bool(self.changed)


class ComplogUpdateService:
    """Sole writer of ingestion and publication state.

    Args:
        sources: Sources in poll order
        coordinator: Owner of per-source version keys and stored artifacts
        publication: Owner of the current-index handle
        generator: Anything with ``generate(paths, cancel) -> index name``
        interval_s: Delay between the end of one round and the start of the next
        retry_failed_regeneration: Keep a failed regeneration pending so the
            next round runs it again even when no source changed

    Ingested changes stay pending until an index built from them is
    published. The pending state is mirrored in the content store, so a
    restart picks up a regeneration that failed or was cancelled.
    """

    def __init__(
        self,
        sources: Sequence[ComplogSource],
        coordinator: IngestionCoordinator,
        publication: PublicationManager,
        generator: IndexBuilder,
        *,
        interval_s: float = 60.0,
        retry_failed_regeneration: bool = True,
    ) -> None:
        self.sources = list(sources)
        self.coordinator = coordinator
        self.publication = publication
        self.generator = generator
        self.interval_s = interval_s
        self.retry_failed_regeneration = retry_failed_regeneration

        self.state = ServiceState.IDLE
        self.last_summary: Optional[PollRoundSummary] = None

        self._round_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._pending = coordinator.store.is_regeneration_pending()
        self._set_pending(
            self._pending or (publication.current.is_empty and bool(coordinator.snapshot()))
        )

    @property
    def regeneration_pending(self) -> bool:
        return self._pending

    def _set_pending(self, pending: bool) -> None:
        if pending == self._pending:
            return
        self._pending = pending
        try:
            self.coordinator.store.set_regeneration_pending(pending)
        except OSError as exc:
            LOGGER.warning("Cannot persist regeneration marker: %s", exc)

    # -- one round ----------------------------------------------------------

    def run_once(self, cancel: Optional[threading.Event] = None) -> PollRoundSummary:
        """Run a single poll round synchronously."""
        with self._round_lock:
            summary = PollRoundSummary(round_id=generate_round_id())
            started = time.monotonic()
            try:
                self._poll_sources(summary, cancel)
                if not summary.cancelled and self._should_regenerate(summary):
                    self._regenerate(summary, cancel)
            finally:
                self.state = ServiceState.IDLE
                summary.duration_s = time.monotonic() - started
                self.last_summary = summary

            LOGGER.info(
                "Round %s: %d changed, %d unchanged, %d failed%s%s",
                summary.round_id,
                len(summary.changed),
                len(summary.unchanged),
                len(summary.failed),
                f", published {summary.published_index}" if summary.published_index else "",
                ", cancelled" if summary.cancelled else "",
                extra={"round_id": summary.round_id, "stage": "round"},
            )
            return summary

    def _poll_sources(self, summary: PollRoundSummary, cancel: Optional[threading.Event]) -> None:
        self.state = ServiceState.POLLING
        for source in self.sources:
            if cancel is not None and cancel.is_set():
                summary.cancelled = True
                return
            extra = {"round_id": summary.round_id, "source": source.name, "stage": "ingest"}
            try:
                changed = self.coordinator.ingest_if_changed(source, cancel)
            except PollCancelled:
                summary.cancelled = True
                LOGGER.info("Round %s cancelled during %s", summary.round_id, source.name)
                return
            except Exception as exc:
                message = describe_failure(exc)
                summary.failed[source.name] = message
                LOGGER.warning(
                    "Source %s failed: %s",
                    source.name,
                    message,
                    exc_info=LOGGER.isEnabledFor(logging.DEBUG),
                    extra=extra,
                )
                continue

            if changed:
                summary.changed.append(source.name)
                self._set_pending(True)
                LOGGER.info(
                    "Source %s changed to %s",
                    source.name,
                    self.coordinator.get_version_key(source.name),
                    extra=extra,
                )
            else:
                summary.unchanged.append(source.name)
                LOGGER.debug("Source %s unchanged", source.name, extra=extra)

    def _should_regenerate(self, summary: PollRoundSummary) -> bool:
        if summary.any_changed:
            return True
        if self.regeneration_pending:
            LOGGER.info("Regenerating for stored changes not yet published")
            return True
        return False

    def _regenerate(self, summary: PollRoundSummary, cancel: Optional[threading.Event]) -> None:
        self.state = ServiceState.REGENERATING
        extra = {"round_id": summary.round_id, "stage": "regenerate"}
        paths = self.coordinator.snapshot_artifact_paths()
        if not paths:
            LOGGER.info("No stored artifacts yet, skipping regeneration", extra=extra)
            self._set_pending(False)
            return

        self._set_pending(True)
        summary.regenerated = True
        try:
            index_name = self.generator.generate(paths, cancel)
        except PollCancelled:
            summary.cancelled = True
            LOGGER.info("Regeneration cancelled; it will run again next round", extra=extra)
            return
        except Exception as exc:
            self._regeneration_failed(summary, exc, extra)
            return

        try:
            self.publication.publish(index_name)
        except Exception as exc:
            self._discard_index(index_name)
            self._regeneration_failed(summary, exc, extra)
            return

        self._set_pending(False)
        summary.published_index = index_name

    def _regeneration_failed(
        self, summary: PollRoundSummary, exc: Exception, extra: Dict[str, str]
    ) -> None:
        summary.regeneration_error = describe_failure(exc)
        LOGGER.error(
            "Regeneration failed, keeping index %s: %s",
            self.publication.current.name or "(none)",
            summary.regeneration_error,
            exc_info=exc,
            extra=extra,
        )
        if not self.retry_failed_regeneration:
            self._set_pending(False)

    def _discard_index(self, index_name: str) -> None:
        try:
            self.publication.store.delete_index(index_name)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to remove unpublished index %s: %s", index_name, exc)

    # -- repeating loop -----------------------------------------------------

    def run_forever(self, cancel: threading.Event) -> None:
        """Run rounds every ``interval_s`` until ``cancel`` is set."""
        LOGGER.info(
            "Poll loop started with %d source(s), interval %.0fs",
            len(self.sources),
            self.interval_s,
        )
        while not cancel.is_set():
            try:
                self.run_once(cancel)
            except Exception:
                LOGGER.exception("Poll round crashed; continuing with the next round")
            if cancel.wait(self.interval_s):
                break
        LOGGER.info("Poll loop stopped")

    def start(self) -> None:
        """Start the poll loop on a background thread."""
        if self.is_running:
            raise RuntimeError("poll loop already running")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            args=(self._stop,),
            name="complog-poll-loop",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal cancellation and wait for the loop thread to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                LOGGER.warning("Poll loop did not stop within %ss", timeout)
            else:
                self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


__all__ = ["ComplogUpdateService", "PollRoundSummary", "ServiceState", "IndexBuilder"]
