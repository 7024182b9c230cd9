"""Bootstrap for the compiler-log update engine.

**Purpose**
-----------
Wires a :class:`ComplogUpdateConfig` into a runnable service:
1. Lay out the content store under ``root_dir``
2. Restore per-source version keys and the current index from disk
3. Build the shared HTTPX client
4. Materialize sources in configured order
5. Build the index generator and the poll-loop service

The returned :class:`ComplogRuntime` owns the HTTP client; call
:meth:`ComplogRuntime.close` (or use it as a context manager) when done.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx

from .config.models import ComplogUpdateConfig
from .coordinator import IngestionCoordinator
from .generator import IndexGenerator
from .http_session import build_http_client
from .publication import PublicationManager
from .service import ComplogUpdateService, IndexBuilder
from .sources import ComplogSource, build_sources
from .store import ContentStore

LOGGER = logging.getLogger(__name__)


@dataclass
class ComplogRuntime:
    config: ComplogUpdateConfig
    store: ContentStore
    coordinator: IngestionCoordinator
    publication: PublicationManager
    sources: List[ComplogSource]
    service: ComplogUpdateService
    http_client: httpx.Client

    def close(self) -> None:
        if self.service.is_running:
            self.service.stop(timeout=self.config.poll.interval_s)
        self.http_client.close()

    def __enter__(self) -> "ComplogRuntime":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_runtime(
    config: ComplogUpdateConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    generator: Optional[IndexBuilder] = None,
) -> ComplogRuntime:
    """Assemble every component from ``config``.

    Args:
        config: Validated configuration
        transport: HTTP transport override (tests use ``httpx.MockTransport``)
        generator: Index generator override; defaults to :class:`IndexGenerator`
    """
    store = ContentStore(Path(config.root_dir).expanduser())
    store.ensure_layout()

    coordinator = IngestionCoordinator(store)
    coordinator.restore(source.name for source in config.sources)

    publication = PublicationManager(store)
    publication.restore()

    http_client = build_http_client(config.http, transport=transport)
    try:
        sources = build_sources(config, http_client)
    except Exception:
        http_client.close()
        raise

    service = ComplogUpdateService(
        sources,
        coordinator,
        publication,
        generator or IndexGenerator(config.generator, store),
        interval_s=config.poll.interval_s,
        retry_failed_regeneration=config.poll.retry_failed_regeneration,
    )

    LOGGER.info(
        "Runtime ready: root=%s sources=%d current_index=%s regeneration_pending=%s config=%s",
        store.root,
        len(sources),
        publication.current.name or "(none)",
        service.regeneration_pending,
        config.config_hash()[:8],
    )
    return ComplogRuntime(
        config=config,
        store=store,
        coordinator=coordinator,
        publication=publication,
        sources=sources,
        service=service,
        http_client=http_client,
    )


__all__ = ["ComplogRuntime", "build_runtime"]
