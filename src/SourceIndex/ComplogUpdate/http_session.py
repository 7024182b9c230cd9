# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.http_session",
#   "purpose": "Shared HTTP client factory for CI provider calls",
#   "sections": [
#     {
#       "id": "build-http-client",
#       "name": "build_http_client",
#       "anchor": "function-build-http-client",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""HTTP client factory for the CI provider adapters.

One client is created per service runtime and handed to every pipeline and
workflow source, so TCP/TLS connections are reused across sources and poll
rounds. Provider-specific credentials are attached per request by the provider
clients, never on the shared client.

Tests pass an :class:`httpx.MockTransport` through ``transport``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config.models import HttpClientConfig

LOGGER = logging.getLogger(__name__)


def build_http_client(
    config: Optional[HttpClientConfig] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """
    Create the HTTP client shared by all provider-backed sources.

    **Parameters**

        config : HttpClientConfig, optional
            Timeouts, TLS verification, pool size and User-Agent.
        transport : httpx.BaseTransport, optional
            Transport override (tests use ``httpx.MockTransport``).

    **Returns**

        httpx.Client
            Client following redirects, since artifact downloads redirect to
            blob storage.
    """
    cfg = config or HttpClientConfig()

    timeout = httpx.Timeout(
        timeout=cfg.timeout_read_s,
        connect=cfg.timeout_connect_s,
    )

    client = httpx.Client(
        timeout=timeout,
        verify=cfg.verify_tls,
        headers={"User-Agent": cfg.user_agent},
        limits=httpx.Limits(
            max_connections=cfg.max_connections,
            max_keepalive_connections=cfg.max_connections,
        ),
        follow_redirects=True,
        transport=transport,
    )

    LOGGER.debug(
        "HTTP client created: UA=%s, timeout=%ss, pool_size=%s",
        cfg.user_agent,
        cfg.timeout_read_s,
        cfg.max_connections,
    )
    return client


__all__ = ["build_http_client"]
