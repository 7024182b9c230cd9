"""GitHub Actions client used by workflow sources."""

from __future__ import annotations

import logging
import threading
from typing import Any, BinaryIO, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx

from ..config.models import HttpClientConfig, ProvidersConfig, RetryPolicy, WorkflowSourceConfig
from ..errors import ProviderError, raise_if_cancelled
from ..retries import decode_json, request_with_retries, stream_to_tempfile
from .types import ArtifactDescriptor, BuildDescriptor, parse_timestamp

LOGGER = logging.getLogger(__name__)

PROVIDER_NAME = "github"
API_VERSION = "2022-11-28"
PULL_REQUEST_EVENTS = frozenset({"pull_request", "pull_request_target"})
MAX_PAGE_SIZE = 100


class GitHubActionsClient:
    """Workflow run and artifact queries for one workflow file."""

    def __init__(
        self,
        http_client: httpx.Client,
        source: WorkflowSourceConfig,
        providers: ProvidersConfig,
        retry: RetryPolicy,
        http: Optional[HttpClientConfig] = None,
    ) -> None:
        self._http = http_client
        self._source = source
        self._retry = retry
        self._chunk_bytes = (http or HttpClientConfig()).download_chunk_bytes
        self._repo_url = (
            f"{providers.github_api_url}/repos/{quote(source.owner, safe='')}"
            f"/{quote(source.repo, safe='')}/actions"
        )
        self._headers: Dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if providers.github_token is not None:
            self._headers["Authorization"] = f"Bearer {providers.github_token.get_secret_value()}"

    def _get_json(
        self, url: str, params: Dict[str, Any], cancel: Optional[threading.Event]
    ) -> Any:
        response = request_with_retries(
            self._http,
            "GET",
            url,
            provider=PROVIDER_NAME,
            policy=self._retry,
            cancel=cancel,
            params=params,
            headers=self._headers,
        )
        return decode_json(response, PROVIDER_NAME)

    def _items(self, payload: Any, key: str, url: str) -> List[Dict[str, Any]]:
        items = payload.get(key) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ProviderError(
                f"expected a '{key}' array in the response",
                provider=PROVIDER_NAME,
                reason="bad-response",
                url=url,
            )
        return items

    def iter_completed_builds(
        self, max_count: int, cancel: Optional[threading.Event] = None
    ) -> Iterator[BuildDescriptor]:
        """Yield completed, non pull-request runs newest first.

        ``max_count`` bounds the number of runs inspected, filtered runs included.
        """
        url = f"{self._repo_url}/workflows/{quote(self._source.workflow_file_name, safe='')}/runs"
        scanned = 0
        page = 1
        while scanned < max_count:
            raise_if_cancelled(cancel)
            per_page = min(MAX_PAGE_SIZE, max_count - scanned)
            payload = self._get_json(
                url, {"status": "completed", "per_page": per_page, "page": page}, cancel
            )
            runs = self._items(payload, "workflow_runs", url)
            if not runs:
                return

            for item in runs:
                scanned += 1
                event = item.get("event")
                if event in PULL_REQUEST_EVENTS:
                    LOGGER.debug("Skipping %s run %s", event, item.get("id"))
                else:
                    try:
                        run = BuildDescriptor(
                            build_id=int(item["id"]),
                            number=str(item.get("run_number", item["id"])),
                            finish_time=parse_timestamp(item.get("updated_at")),
                            event=event,
                            attempt=int(item.get("run_attempt") or 1),
                        )
                    except (KeyError, TypeError, ValueError) as exc:
                        raise ProviderError(
                            f"malformed workflow run entry: {exc}",
                            provider=PROVIDER_NAME,
                            reason="bad-response",
                            url=url,
                        ) from exc
                    yield run
                if scanned >= max_count:
                    return

            if len(runs) < per_page:
                return
            page += 1

    def list_artifacts(
        self, build: BuildDescriptor, cancel: Optional[threading.Event] = None
    ) -> List[ArtifactDescriptor]:
        """List unexpired artifacts of ``build`` named like the configured artifact."""
        url = f"{self._repo_url}/runs/{build.build_id}/artifacts"
        payload = self._get_json(
            url, {"name": self._source.artifact_name, "per_page": MAX_PAGE_SIZE}, cancel
        )
        artifacts: List[ArtifactDescriptor] = []
        for item in self._items(payload, "artifacts", url):
            if item.get("expired"):
                continue
            name = item.get("name")
            if not isinstance(name, str):
                continue
            artifacts.append(
                ArtifactDescriptor(
                    artifact_id=str(item.get("id", name)),
                    name=name,
                    download_url=item.get("archive_download_url") or None,
                )
            )
        return artifacts

    def download_artifact(
        self,
        build: BuildDescriptor,
        artifact: ArtifactDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> BinaryIO:
        url = artifact.download_url or f"{self._repo_url}/artifacts/{artifact.artifact_id}/zip"
        LOGGER.debug("Downloading artifact %s of run %s", artifact.name, build.build_id)
        return stream_to_tempfile(
            self._http,
            url,
            provider=PROVIDER_NAME,
            policy=self._retry,
            cancel=cancel,
            headers=self._headers,
            chunk_bytes=self._chunk_bytes,
        )


__all__ = ["GitHubActionsClient", "PROVIDER_NAME", "PULL_REQUEST_EVENTS"]
