"""Azure DevOps build client used by pipeline sources.

Only the three calls the pipeline source needs are implemented: list completed
builds of one definition (newest first, paged with continuation tokens), list a
build's artifacts, and download an artifact as a zip archive.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, BinaryIO, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx

from ..config.models import HttpClientConfig, PipelineSourceConfig, ProvidersConfig, RetryPolicy
from ..errors import ProviderError, raise_if_cancelled
from ..retries import decode_json, request_with_retries, stream_to_tempfile
from .types import ArtifactDescriptor, BuildDescriptor, parse_timestamp

LOGGER = logging.getLogger(__name__)

PROVIDER_NAME = "azure-devops"
CONTINUATION_HEADER = "x-ms-continuationtoken"


class AzureDevOpsClient:
    """Build and artifact queries for one pipeline definition."""

    def __init__(
        self,
        http_client: httpx.Client,
        source: PipelineSourceConfig,
        providers: ProvidersConfig,
        retry: RetryPolicy,
        http: Optional[HttpClientConfig] = None,
    ) -> None:
        self._http = http_client
        self._source = source
        self._retry = retry
        self._api_version = providers.azure_devops_api_version
        self._chunk_bytes = (http or HttpClientConfig()).download_chunk_bytes
        self._project_url = (
            f"{providers.azure_devops_url}/{quote(source.organization, safe='')}"
            f"/{quote(source.project, safe='')}/_apis/build/builds"
        )
        token = providers.azure_devops_token
        self._auth: Optional[httpx.Auth] = (
            httpx.BasicAuth("", token.get_secret_value()) if token is not None else None
        )

    def _get_json(
        self, url: str, params: Dict[str, Any], cancel: Optional[threading.Event]
    ) -> tuple[Any, httpx.Response]:
        response = request_with_retries(
            self._http,
            "GET",
            url,
            provider=PROVIDER_NAME,
            policy=self._retry,
            cancel=cancel,
            params=params,
            auth=self._auth,
            headers={"Accept": "application/json"},
        )
        return decode_json(response, PROVIDER_NAME), response

    def _values(self, payload: Any, url: str) -> List[Dict[str, Any]]:
        values = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(values, list):
            raise ProviderError(
                "expected a 'value' array in the response",
                provider=PROVIDER_NAME,
                reason="bad-response",
                url=url,
            )
        return values

    def iter_completed_builds(
        self, max_count: int, cancel: Optional[threading.Event] = None
    ) -> Iterator[BuildDescriptor]:
        """Yield completed builds newest first, fetching pages on demand."""
        yielded = 0
        continuation: Optional[str] = None
        while yielded < max_count:
            raise_if_cancelled(cancel)
            params: Dict[str, Any] = {
                "definitions": self._source.definition,
                "statusFilter": "completed",
                "queryOrder": "finishTimeDescending",
                "$top": max_count - yielded,
                "api-version": self._api_version,
            }
            if continuation:
                params["continuationToken"] = continuation
            payload, response = self._get_json(self._project_url, params, cancel)

            for item in self._values(payload, self._project_url):
                try:
                    build = BuildDescriptor(
                        build_id=int(item["id"]),
                        number=str(item.get("buildNumber") or item["id"]),
                        finish_time=parse_timestamp(item.get("finishTime")),
                    )
                except (KeyError, TypeError, ValueError) as exc:
                    raise ProviderError(
                        f"malformed build entry: {exc}",
                        provider=PROVIDER_NAME,
                        reason="bad-response",
                        url=self._project_url,
                    ) from exc
                yield build
                yielded += 1
                if yielded >= max_count:
                    return

            continuation = response.headers.get(CONTINUATION_HEADER)
            if not continuation:
                return

    def list_artifacts(
        self, build: BuildDescriptor, cancel: Optional[threading.Event] = None
    ) -> List[ArtifactDescriptor]:
        url = f"{self._project_url}/{build.build_id}/artifacts"
        payload, _ = self._get_json(url, {"api-version": self._api_version}, cancel)
        artifacts: List[ArtifactDescriptor] = []
        for item in self._values(payload, url):
            name = item.get("name")
            if not isinstance(name, str):
                continue
            resource = item.get("resource") or {}
            artifacts.append(
                ArtifactDescriptor(
                    artifact_id=str(item.get("id", name)),
                    name=name,
                    download_url=resource.get("downloadUrl") or None,
                )
            )
        return artifacts

    def download_artifact(
        self,
        build: BuildDescriptor,
        artifact: ArtifactDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> BinaryIO:
        """Download ``artifact`` as a zip archive into a temporary file."""
        if artifact.download_url:
            url = artifact.download_url
        else:
            url = str(
                httpx.URL(
                    f"{self._project_url}/{build.build_id}/artifacts",
                    params={
                        "artifactName": artifact.name,
                        "$format": "zip",
                        "api-version": self._api_version,
                    },
                )
            )
        LOGGER.debug("Downloading artifact %s of build %s", artifact.name, build.number)
        return stream_to_tempfile(
            self._http,
            url,
            provider=PROVIDER_NAME,
            policy=self._retry,
            cancel=cancel,
            auth=self._auth,
            chunk_bytes=self._chunk_bytes,
        )


__all__ = ["AzureDevOpsClient", "PROVIDER_NAME"]
