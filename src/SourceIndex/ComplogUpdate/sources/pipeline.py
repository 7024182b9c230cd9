"""Source ingesting a compiler log from Azure Pipelines build artifacts."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config.models import ComplogUpdateConfig, PipelineSourceConfig, SourceConfig, SourceKind
from ..providers.azure_devops import AzureDevOpsClient
from ..providers.types import BuildDescriptor, BuildProviderClient
from .base import BuildScanningSource, register_source
from .visited import VisitedBuildSet

LOGGER = logging.getLogger(__name__)


def pipeline_version_key(org: str, project: str, build: BuildDescriptor) -> str:
    """``org/project/buildNumber``, suffixed with the UTC finish time when known.

    The suffix makes a build that finishes again (a retried stage) produce a
    new key exactly once.
    """
    key = f"{org}/{project}/{build.number}"
    if build.finish_time is not None:
        key += f"@{build.finish_time:%Y%m%dT%H%M%SZ}"
    return key


@register_source(SourceKind.PIPELINE)
class PipelineSource(BuildScanningSource):
    """Newest completed build of a definition whose artifact holds the file.

    Pipeline artifacts nest their files under the artifact name, so the zip
    entry read is ``<artifact_name>/<file_name>``.
    """

    def __init__(
        self,
        name: str,
        settings: PipelineSourceConfig,
        client: BuildProviderClient,
        *,
        max_scan: int = 100,
        visited: Optional[VisitedBuildSet] = None,
    ) -> None:
        super().__init__(
            name,
            client,
            artifact_name=settings.artifact_name,
            entry_name=f"{settings.artifact_name}/{settings.file_name}",
            max_scan=max_scan,
            visited=visited if visited is not None else VisitedBuildSet(),
        )
        self.settings = settings

    @classmethod
    def from_config(
        cls,
        source_cfg: SourceConfig,
        root_cfg: ComplogUpdateConfig,
        http_client: Optional[httpx.Client] = None,
    ) -> "PipelineSource":
        if source_cfg.pipeline is None:
            raise ValueError(f"Source {source_cfg.name!r} has no pipeline block")
        if http_client is None:
            raise ValueError(f"Pipeline source {source_cfg.name!r} requires an HTTP client")
        client = AzureDevOpsClient(
            http_client,
            source_cfg.pipeline,
            root_cfg.providers,
            root_cfg.retry,
            root_cfg.http,
        )
        return cls(
            source_cfg.name,
            source_cfg.pipeline,
            client,
            max_scan=root_cfg.poll.pipeline_max_scan,
            visited=VisitedBuildSet(root_cfg.poll.visited_max_size),
        )

    def version_key(self, build: BuildDescriptor) -> str:
        return pipeline_version_key(self.settings.organization, self.settings.project, build)


__all__ = ["PipelineSource", "pipeline_version_key"]
