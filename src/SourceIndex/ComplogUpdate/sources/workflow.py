"""Source ingesting a compiler log from GitHub Actions workflow artifacts."""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from ..config.models import ComplogUpdateConfig, SourceConfig, SourceKind, WorkflowSourceConfig
from ..providers.github_actions import GitHubActionsClient
from ..providers.types import ArtifactDescriptor, BuildDescriptor, BuildProviderClient
from .base import BuildScanningSource, register_source
from .visited import VisitedBuildSet

LOGGER = logging.getLogger(__name__)


def workflow_version_key(run: BuildDescriptor) -> str:
    """The run id, with ``/attempt-N`` appended for re-run attempts."""
    if run.attempt > 1:
        return f"{run.build_id}/attempt-{run.attempt}"
    return str(run.build_id)


@register_source(SourceKind.WORKFLOW)
class WorkflowSource(BuildScanningSource):
    """Newest completed, non pull-request run with exactly one matching artifact.

    The file sits at the root of the artifact zip.
    """

    def __init__(
        self,
        name: str,
        settings: WorkflowSourceConfig,
        client: BuildProviderClient,
        *,
        max_scan: int = 50,
        visited: Optional[VisitedBuildSet] = None,
    ) -> None:
        super().__init__(
            name,
            client,
            artifact_name=settings.artifact_name,
            entry_name=settings.file_name,
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
    ) -> "WorkflowSource":
        if source_cfg.workflow is None:
            raise ValueError(f"Source {source_cfg.name!r} has no workflow block")
        if http_client is None:
            raise ValueError(f"Workflow source {source_cfg.name!r} requires an HTTP client")
        client = GitHubActionsClient(
            http_client,
            source_cfg.workflow,
            root_cfg.providers,
            root_cfg.retry,
            root_cfg.http,
        )
        return cls(
            source_cfg.name,
            source_cfg.workflow,
            client,
            max_scan=root_cfg.poll.workflow_max_scan,
            visited=VisitedBuildSet(root_cfg.poll.visited_max_size),
        )

    def version_key(self, build: BuildDescriptor) -> str:
        return workflow_version_key(build)

    def pick_artifact(
        self, build: BuildDescriptor, matches: List[ArtifactDescriptor]
    ) -> Optional[ArtifactDescriptor]:
        if len(matches) == 1:
            return matches[0]
        if matches:
            LOGGER.warning(
                "Source %s: run %s has %d artifacts named %s, skipping",
                self.name,
                build.build_id,
                len(matches),
                self.artifact_name,
            )
        return None


__all__ = ["WorkflowSource", "workflow_version_key"]
