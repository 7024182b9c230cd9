"""CI provider clients consumed by the pipeline and workflow sources."""

from .azure_devops import AzureDevOpsClient
from .github_actions import GitHubActionsClient
from .types import ArtifactDescriptor, BuildDescriptor, BuildProviderClient, parse_timestamp

__all__ = [
    "AzureDevOpsClient",
    "GitHubActionsClient",
    "ArtifactDescriptor",
    "BuildDescriptor",
    "BuildProviderClient",
    "parse_timestamp",
]
