"""Source implementations; importing this package registers every kind."""

from .base import (
    BuildScanningSource,
    ComplogSource,
    IngestResult,
    build_sources,
    get_registry,
    get_source_class,
    register_source,
)
from .filesystem import FileSystemSource
from .pipeline import PipelineSource, pipeline_version_key
from .visited import VisitedBuildSet
from .workflow import WorkflowSource, workflow_version_key

__all__ = [
    "BuildScanningSource",
    "ComplogSource",
    "IngestResult",
    "build_sources",
    "get_registry",
    "get_source_class",
    "register_source",
    "FileSystemSource",
    "PipelineSource",
    "WorkflowSource",
    "VisitedBuildSet",
    "pipeline_version_key",
    "workflow_version_key",
]
