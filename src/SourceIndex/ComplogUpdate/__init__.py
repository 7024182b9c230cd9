"""
Compiler-log ingestion and publication engine.

Polls configured sources (local files, Azure Pipelines artifacts, GitHub
Actions artifacts), stores each source's newest compiler log, regenerates the
browsable index when anything changed, and swaps it in as the current index.

Example:
    from SourceIndex.ComplogUpdate import build_runtime, load_config

    config = load_config(path="complog.yaml")
    with build_runtime(config) as runtime:
        summary = runtime.service.run_once()
"""

from .bootstrap import ComplogRuntime, build_runtime
from .config import ComplogUpdateConfig, load_config
from .coordinator import IngestionCoordinator, StoredArtifact
from .errors import (
    ArchiveError,
    ComplogUpdateError,
    GenerationError,
    PollCancelled,
    ProviderError,
    PublicationError,
)
from .generator import IndexGenerator
from .publication import PublicationManager, RepositoryIndex
from .service import ComplogUpdateService, PollRoundSummary, ServiceState
from .store import ContentStore

__all__ = [
    "ComplogRuntime",
    "build_runtime",
    "ComplogUpdateConfig",
    "load_config",
    "IngestionCoordinator",
    "StoredArtifact",
    "ComplogUpdateError",
    "ProviderError",
    "ArchiveError",
    "GenerationError",
    "PublicationError",
    "PollCancelled",
    "IndexGenerator",
    "PublicationManager",
    "RepositoryIndex",
    "ComplogUpdateService",
    "PollRoundSummary",
    "ServiceState",
    "ContentStore",
]
