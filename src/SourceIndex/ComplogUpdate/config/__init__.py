"""
ComplogUpdate Configuration Package

Public API for loading, validating, and introspecting the update engine configuration.

Example:
    from SourceIndex.ComplogUpdate.config import load_config, ComplogUpdateConfig

    # Load from file with env/CLI overrides
    config = load_config(
        path="complog.yaml",
        cli_overrides={"poll": {"interval_s": 30}}
    )

    # Get config hash for reproducibility
    config_id = config.config_hash()

    # Export schema for documentation
    from SourceIndex.ComplogUpdate.config import export_config_schema
    schema = export_config_schema()
"""

from .loader import (
    export_config_schema,
    load_config,
    validate_config_file,
)
from .models import (
    ComplogUpdateConfig,
    FileSourceConfig,
    GeneratorConfig,
    HttpClientConfig,
    LoggingConfig,
    PipelineSourceConfig,
    PollConfig,
    ProvidersConfig,
    RetryPolicy,
    SourceConfig,
    SourceKind,
    WorkflowSourceConfig,
)

__all__ = [
    # Models
    "ComplogUpdateConfig",
    "PollConfig",
    "HttpClientConfig",
    "RetryPolicy",
    "ProvidersConfig",
    "GeneratorConfig",
    "LoggingConfig",
    "SourceConfig",
    "SourceKind",
    "FileSourceConfig",
    "PipelineSourceConfig",
    "WorkflowSourceConfig",
    # Loading/validation
    "load_config",
    "validate_config_file",
    "export_config_schema",
]
