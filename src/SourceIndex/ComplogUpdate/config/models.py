"""
Pydantic v2 Configuration Models for ComplogUpdate

Provides strict, typed configuration for the update engine:
- Poll loop cadence and scan caps
- HTTP client settings (timeouts, TLS, user agent)
- Retry and backoff policy for provider calls
- Provider endpoints and opaque credentials
- External index generator invocation
- Logging sinks
- The ordered list of compiler-log sources
- Top-level ComplogUpdateConfig as single source of truth

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

_SOURCE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# ============================================================================
# Shared Policy Models
# ============================================================================


class RetryPolicy(BaseModel):
    """Configuration for provider request retry behavior."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    retry_statuses: List[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="HTTP status codes that trigger retry",
    )
    max_attempts: int = Field(default=4, description="Maximum attempts per request")
    backoff_multiplier_s: float = Field(default=0.5, description="Exponential backoff multiplier")
    max_backoff_s: float = Field(default=30.0, description="Maximum single backoff in seconds")
    retry_after_cap_s: float = Field(default=120.0, description="Maximum Retry-After honoured")
    max_total_s: float = Field(
        default=0.0, description="Wall-clock budget across attempts (0 = unlimited)"
    )

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("backoff_multiplier_s", "max_backoff_s", "retry_after_cap_s", "max_total_s")
    @classmethod
    def validate_delays(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delay values must be >= 0")
        return v


class HttpClientConfig(BaseModel):
    """Configuration for HTTP client behavior."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(
        default="SourceIndex/ComplogUpdate", description="User-Agent string"
    )
    timeout_connect_s: float = Field(default=10.0, description="Connection timeout in seconds")
    timeout_read_s: float = Field(default=120.0, description="Read timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")
    max_connections: int = Field(default=10, description="Connection pool size")
    download_chunk_bytes: int = Field(default=1 << 20, description="Artifact stream chunk size")

    @field_validator("timeout_connect_s", "timeout_read_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v

    @field_validator("max_connections", "download_chunk_bytes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be > 0")
        return v


class ProvidersConfig(BaseModel):
    """Endpoints and opaque credentials for the CI providers."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    azure_devops_url: str = Field(
        default="https://dev.azure.com", description="Azure DevOps base URL"
    )
    azure_devops_api_version: str = Field(default="7.1", description="Azure DevOps api-version")
    azure_devops_token: Optional[SecretStr] = Field(
        default=None, description="Personal access token presented as HTTP Basic password"
    )
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API URL")
    github_token: Optional[SecretStr] = Field(
        default=None, description="Token presented as a Bearer credential"
    )

    @field_validator("azure_devops_url", "github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class PollConfig(BaseModel):
    """Poll loop cadence and per-provider scan caps."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    interval_s: float = Field(default=60.0, description="Delay between poll rounds")
    pipeline_max_scan: int = Field(default=100, description="Builds scanned per pipeline poll")
    workflow_max_scan: int = Field(default=50, description="Runs scanned per workflow poll")
    visited_max_size: int = Field(default=1000, description="Visited-build set bound")
    retry_failed_regeneration: bool = Field(
        default=True,
        description="Regenerate on the next round after a failed regeneration",
    )

    @field_validator("interval_s")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_s must be > 0")
        return v

    @field_validator("pipeline_max_scan", "workflow_max_scan")
    @classmethod
    def validate_scan(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scan caps must be >= 1")
        return v

    @field_validator("visited_max_size")
    @classmethod
    def validate_visited(cls, v: int) -> int:
        if v < 2:
            raise ValueError("visited_max_size must be >= 2")
        return v


class GeneratorConfig(BaseModel):
    """How to invoke the external index generator."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    command: List[str] = Field(
        default_factory=lambda: ["dotnet", "exec", "HtmlGenerator.dll"],
        description="Argument vector prefix; artifact paths are appended",
    )
    output_argument: str = Field(
        default="/out:{out_dir}", description="Output directory argument template"
    )
    extra_args: List[str] = Field(default_factory=list, description="Trailing arguments")
    timeout_s: Optional[float] = Field(default=None, description="Generation deadline")
    working_dir: Optional[str] = Field(
        default=None, description="Working directory (defaults to root_dir)"
    )

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("command must not be empty")
        return v

    @field_validator("output_argument")
    @classmethod
    def validate_output_argument(cls, v: str) -> str:
        if "{out_dir}" not in v:
            raise ValueError("output_argument must contain the {out_dir} placeholder")
        return v

    @field_validator("timeout_s")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeout_s must be > 0 or None")
        return v


class LoggingConfig(BaseModel):
    """Logging level and optional JSON-lines file sink."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: str = Field(default="INFO", description="Root level for the engine loggers")
    log_dir: Optional[str] = Field(default=None, description="Directory for JSON-lines logs")
    max_log_size_mb: float = Field(default=5.0, description="Rotation size")
    retention_days: int = Field(default=7, description="Days before old logs are compressed")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Invalid level: {v}. Must be in {sorted(valid)}")
        return v.upper()


# ============================================================================
# Source Models
# ============================================================================


class SourceKind(str, Enum):
    """Discriminator for the supported ingestion origins."""

    FILESYSTEM = "file"
    PIPELINE = "pipeline"
    WORKFLOW = "workflow"


class FileSourceConfig(BaseModel):
    """A compiler log read from a local path."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    path: str = Field(description="Path of the compiler log on disk")


class PipelineSourceConfig(BaseModel):
    """A compiler log published as an Azure Pipelines build artifact."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    organization: str
    project: str
    definition: int = Field(description="Pipeline definition id")
    artifact_name: str
    file_name: str


class WorkflowSourceConfig(BaseModel):
    """A compiler log published as a GitHub Actions workflow artifact."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    owner: str
    repo: str
    workflow_file_name: str = Field(description="Workflow file, e.g. build.yml")
    artifact_name: str
    file_name: str


class SourceConfig(BaseModel):
    """One named ingestion origin; exactly one of file/pipeline/workflow is set."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    name: str = Field(description="Unique source name, used as storage namespace")
    file: Optional[FileSourceConfig] = None
    pipeline: Optional[PipelineSourceConfig] = None
    workflow: Optional[WorkflowSourceConfig] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _SOURCE_NAME_RE.match(v):
            raise ValueError(f"Invalid source name {v!r}: use letters, digits, '.', '_' or '-'")
        return v

    @model_validator(mode="after")
    def validate_single_kind(self) -> "SourceConfig":
        populated = [b for b in (self.file, self.pipeline, self.workflow) if b is not None]
        if len(populated) != 1:
            raise ValueError(
                f"Source {self.name!r} must define exactly one of file, pipeline or workflow"
            )
        return self

    @property
    def kind(self) -> SourceKind:
        if self.file is not None:
            return SourceKind.FILESYSTEM
        if self.pipeline is not None:
            return SourceKind.PIPELINE
        return SourceKind.WORKFLOW


# ============================================================================
# Top-Level Configuration
# ============================================================================


class ComplogUpdateConfig(BaseModel):
    """
    Single source of truth for ComplogUpdate configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    root_dir: str = Field(default="data/complog", description="Root of the persisted layout")
    poll: PollConfig = Field(default_factory=PollConfig, description="Poll loop configuration")
    http: HttpClientConfig = Field(
        default_factory=HttpClientConfig, description="HTTP client configuration"
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy, description="Provider retry policy")
    providers: ProvidersConfig = Field(
        default_factory=ProvidersConfig, description="Provider endpoints and credentials"
    )
    generator: GeneratorConfig = Field(
        default_factory=GeneratorConfig, description="External index generator"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging setup")
    sources: List[SourceConfig] = Field(
        default_factory=list, description="Sources in poll order"
    )

    @field_validator("sources")
    @classmethod
    def validate_unique_names(cls, v: List[SourceConfig]) -> List[SourceConfig]:
        seen: set[str] = set()
        for source in v:
            if source.name in seen:
                raise ValueError(f"Duplicate source name: {source.name!r}")
            seen.add(source.name)
        return v

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Secrets are dumped in their masked form and do not influence the hash.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        import hashlib
        import json

        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
