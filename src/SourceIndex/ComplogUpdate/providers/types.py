"""Descriptors returned by the CI provider clients."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, List, Optional, Protocol


@dataclass(frozen=True)
class BuildDescriptor:
    """One completed pipeline build or workflow run.

    Attributes:
        build_id: Provider-assigned numeric identifier
        number: Human-facing build number (Azure ``buildNumber``, GitHub ``run_number``)
        finish_time: Completion time in UTC, when the provider reports one
        event: Trigger event (GitHub only)
        attempt: Re-run attempt, 1 for the first run
    """

    build_id: int
    number: str
    finish_time: Optional[datetime]
    event: Optional[str] = None
    attempt: int = 1

    @property
    def visit_key(self) -> tuple[int, Optional[datetime]]:
        return (self.build_id, self.finish_time)


@dataclass(frozen=True)
class ArtifactDescriptor:
    """A named artifact attached to a build."""

    artifact_id: str
    name: str
    download_url: Optional[str] = None


class BuildProviderClient(Protocol):
    """Operations the CI-backed sources consume from a provider."""

    def iter_completed_builds(
        self, max_count: int, cancel: Optional[threading.Event] = None
    ) -> Iterator[BuildDescriptor]: ...

    def list_artifacts(
        self, build: BuildDescriptor, cancel: Optional[threading.Event] = None
    ) -> List[ArtifactDescriptor]: ...

    def download_artifact(
        self,
        build: BuildDescriptor,
        artifact: ArtifactDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> BinaryIO: ...


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 provider timestamp into an aware UTC datetime.

    Azure DevOps reports up to seven fractional digits, which
    :meth:`datetime.fromisoformat` rejects on older interpreters, so the
    fraction is trimmed to microseconds first.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


__all__ = ["BuildDescriptor", "ArtifactDescriptor", "BuildProviderClient", "parse_timestamp"]
