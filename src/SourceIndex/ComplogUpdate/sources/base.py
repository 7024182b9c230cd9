# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.sources.base",
#   "purpose": "Source registry, ingestion result type and the common source contract.",
#   "sections": [
#     {
#       "id": "ingestresult",
#       "name": "IngestResult",
#       "anchor": "class-ingestresult",
#       "kind": "class"
#     },
#     {
#       "id": "register-source",
#       "name": "register_source",
#       "anchor": "function-register-source",
#       "kind": "function"
#     },
#     {
#       "id": "get-source-class",
#       "name": "get_source_class",
#       "anchor": "function-get-source-class",
#       "kind": "function"
#     },
#     {
#       "id": "build-sources",
#       "name": "build_sources",
#       "anchor": "function-build-sources",
#       "kind": "function"
#     },
#     {
#       "id": "buildscanningsource",
#       "name": "BuildScanningSource",
#       "anchor": "class-buildscanningsource",
#       "kind": "class"
#     },
#     {
#       "id": "complogsource",
#       "name": "ComplogSource",
#       "anchor": "class-complogsource",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Source Registry

Every source kind registers itself with ``@register_source(kind)`` and exposes
``from_config``; :func:`build_sources` instantiates the configured sources in
configuration order, which is also the poll order.

All kinds share one contract: ``try_ingest(existing_key, cancel)`` returns an
:class:`IngestResult`, and ``commit(result)`` is called once that result has
been stored. Provider failures are raised, not swallowed; the poll
loop contains them per source.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Type

import httpx

from ..archive import extract_entry
from ..config.models import ComplogUpdateConfig, SourceConfig, SourceKind
from ..errors import ArchiveError, raise_if_cancelled
from ..providers.types import ArtifactDescriptor, BuildDescriptor, BuildProviderClient
from .visited import VisitedBuildSet, VisitKey

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ``try_ingest`` call.

    ``payload`` and ``version_key`` are set only when ``changed`` is true.
    ``visit_key`` identifies the CI build the payload came from; the source
    marks it visited in :meth:`commit`, once the payload is stored.
    """

    changed: bool
    version_key: Optional[str] = None
    payload: Optional[bytes] = None
    visit_key: Optional[VisitKey] = None

    @classmethod
    def unchanged(cls) -> "IngestResult":
        return cls(changed=False)

    @classmethod
    def changed_to(
        cls, version_key: str, payload: bytes, visit_key: Optional[VisitKey] = None
    ) -> "IngestResult":
        return cls(changed=True, version_key=version_key, payload=payload, visit_key=visit_key)


_SOURCE_REGISTRY: Dict[SourceKind, Type[Any]] = {}


def register_source(kind: SourceKind):
    """Decorator to register a source implementation for ``kind``."""

    def deco(cls: Type[Any]) -> Type[Any]:
        if kind in _SOURCE_REGISTRY:
            _LOGGER.warning("Overriding already-registered source kind: %s", kind.value)
        _SOURCE_REGISTRY[kind] = cls
        cls.kind = kind
        _LOGGER.debug("Registered source kind: %s -> %s", kind.value, cls.__name__)
        return cls

    return deco


def get_registry() -> Dict[SourceKind, Type[Any]]:
    """Get the source registry (copy)."""
    return dict(_SOURCE_REGISTRY)


def get_source_class(kind: SourceKind) -> Type[Any]:
    """Lookup the implementation registered for ``kind``."""
    if kind not in _SOURCE_REGISTRY:
        available = sorted(k.value for k in _SOURCE_REGISTRY)
        raise ValueError(f"Unknown source kind: {kind!r}. Available: {available}")
    return _SOURCE_REGISTRY[kind]


def build_sources(
    config: ComplogUpdateConfig,
    http_client: Optional[httpx.Client] = None,
) -> List["ComplogSource"]:
    """Build source instances from config, preserving configuration order."""
    sources: List[ComplogSource] = []

    for source_cfg in config.sources:
        source_cls = get_source_class(source_cfg.kind)
        inst = source_cls.from_config(source_cfg, config, http_client)
        sources.append(inst)
        _LOGGER.debug("Built source: %s (%s)", source_cfg.name, source_cfg.kind.value)

    _LOGGER.info(
        "Built %d source(s) in order: %s",
        len(sources),
        [f"{s.name}:{s.kind.value}" for s in sources],
    )
    return sources


class ComplogSource(Protocol):
    """Protocol for source implementations."""

    kind: ClassVar[SourceKind]
    name: str

    @classmethod
    def from_config(
        cls,
        source_cfg: SourceConfig,
        root_cfg: ComplogUpdateConfig,
        http_client: Optional[httpx.Client] = None,
    ) -> "ComplogSource":
        """Factory method to create a source from its configuration block."""
        ...

    def try_ingest(
        self, existing_key: Optional[str], cancel: Optional[threading.Event] = None
    ) -> IngestResult:
        """Fetch the newest artifact if its version key differs from ``existing_key``."""
        ...

    def commit(self, result: IngestResult) -> None:
        """Called after ``result`` has been stored."""
        ...


class BuildScanningSource:
    """Shared scan loop for sources backed by a CI provider.

    Builds are walked newest first, at most ``max_scan`` per poll. The walk
    stops at the build whose version key equals the stored one (the
    high-water mark), skips builds already in the visited set, and returns on
    the first build whose artifact yields the configured entry. Builds without a
    usable entry are marked visited during the scan. The build that yields a
    payload is marked only by :meth:`commit`, after the coordinator stored it,
    so a failed write or a cancellation leaves it eligible for the next poll.
    Provider errors propagate and leave the build unmarked.
    """

    kind: ClassVar[SourceKind]

    def __init__(
        self,
        name: str,
        client: BuildProviderClient,
        *,
        artifact_name: str,
        entry_name: str,
        max_scan: int,
        visited: VisitedBuildSet,
    ) -> None:
        self.name = name
        self.client = client
        self.artifact_name = artifact_name
        self.entry_name = entry_name
        self.max_scan = max_scan
        self.visited = visited

    def version_key(self, build: BuildDescriptor) -> str:
        raise NotImplementedError

    def pick_artifact(
        self, build: BuildDescriptor, matches: List[ArtifactDescriptor]
    ) -> Optional[ArtifactDescriptor]:
        return matches[0] if matches else None

    def try_ingest(
        self, existing_key: Optional[str], cancel: Optional[threading.Event] = None
    ) -> IngestResult:
        for build in self.client.iter_completed_builds(self.max_scan, cancel):
            raise_if_cancelled(cancel)
            key = self.version_key(build)
            if key == existing_key:
                _LOGGER.debug("Source %s: reached high-water mark %s", self.name, key)
                break
            if build.visit_key in self.visited:
                continue

            payload = self._inspect(build, cancel)
            if payload is not None:
                return IngestResult.changed_to(key, payload, build.visit_key)
            self.visited.add(build.visit_key)

        return IngestResult.unchanged()

    def commit(self, result: IngestResult) -> None:
        if result.visit_key is not None:
            self.visited.add(result.visit_key)

    def _inspect(
        self, build: BuildDescriptor, cancel: Optional[threading.Event]
    ) -> Optional[bytes]:
        matches = [
            a for a in self.client.list_artifacts(build, cancel) if a.name == self.artifact_name
        ]
        artifact = self.pick_artifact(build, matches)
        if artifact is None:
            return None

        raise_if_cancelled(cancel)
        with self.client.download_artifact(build, artifact, cancel) as archive:
            try:
                payload = extract_entry(archive, self.entry_name)
            except ArchiveError as exc:
                _LOGGER.warning(
                    "Source %s: skipping build %s, unreadable artifact %s: %s",
                    self.name,
                    build.number,
                    artifact.name,
                    exc,
                )
                return None

        if payload is None:
            _LOGGER.info(
                "Source %s: build %s artifact %s has no entry %s",
                self.name,
                build.number,
                artifact.name,
                self.entry_name,
            )
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


__all__ = [
    "IngestResult",
    "ComplogSource",
    "BuildScanningSource",
    "register_source",
    "get_registry",
    "get_source_class",
    "build_sources",
]
