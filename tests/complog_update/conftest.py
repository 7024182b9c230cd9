"""Shared fixtures for ComplogUpdate tests."""

from __future__ import annotations

import io
import logging
import os
import threading
import zipfile
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence

import pytest

from SourceIndex.ComplogUpdate.config.models import RetryPolicy
from SourceIndex.ComplogUpdate.errors import GenerationError
from SourceIndex.ComplogUpdate.logging_config import ROOT_LOGGER_NAME
from SourceIndex.ComplogUpdate.providers.types import ArtifactDescriptor, BuildDescriptor
from SourceIndex.ComplogUpdate.store import ContentStore


def build_zip(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


class FakeProviderClient:
    """In-memory provider: builds newest first, artifacts and zip payloads per build."""

    def __init__(self) -> None:
        self.builds: List[BuildDescriptor] = []
        self.artifacts: Dict[int, List[ArtifactDescriptor]] = {}
        self.archives: Dict[tuple, bytes] = {}
        self.fail_listing: Optional[Exception] = None
        self.listed_builds = 0
        self.artifact_calls: List[int] = []
        self.download_calls: List[tuple] = []

    def add_build(
        self,
        build: BuildDescriptor,
        archives: Optional[Dict[str, bytes]] = None,
    ) -> None:
        """Register ``build`` as the newest build, with ``{artifact name: zip bytes}``."""
        self.builds.insert(0, build)
        self.artifacts[build.build_id] = []
        for name, payload in (archives or {}).items():
            self.artifacts[build.build_id].append(ArtifactDescriptor(name, name))
            self.archives[(build.build_id, name)] = payload

    def iter_completed_builds(
        self, max_count: int, cancel: Optional[threading.Event] = None
    ) -> Iterator[BuildDescriptor]:
        if self.fail_listing is not None:
            raise self.fail_listing
        for build in self.builds[:max_count]:
            self.listed_builds += 1
            yield build

    def list_artifacts(
        self, build: BuildDescriptor, cancel: Optional[threading.Event] = None
    ) -> List[ArtifactDescriptor]:
        self.artifact_calls.append(build.build_id)
        return list(self.artifacts.get(build.build_id, []))

    def download_artifact(
        self,
        build: BuildDescriptor,
        artifact: ArtifactDescriptor,
        cancel: Optional[threading.Event] = None,
    ) -> BinaryIO:
        self.download_calls.append((build.build_id, artifact.name))
        return io.BytesIO(self.archives[(build.build_id, artifact.artifact_id)])


class FakeGenerator:
    """Index builder that writes one marker file per input path."""

    def __init__(self, store: ContentStore) -> None:
        self.store = store
        self.calls: List[List[Path]] = []
        self.fail_with: Optional[Exception] = None

    def generate(
        self, artifact_paths: Sequence[Path], cancel: Optional[threading.Event] = None
    ) -> str:
        self.calls.append(list(artifact_paths))
        if self.fail_with is not None:
            raise self.fail_with
        name = self.store.new_index_name()
        out_dir = self.store.index_path(name)
        out_dir.mkdir(parents=True)
        for path in artifact_paths:
            (out_dir / f"{path.parent.name}.html").write_bytes(path.read_bytes())
        return name


@pytest.fixture
def store(tmp_path: Path) -> ContentStore:
    content_store = ContentStore(tmp_path / "root")
    content_store.ensure_layout()
    return content_store


@pytest.fixture
def make_zip() -> Callable[[Dict[str, bytes]], bytes]:
    return build_zip


@pytest.fixture
def fake_provider() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def fake_generator(store: ContentStore) -> FakeGenerator:
    return FakeGenerator(store)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3,
        backoff_multiplier_s=0.0,
        max_backoff_s=0.0,
        retry_after_cap_s=0.0,
    )


@pytest.fixture
def generation_failure() -> GenerationError:
    return GenerationError("generator exited with code 3", returncode=3, stderr="boom\n")


@pytest.fixture
def engine_logger() -> Iterator[logging.Logger]:
    """The package logger, restored after tests that call ``setup_logging``."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        if handler not in saved[0]:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Drop ``SIDX_*`` variables inherited from the developer shell."""
    for key in list(os.environ):
        if key.startswith("SIDX_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch
