"""End-to-end tests for poll rounds, regeneration and publication."""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from SourceIndex.ComplogUpdate.bootstrap import build_runtime
from SourceIndex.ComplogUpdate.config.models import ComplogUpdateConfig
from SourceIndex.ComplogUpdate.coordinator import IngestionCoordinator
from SourceIndex.ComplogUpdate.errors import PollCancelled, ProviderError
from SourceIndex.ComplogUpdate.publication import PublicationManager, RepositoryIndex
from SourceIndex.ComplogUpdate.service import ComplogUpdateService, ServiceState
from SourceIndex.ComplogUpdate.sources.base import IngestResult
from SourceIndex.ComplogUpdate.sources.filesystem import FileSystemSource
from SourceIndex.ComplogUpdate.store import ContentStore


class ExplodingSource:
    def __init__(self, name: str, exc: Exception) -> None:
        self.name = name
        self.exc = exc
        self.calls = 0

    def try_ingest(self, current_version_key, cancel=None):
        self.calls += 1
        raise self.exc

    def commit(self, result):
        raise AssertionError("nothing to commit")


@pytest.fixture
def logs(tmp_path):
    directory = tmp_path / "logs"
    directory.mkdir()
    return directory


def _service(store, generator, sources, **kwargs):
    coordinator = IngestionCoordinator(store)
    publication = PublicationManager(store)
    service = ComplogUpdateService(
        sources, coordinator, publication, generator, interval_s=0.05, **kwargs
    )
    return service


def _read_index(service, page):
    path = service.publication.current.resolve(page)
    assert path is not None
    return path.read_bytes()


class TestRoundLifecycle:
    def test_changes_regenerate_and_publish(self, store, fake_generator, logs):
        (logs / "a.complog").write_bytes(b"abc")
        (logs / "b.complog").write_bytes(b"abcd")
        service = _service(
            store,
            fake_generator,
            [
                FileSystemSource("alpha", logs / "a.complog"),
                FileSystemSource("beta", logs / "b.complog"),
            ],
        )

        first = service.run_once()
        assert first.changed == ["alpha", "beta"]
        assert first.published_index == service.publication.current.name
        assert _read_index(service, "alpha.html") == b"abc"
        assert _read_index(service, "beta.html") == b"abcd"
        assert service.state is ServiceState.IDLE

        second = service.run_once()
        assert second.changed == [] and second.unchanged == ["alpha", "beta"]
        assert not second.regenerated
        assert len(fake_generator.calls) == 1

        first_index = service.publication.current.name
        (logs / "b.complog").write_bytes(b"xyz")
        third = service.run_once()
        assert third.changed == ["beta"]
        assert fake_generator.calls[-1] == [
            store.artifact_path("alpha"),
            store.artifact_path("beta"),
        ]
        assert _read_index(service, "alpha.html") == b"abc"
        assert _read_index(service, "beta.html") == b"xyz"
        assert service.publication.wait_for_cleanup(5)
        assert store.list_index_names() == [third.published_index]
        assert first_index != third.published_index

    def test_failing_source_does_not_block_others(self, store, fake_generator, logs):
        (logs / "a.complog").write_bytes(b"abc")
        (logs / "c.complog").write_bytes(b"ccc")
        broken = ExplodingSource(
            "broken", ProviderError("down", provider="github", reason="network")
        )
        service = _service(
            store,
            fake_generator,
            [
                FileSystemSource("alpha", logs / "a.complog"),
                broken,
                FileSystemSource("gamma", logs / "c.complog"),
            ],
        )

        summary = service.run_once()

        assert summary.changed == ["alpha", "gamma"]
        assert list(summary.failed) == ["broken"]
        assert summary.failed["broken"].startswith("github: Network request failed")
        assert summary.published_index is not None
        assert len(fake_generator.calls[0]) == 2

    def test_unexpected_exception_contained(self, store, fake_generator, logs):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(
            store,
            fake_generator,
            [ExplodingSource("odd", RuntimeError("bug")), FileSystemSource("alpha", logs / "a.complog")],
        )
        summary = service.run_once()
        assert summary.failed == {"odd": "RuntimeError: bug"}
        assert summary.changed == ["alpha"]

    def test_no_artifacts_skips_generation(self, store, fake_generator, logs):
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "missing")])
        summary = service.run_once()
        assert summary.unchanged == ["alpha"]
        assert fake_generator.calls == []
        assert service.publication.current is RepositoryIndex.EMPTY


class TestRegenerationFailure:
    def test_failure_keeps_current_and_retries(
        self, store, fake_generator, logs, generation_failure
    ):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "a.complog")])
        service.run_once()
        published = service.publication.current

        (logs / "a.complog").write_bytes(b"new")
        fake_generator.fail_with = generation_failure
        failed = service.run_once()
        assert failed.regenerated
        assert failed.regeneration_error is not None
        assert failed.published_index is None
        assert service.publication.current is published
        assert service.regeneration_pending

        fake_generator.fail_with = None
        retried = service.run_once()
        assert retried.changed == []
        assert retried.published_index is not None
        assert _read_index(service, "alpha.html") == b"new"
        assert not service.regeneration_pending

    def test_retry_can_be_disabled(self, store, fake_generator, logs, generation_failure):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(
            store,
            fake_generator,
            [FileSystemSource("alpha", logs / "a.complog")],
            retry_failed_regeneration=False,
        )
        fake_generator.fail_with = generation_failure
        service.run_once()
        fake_generator.fail_with = None

        summary = service.run_once()
        assert not summary.regenerated
        assert len(fake_generator.calls) == 1

    def test_publication_failure_reported(self, store, logs):
        class NoOutputGenerator:
            def generate(self, artifact_paths, cancel=None):
                return "0" * 32

        (logs / "a.complog").write_bytes(b"abc")
        service = _service(
            store, NoOutputGenerator(), [FileSystemSource("alpha", logs / "a.complog")]
        )
        summary = service.run_once()
        assert "PublicationError" in summary.regeneration_error
        assert service.publication.current.is_empty

    def test_unpublished_index_removed(self, store, fake_generator, logs, monkeypatch):
        def read_only_pointer(self, index_name):
            raise OSError("read-only file system")

        monkeypatch.setattr(ContentStore, "write_current_index_name", read_only_pointer)
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "a.complog")])

        summary = service.run_once()

        assert "PublicationError" in summary.regeneration_error
        assert len(fake_generator.calls) == 1
        assert store.list_index_names() == []
        assert service.publication.current.is_empty
        assert service.regeneration_pending


class TestCancellation:
    def test_cancel_before_round_skips_everything(self, store, fake_generator, logs):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "a.complog")])
        cancel = threading.Event()
        cancel.set()

        summary = service.run_once(cancel)
        assert summary.cancelled
        assert summary.changed == [] and summary.unchanged == []
        assert fake_generator.calls == []

    def test_cancel_during_generation_leaves_regeneration_pending(
        self, store, fake_generator, logs
    ):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "a.complog")])
        fake_generator.fail_with = PollCancelled("stop")

        summary = service.run_once(threading.Event())
        assert summary.cancelled
        assert service.regeneration_pending
        assert service.publication.current.is_empty

        fake_generator.fail_with = None
        assert service.run_once().published_index is not None

    def test_change_ingested_before_cancel_is_regenerated_next_round(
        self, store, fake_generator, logs
    ):
        stop = threading.Event()

        class StoppingSource:
            name = "beta"

            def try_ingest(self, current_version_key, cancel=None):
                stop.set()
                return IngestResult.unchanged()

            def commit(self, result):
                pass

        (logs / "a.complog").write_bytes(b"abc")
        service = _service(
            store,
            fake_generator,
            [
                FileSystemSource("alpha", logs / "a.complog"),
                StoppingSource(),
                FileSystemSource("gamma", logs / "missing"),
            ],
        )

        first = service.run_once(stop)
        assert first.changed == ["alpha"]
        assert first.cancelled
        assert fake_generator.calls == []
        assert service.regeneration_pending

        second = service.run_once()
        assert second.changed == []
        assert second.regenerated
        assert _read_index(service, "alpha.html") == b"abc"
        assert not service.regeneration_pending


class TestLoop:
    def test_start_and_stop(self, store, fake_generator, logs):
        (logs / "a.complog").write_bytes(b"abc")
        service = _service(store, fake_generator, [FileSystemSource("alpha", logs / "a.complog")])

        service.start()
        try:
            deadline = time.monotonic() + 5
            while service.publication.current.is_empty and time.monotonic() < deadline:
                time.sleep(0.02)
            assert service.is_running
            with pytest.raises(RuntimeError):
                service.start()
        finally:
            service.stop(timeout=5)

        assert not service.is_running
        assert not service.publication.current.is_empty
        assert len(fake_generator.calls) == 1

    def test_run_forever_returns_when_cancelled(self, store, fake_generator):
        service = _service(store, fake_generator, [])
        cancel = threading.Event()
        cancel.set()
        service.run_forever(cancel)
        assert service.last_summary is None


class TestRuntime:
    def _config(self, tmp_path, **sources):
        return ComplogUpdateConfig(
            root_dir=str(tmp_path / "root"),
            poll={"interval_s": 0.05},
            retry={"max_attempts": 2, "backoff_multiplier_s": 0, "max_backoff_s": 0},
            sources=[{"name": name, **block} for name, block in sources.items()],
        )

    def test_restart_restores_state(self, tmp_path, logs, fake_generator):
        (logs / "a.complog").write_bytes(b"abc")
        config = self._config(tmp_path, alpha={"file": {"path": str(logs / "a.complog")}})

        with build_runtime(config, generator=fake_generator) as runtime:
            published = runtime.service.run_once().published_index

        with build_runtime(config, generator=fake_generator) as runtime:
            assert runtime.publication.current.name == published
            assert runtime.coordinator.get_version_key("alpha") is not None
            summary = runtime.service.run_once()

        assert summary.unchanged == ["alpha"]
        assert len(fake_generator.calls) == 1

    def test_restart_resumes_failed_regeneration(
        self, tmp_path, logs, fake_generator, generation_failure
    ):
        (logs / "a.complog").write_bytes(b"abc")
        config = self._config(tmp_path, alpha={"file": {"path": str(logs / "a.complog")}})

        fake_generator.fail_with = generation_failure
        with build_runtime(config, generator=fake_generator) as runtime:
            assert runtime.service.run_once().regeneration_error is not None
        assert runtime.store.is_regeneration_pending()

        fake_generator.fail_with = None
        with build_runtime(config, generator=fake_generator) as runtime:
            assert runtime.service.regeneration_pending
            summary = runtime.service.run_once()
            assert summary.unchanged == ["alpha"]
            assert summary.published_index == runtime.publication.current.name
        assert not runtime.store.is_regeneration_pending()

    def test_stored_artifacts_without_index_regenerated_on_start(
        self, tmp_path, store, fake_generator
    ):
        store.write_artifact("alpha", "k1", b"abc")
        config = self._config(tmp_path, alpha={"file": {"path": str(tmp_path / "gone.complog")}})

        with build_runtime(config, generator=fake_generator) as runtime:
            summary = runtime.service.run_once()

        assert summary.unchanged == ["alpha"]
        assert summary.published_index is not None
        assert fake_generator.calls == [[store.artifact_path("alpha")]]

    def test_pipeline_source_over_http(self, tmp_path, store, fake_generator, make_zip):
        archive = make_zip({"Build Logs/build.complog": b"remote"})

        def respond(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/_apis/build/builds"):
                return httpx.Response(
                    200,
                    json={
                        "value": [
                            {"id": 5, "buildNumber": "20240501.5", "finishTime": "2024-05-01T10:00:00Z"}
                        ]
                    },
                )
            if path.endswith("/builds/5/artifacts"):
                return httpx.Response(
                    200,
                    json={
                        "value": [
                            {
                                "id": 1,
                                "name": "Build Logs",
                                "resource": {"downloadUrl": "https://artifacts.test/5.zip"},
                            }
                        ]
                    },
                )
            if request.url.host == "artifacts.test":
                return httpx.Response(200, content=archive)
            return httpx.Response(404)

        config = self._config(
            tmp_path,
            roslyn={
                "pipeline": {
                    "organization": "dnceng",
                    "project": "public",
                    "definition": 95,
                    "artifact_name": "Build Logs",
                    "file_name": "build.complog",
                }
            },
        )
        with build_runtime(
            config, transport=httpx.MockTransport(respond), generator=fake_generator
        ) as runtime:
            summary = runtime.service.run_once()
            assert summary.changed == ["roslyn"]
            assert runtime.coordinator.get_version_key("roslyn") == (
                "dnceng/public/20240501.5@20240501T100000Z"
            )
            assert store.artifact_path("roslyn").read_bytes() == b"remote"

            again = runtime.service.run_once()
            assert again.unchanged == ["roslyn"]
        assert len(fake_generator.calls) == 1
