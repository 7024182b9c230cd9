"""External index generator invocation.

The generator is a black box: it receives the stored artifact paths and an
output directory and must exit 0 after writing a complete tree there. The
command line is ``[*command, *artifact_paths, output_argument, *extra_args]``
with ``{out_dir}`` substituted in ``output_argument``.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .config.models import GeneratorConfig
from .errors import GenerationError, PollCancelled
from .store import ContentStore

LOGGER = logging.getLogger(__name__)

_WAIT_STEP_S = 0.5


@dataclass(frozen=True)
class GenerationResult:
    index_name: str
    output_dir: Path
    duration_s: float
    stdout: str = ""
    stderr: str = ""


class IndexGenerator:
    """Runs the configured generator command into a fresh index directory."""

    def __init__(self, config: GeneratorConfig, store: ContentStore) -> None:
        self.config = config
        self.store = store

    def build_command(self, artifact_paths: Sequence[Path], out_dir: Path) -> List[str]:
        return [
            *self.config.command,
            *(str(p) for p in artifact_paths),
            self.config.output_argument.format(out_dir=str(out_dir)),
            *self.config.extra_args,
        ]

    def generate(
        self,
        artifact_paths: Sequence[Path],
        cancel: Optional[threading.Event] = None,
    ) -> str:
        """Generate a new index and return its directory name."""
        return self.run(artifact_paths, cancel).index_name

    def run(
        self,
        artifact_paths: Sequence[Path],
        cancel: Optional[threading.Event] = None,
    ) -> GenerationResult:
        """Run the generator and wait for it, honouring cancellation and timeout.

        Raises:
            GenerationError: Launch failure, non-zero exit, timeout or missing output
            PollCancelled: Cancellation observed while waiting; the process is killed
        """
        self.store.index_root.mkdir(parents=True, exist_ok=True)
        index_name = self.store.new_index_name()
        out_dir = self.store.index_path(index_name)
        command = self.build_command(artifact_paths, out_dir)
        cwd = Path(self.config.working_dir) if self.config.working_dir else self.store.root

        LOGGER.info(
            "Generating index %s from %d artifact(s)",
            index_name,
            len(artifact_paths),
            extra={"stage": "generate"},
        )
        LOGGER.debug("Generator command: %s", command)

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise GenerationError(f"Failed to launch index generator: {exc}") from exc

        deadline = started + self.config.timeout_s if self.config.timeout_s else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_WAIT_STEP_S)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._abort(proc, out_dir)
                    raise PollCancelled("cancelled during index generation")
                if deadline is not None and time.monotonic() >= deadline:
                    stdout, stderr = self._abort(proc, out_dir)
                    raise GenerationError(
                        f"Index generator timed out after {self.config.timeout_s}s",
                        returncode=proc.returncode,
                        stdout=stdout,
                        stderr=stderr,
                    )

        duration = time.monotonic() - started
        if proc.returncode != 0:
            self._discard(out_dir)
            raise GenerationError(
                f"Index generator exited with code {proc.returncode}",
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        if not out_dir.is_dir():
            raise GenerationError(
                f"Index generator exited cleanly but produced no directory at {out_dir}",
                returncode=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )

        LOGGER.info(
            "Generated index %s in %.1fs", index_name, duration, extra={"stage": "generate"}
        )
        return GenerationResult(index_name, out_dir, duration, stdout, stderr)

    def _abort(self, proc: subprocess.Popen, out_dir: Path) -> tuple[str, str]:
        proc.kill()
        stdout, stderr = proc.communicate()
        self._discard(out_dir)
        return stdout or "", stderr or ""

    @staticmethod
    def _discard(out_dir: Path) -> None:
        if out_dir.exists():
            shutil.rmtree(out_dir, ignore_errors=True)


__all__ = ["IndexGenerator", "GenerationResult"]
