"""Source reading a compiler log from a local path."""

from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import Optional

import httpx

from ..config.models import ComplogUpdateConfig, SourceConfig, SourceKind
from ..errors import raise_if_cancelled
from .base import IngestResult, register_source

LOGGER = logging.getLogger(__name__)


@register_source(SourceKind.FILESYSTEM)
class FileSystemSource:
    """Versions the file by the SHA-256 of its bytes.

    The file is read once per poll; the bytes that were hashed are the bytes
    handed back, so a concurrent writer can never make the key and the payload
    disagree. A missing file is reported as unchanged.
    """

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path

    @classmethod
    def from_config(
        cls,
        source_cfg: SourceConfig,
        root_cfg: ComplogUpdateConfig,
        http_client: Optional[httpx.Client] = None,
    ) -> "FileSystemSource":
        if source_cfg.file is None:
            raise ValueError(f"Source {source_cfg.name!r} has no file block")
        return cls(source_cfg.name, Path(source_cfg.file.path).expanduser())

    def try_ingest(
        self, existing_key: Optional[str], cancel: Optional[threading.Event] = None
    ) -> IngestResult:
        raise_if_cancelled(cancel)
        try:
            payload = self.path.read_bytes()
        except FileNotFoundError:
            LOGGER.debug("Source %s: %s does not exist", self.name, self.path)
            return IngestResult.unchanged()

        version_key = hashlib.sha256(payload).hexdigest()
        if version_key == existing_key:
            return IngestResult.unchanged()
        return IngestResult.changed_to(version_key, payload)

    def commit(self, result: IngestResult) -> None:
        pass

    def __repr__(self) -> str:
        return f"FileSystemSource(name={self.name!r}, path={str(self.path)!r})"


__all__ = ["FileSystemSource"]
