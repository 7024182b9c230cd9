"""Tests for the filesystem source."""

from __future__ import annotations

import hashlib
import os
import threading

import pytest

from SourceIndex.ComplogUpdate.errors import PollCancelled
from SourceIndex.ComplogUpdate.sources.filesystem import FileSystemSource


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "build.complog"


def test_first_read_reports_change_with_sha256(log_path):
    log_path.write_bytes(b"abc")
    result = FileSystemSource("local", log_path).try_ingest(None)

    assert result.changed
    assert result.version_key == hashlib.sha256(b"abc").hexdigest()
    assert result.payload == b"abc"


def test_same_bytes_unchanged(log_path):
    log_path.write_bytes(b"abc")
    source = FileSystemSource("local", log_path)
    key = source.try_ingest(None).version_key

    assert not source.try_ingest(key).changed
    assert not source.try_ingest(key).changed


def test_touching_file_does_not_change_key(log_path):
    """Content hash, not modification time, decides."""
    log_path.write_bytes(b"abc")
    source = FileSystemSource("local", log_path)
    key = source.try_ingest(None).version_key

    stat = log_path.stat()
    os.utime(log_path, (stat.st_atime + 3600, stat.st_mtime + 3600))
    assert not source.try_ingest(key).changed


def test_only_final_content_is_ingested(log_path):
    log_path.write_bytes(b"abc")
    source = FileSystemSource("local", log_path)
    key = source.try_ingest(None).version_key

    for content in (b"v1", b"v2", b"v3"):
        log_path.write_bytes(content)
    result = source.try_ingest(key)

    assert result.payload == b"v3"
    assert result.version_key == hashlib.sha256(b"v3").hexdigest()


def test_missing_file_is_unchanged(log_path):
    result = FileSystemSource("local", log_path).try_ingest("previous")
    assert not result.changed
    assert result.payload is None


def test_cancelled_before_read(log_path):
    log_path.write_bytes(b"abc")
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(PollCancelled):
        FileSystemSource("local", log_path).try_ingest(None, cancel)
