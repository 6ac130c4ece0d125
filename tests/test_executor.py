import logging
from pathlib import Path

import pytest

from bucket_sync.core.exceptions import TransferError
from bucket_sync.core.executor import UploadExecutor, progress_logger
from bucket_sync.core.models import (
    ProgressState,
    UploadDecision,
    UploadProgress,
    UploadRequest,
)


def make_request(name="b.txt", length=10):
    return UploadRequest(
        bucket="bucket",
        file_name=name,
        local_path=Path(name),
        content_type="text/plain",
        content_hash="deadbeef",
        content_length=length,
    )


def test_small_upload_attaches_hash(store, pool):
    events = []
    executor = UploadExecutor(store, pool)

    identity = executor.run(UploadDecision.small(make_request()), events.append)

    assert identity.file_name == "b.txt"
    assert store.objects["b.txt"].small_file_hash == "deadbeef"
    assert [e.state for e in events] == [ProgressState.STARTING, ProgressState.SUCCEEDED]
    assert events[-1].percent == 100


def test_large_upload_runs_on_pool(store, pool):
    events = []
    executor = UploadExecutor(store, pool)

    identity = executor.run(UploadDecision.large(make_request("big.bin", 1000)), events.append)

    assert identity.file_name == "big.bin"
    assert store.pools == [pool]
    assert store.objects["big.bin"].large_file_hash == "deadbeef"
    assert [e.part_index for e in events] == [0, 1, 2, 3]
    assert all(e.part_count == 4 for e in events)
    assert events[-1].bytes_so_far == 1000


def test_backend_failure_becomes_transfer_error(store, pool):
    store.fail_upload.add("b.txt")
    events = []
    executor = UploadExecutor(store, pool)

    with pytest.raises(TransferError) as exc_info:
        executor.run(UploadDecision.small(make_request()), events.append)

    assert exc_info.value.file_path == "b.txt"
    assert events[-1].state == ProgressState.FAILED
    assert len(store.transfers()) == 1


def test_skip_is_not_executable(store, pool):
    with pytest.raises(ValueError):
        UploadExecutor(store, pool).run(UploadDecision.skip("a.txt", "already present"))
    assert store.transfers() == []


def test_default_listener_logs_progress(store, pool, caplog):
    with caplog.at_level(logging.INFO, logger="bucket_sync.core.executor"):
        UploadExecutor(store, pool).run(UploadDecision.small(make_request()))
    assert "b.txt succeeded 100% 1/1" in caplog.text


class TestUploadProgress:
    def test_percent_floors(self):
        p = UploadProgress(state=ProgressState.UPLOADING, bytes_so_far=2, length=3)
        assert p.percent == 66

    def test_zero_bytes_before_start(self):
        p = UploadProgress(state=ProgressState.STARTING, bytes_so_far=0, length=500)
        assert p.percent == 0

    def test_zero_length(self):
        assert UploadProgress(state=ProgressState.STARTING, length=0).percent == 0
        assert UploadProgress(state=ProgressState.SUCCEEDED, length=0).percent == 100

    def test_logger_formats_part_numbers_from_one(self, caplog):
        listener = progress_logger("big.bin")
        with caplog.at_level(logging.INFO, logger="bucket_sync.core.executor"):
            listener(
                UploadProgress(
                    state=ProgressState.UPLOADING,
                    bytes_so_far=50,
                    length=200,
                    part_index=0,
                    part_count=4,
                )
            )
        assert "big.bin uploading 25% 1/4" in caplog.text
