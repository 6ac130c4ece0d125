# tests/conftest.py
import itertools
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Event, Lock
from typing import Dict, List, Optional

import pytest

from bucket_sync.core.exceptions import ObjectNotFoundError, RemoteStoreError
from bucket_sync.core.models import (
    ObjectIdentity,
    ProgressState,
    RemoteObjectRecord,
    UnfinishedUpload,
    UploadProgress,
    UploadRequest,
)
from bucket_sync.core.remote import RemoteStore


class FakeRemoteStore(RemoteStore):
    """In-memory remote store recording every call it receives."""

    def __init__(self, threshold: int = 1024, part_size: int = 256) -> None:
        self.threshold = threshold
        self.part_size = part_size
        self.objects: Dict[str, RemoteObjectRecord] = {}
        self.unfinished: List[UnfinishedUpload] = []
        self.fail_cancel = set()
        self.fail_upload = set()
        self.list_error: Optional[Exception] = None
        self.bucket_error: Optional[Exception] = None
        self.calls = []
        self.pools = []
        self.cancel_event = Event()
        self._lock = Lock()
        self._ids = itertools.count(1)

    def _record(self, op, arg):
        with self._lock:
            self.calls.append((op, arg))

    def ops(self, *names):
        return [c for c in self.calls if c[0] in names]

    def transfers(self):
        return self.ops("upload_small", "upload_large")

    def _store(self, request, small, large):
        identity = ObjectIdentity(file_id=f"id-{next(self._ids)}", file_name=request.file_name)
        with self._lock:
            self.objects[request.file_name] = RemoteObjectRecord(
                file_name=request.file_name,
                small_file_hash=small,
                large_file_hash=large,
                file_id=identity.file_id,
            )
        return identity

    def get_bucket(self, bucket):
        self._record("get_bucket", bucket)
        if self.bucket_error:
            raise self.bucket_error
        return bucket

    def find_object_by_name(self, bucket, name):
        self._record("find_object_by_name", name)
        if name not in self.objects:
            raise ObjectNotFoundError(name, bucket)
        return self.objects[name]

    def list_object_versions(self, bucket, prefix, name=None):
        self._record("list_object_versions", prefix)
        for key in sorted(self.objects):
            if key.startswith(prefix) and (name is None or key == name):
                yield self.objects[key]

    def list_unfinished_large_uploads(self, bucket):
        self._record("list_unfinished_large_uploads", bucket)
        if self.list_error:
            raise self.list_error
        yield from list(self.unfinished)

    def cancel_large_upload(self, upload):
        self._record("cancel_large_upload", upload.file_id)
        if upload.file_id in self.fail_cancel:
            raise RemoteStoreError(f"cannot cancel {upload.file_id}", 500)

    def upload_small(self, request: UploadRequest):
        self._record("upload_small", request.file_name)
        if request.file_name in self.fail_upload:
            raise RemoteStoreError("connection reset", 503)
        return self._store(request, request.content_hash, None)

    def upload_large(self, request: UploadRequest, pool, progress_callback=None):
        self._record("upload_large", request.file_name)
        self.pools.append(pool)
        if request.file_name in self.fail_upload:
            raise RemoteStoreError("connection reset", 503)

        length = request.content_length
        count = max(1, -(-length // self.part_size))
        sizes = [min(self.part_size, length - i * self.part_size) for i in range(count)]
        done = list(pool.map(lambda s: s, sizes))
        if progress_callback:
            sent = 0
            for index, size in enumerate(done):
                sent += size
                progress_callback(
                    UploadProgress(
                        state=ProgressState.UPLOADING,
                        bytes_so_far=sent,
                        length=length,
                        part_index=index,
                        part_count=count,
                    )
                )
        return self._store(request, None, request.content_hash)

    def current_large_file_threshold(self):
        self._record("current_large_file_threshold", None)
        return self.threshold


@pytest.fixture
def store():
    return FakeRemoteStore()


@pytest.fixture
def make_file(tmp_path):
    """Create a file under tmp_path and return its path as a string."""

    def _make(name: str, content: bytes = b"hello world") -> str:
        path = Path(tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path)

    return _make


@pytest.fixture
def pool():
    executor = ThreadPoolExecutor(max_workers=2)
    yield executor
    executor.shutdown(wait=True)
