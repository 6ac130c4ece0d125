"""Remote store interface and the existence lookups built on top of it."""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from threading import Event
from typing import Callable, Iterator, Optional

from .exceptions import ObjectNotFoundError
from .models import (
    LookupStrategy,
    ObjectIdentity,
    RemoteObjectRecord,
    UnfinishedUpload,
    UploadProgress,
    UploadRequest,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


class RemoteStore(ABC):
    """Operations the sync engine needs from an object store.

    Implementations raise :class:`~bucket_sync.core.exceptions.RemoteStoreError`
    for backend failures and :class:`~bucket_sync.core.exceptions.ObjectNotFoundError`
    when a named object does not exist.
    """

    # Set during shutdown to stop multipart uploads between parts.
    cancel_event: Optional[Event] = None

    @abstractmethod
    def get_bucket(self, bucket: str) -> str:
        """Resolve ``bucket`` to the identifier used by the other calls."""

    @abstractmethod
    def find_object_by_name(self, bucket: str, name: str) -> RemoteObjectRecord:
        """Return the current object stored under ``name``."""

    @abstractmethod
    def list_object_versions(
        self, bucket: str, prefix: str, name: Optional[str] = None
    ) -> Iterator[RemoteObjectRecord]:
        """Lazily yield every live object version whose name starts with ``prefix``.

        Keys whose latest version is a delete marker are skipped. When ``name``
        is given, only versions stored under exactly that key are yielded.
        """

    @abstractmethod
    def list_unfinished_large_uploads(self, bucket: str) -> Iterator[UnfinishedUpload]:
        """Yield multipart sessions that were never completed."""

    @abstractmethod
    def cancel_large_upload(self, upload: UnfinishedUpload) -> None:
        """Cancel one unfinished multipart session."""

    @abstractmethod
    def upload_small(self, request: UploadRequest) -> ObjectIdentity:
        """Upload a file in a single request, with its hash attached."""

    @abstractmethod
    def upload_large(
        self,
        request: UploadRequest,
        pool: Executor,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ObjectIdentity:
        """Upload a file as a multipart session with parts run on ``pool``."""

    @abstractmethod
    def current_large_file_threshold(self) -> int:
        """Size in bytes at or above which a file must be uploaded in parts."""


class RemoteIndex(ABC):
    """Looks up the remote record for an object name."""

    def __init__(self, store: RemoteStore, bucket: str) -> None:
        self.store = store
        self.bucket = bucket

    @abstractmethod
    def query(self, name: str) -> Optional[RemoteObjectRecord]:
        """Return the record stored under ``name``, or None if there is none."""

    def exists(self, name: str, content_hash: str) -> bool:
        """Return True if ``name`` is stored with a matching small or large hash."""
        record = self.query(name)
        return record is not None and record.matches(content_hash)


class ByNameIndex(RemoteIndex):
    """Fetches the single current object stored under the exact name."""

    def query(self, name: str) -> Optional[RemoteObjectRecord]:
        try:
            return self.store.find_object_by_name(self.bucket, name)
        except ObjectNotFoundError:
            logger.debug(f"{name} not found in {self.bucket}")
            return None


class PrefixScanIndex(RemoteIndex):
    """Scans object versions under the name as a prefix for an exact match."""

    def query(self, name: str) -> Optional[RemoteObjectRecord]:
        for record in self.store.list_object_versions(self.bucket, name, name=name):
            if record.file_name == name:
                return record
        logger.debug(f"{name} not found in {self.bucket}")
        return None


def create_remote_index(
    strategy: LookupStrategy, store: RemoteStore, bucket: str
) -> RemoteIndex:
    """Build the lookup for ``strategy``."""
    strategy = LookupStrategy(strategy)
    if strategy == LookupStrategy.PREFIX_SCAN:
        return PrefixScanIndex(store, bucket)
    return ByNameIndex(store, bucket)
