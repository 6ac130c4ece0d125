"""
Bucket Sync - upload only changed files to an S3-compatible bucket.

This package provides:
- A persistent content-hash cache so unchanged files are never rehashed
- Remote checksum lookups so unchanged files are never re-uploaded
- Single-part and parallel multipart uploads with progress reporting
- Cleanup of multipart uploads left behind by interrupted runs
- A CLI reading file paths from stdin
"""

__version__ = "1.0.0"

from .core.api import BucketSyncAPI, sync_files
from .core.exceptions import (
    BucketSyncError,
    CacheCorruptionError,
    ConfigurationError,
    ObjectNotFoundError,
    RemoteStoreError,
    StartupError,
    TransferError,
)
from .core.models import LookupStrategy, SyncConfig, SyncSummary
from .core.remote import RemoteStore
from .core.s3_client import S3RemoteStore
from .core.state import StateStore
from .core.sync import SyncOrchestrator

__all__ = [
    # Core classes
    "BucketSyncAPI",
    "SyncOrchestrator",
    "StateStore",
    "RemoteStore",
    "S3RemoteStore",
    # Models
    "LookupStrategy",
    "SyncConfig",
    "SyncSummary",
    # Exceptions
    "BucketSyncError",
    "CacheCorruptionError",
    "ConfigurationError",
    "ObjectNotFoundError",
    "RemoteStoreError",
    "StartupError",
    "TransferError",
    # Convenience functions
    "sync_files",
    # Metadata
    "__version__",
]
