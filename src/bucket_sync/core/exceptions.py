"""
Exception classes for Bucket Sync.

Provides a small hierarchy separating fatal startup problems from per-file
failures that are logged and skipped.
"""

from typing import Any, Dict, Optional


class BucketSyncError(Exception):
    """Base exception for all Bucket Sync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(BucketSyncError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class StartupError(BucketSyncError):
    """Raised when the bucket or remote client cannot be acquired."""

    def __init__(self, message: str, bucket: Optional[str] = None) -> None:
        details = {"bucket": bucket} if bucket else {}
        super().__init__(message, details)
        self.bucket = bucket


class RemoteStoreError(BucketSyncError):
    """Raised for network, rate limit and other backend failures."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class ObjectNotFoundError(RemoteStoreError):
    """Raised when the remote store holds no object under a name."""

    def __init__(self, file_name: str, bucket: Optional[str] = None) -> None:
        super().__init__(f"Object not found: {file_name}", 404)
        self.details.update({"file_name": file_name, "bucket": bucket})
        self.file_name = file_name
        self.bucket = bucket


class TransferError(BucketSyncError):
    """Raised when an upload fails."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class CacheCorruptionError(BucketSyncError):
    """Raised for a malformed record in the persisted hash cache."""

    def __init__(self, message: str, line_number: Optional[int] = None) -> None:
        details = {"line_number": line_number} if line_number else {}
        super().__init__(message, details)
        self.line_number = line_number
