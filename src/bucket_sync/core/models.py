"""
Pydantic models for Bucket Sync.

These models describe the cache records, remote object records, upload
decisions and progress events that flow through the sync pipeline, plus the
configuration the CLI and programmatic API are driven by.
"""

import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# S3 rejects multipart parts smaller than this, except for the last one.
MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_LARGE_FILE_THRESHOLD = 100 * 1024 * 1024


class LookupStrategy(str, Enum):
    """How the remote store is asked whether an object already exists."""

    BY_NAME = "by-name"
    PREFIX_SCAN = "prefix-scan"


class UploadAction(str, Enum):
    """Outcome of planning a single file."""

    SKIP = "skip"
    SMALL = "small"
    LARGE = "large"


class ProgressState(str, Enum):
    """Upload progress states reported to progress callbacks."""

    WAITING_TO_START = "waiting_to_start"
    STARTING = "starting"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Cache Models
class CacheEntry(BaseModel):
    """Cached content hash of a local file."""

    model_config = ConfigDict(frozen=True)

    file_path: str = Field(..., min_length=1, description="Local file path (unique key)")
    last_modified: int = Field(
        ..., description="Modification time in milliseconds since the epoch"
    )
    content_hash: str = Field(..., description="Hex SHA-1 of the file content")


# Remote Models
class RemoteObjectRecord(BaseModel):
    """An object as recorded by the remote store."""

    model_config = ConfigDict(frozen=True)

    file_name: str = Field(..., description="Object name in the bucket")
    small_file_hash: Optional[str] = Field(
        None, description="SHA-1 recorded for a single-part upload"
    )
    large_file_hash: Optional[str] = Field(
        None, description="SHA-1 recorded for a multipart upload"
    )
    file_id: Optional[str] = Field(None, description="Backend-assigned object id")

    def matches(self, content_hash: str) -> bool:
        """Return True if either recorded hash equals ``content_hash``."""
        return content_hash in (self.small_file_hash, self.large_file_hash)


class ObjectIdentity(BaseModel):
    """Identity of an object after a successful upload."""

    model_config = ConfigDict(frozen=True)

    file_id: str = Field(..., description="Backend-assigned object id")
    file_name: str = Field(..., description="Finalized object name")


class UnfinishedUpload(BaseModel):
    """A multipart upload session that was never completed or canceled."""

    model_config = ConfigDict(frozen=True)

    file_id: str = Field(..., description="Multipart upload id")
    file_name: str = Field(..., description="Object name the session was writing")
    bucket: str = Field(..., description="Bucket holding the session")


# Upload Models
class UploadRequest(BaseModel):
    """Everything needed to transfer one local file."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    file_name: str
    local_path: Path
    content_type: str = "application/octet-stream"
    content_hash: str
    content_length: int = Field(..., ge=0)


class UploadDecision(BaseModel):
    """Skip, single-part upload or multipart upload for one file."""

    model_config = ConfigDict(frozen=True)

    action: UploadAction
    file_name: str
    request: Optional[UploadRequest] = None
    reason: Optional[str] = None

    @classmethod
    def skip(cls, file_name: str, reason: str) -> "UploadDecision":
        return cls(action=UploadAction.SKIP, file_name=file_name, reason=reason)

    @classmethod
    def small(cls, request: UploadRequest) -> "UploadDecision":
        return cls(action=UploadAction.SMALL, file_name=request.file_name, request=request)

    @classmethod
    def large(cls, request: UploadRequest) -> "UploadDecision":
        return cls(action=UploadAction.LARGE, file_name=request.file_name, request=request)


class UploadProgress(BaseModel):
    """A single progress event emitted during a transfer."""

    model_config = ConfigDict(frozen=True)

    state: ProgressState
    bytes_so_far: int = Field(0, ge=0)
    length: int = Field(0, ge=0)
    part_index: int = Field(0, ge=0, description="Zero-based part index")
    part_count: int = Field(1, ge=1)

    @property
    def percent(self) -> int:
        """Whole percent transferred; tolerates a zero length."""
        if self.length == 0:
            return 100 if self.state == ProgressState.SUCCEEDED else 0
        return (100 * self.bytes_so_far) // self.length


# Report Models
class CleanupReport(BaseModel):
    """Result of canceling unfinished uploads."""

    canceled: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)


class SyncSummary(BaseModel):
    """Per-run counts of file outcomes."""

    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    failed_files: List[str] = Field(default_factory=list)
    cleanup: CleanupReport = Field(default_factory=CleanupReport)

    @property
    def total(self) -> int:
        return self.uploaded + self.skipped + self.failed


# Configuration Models
class SyncConfig(BaseModel):
    """Configuration of a sync run."""

    bucket: str = Field(..., min_length=1, description="Target bucket name")
    state_file: Path = Field(Path("state.txt"), description="Persisted hash cache")
    lookup: LookupStrategy = Field(
        LookupStrategy.BY_NAME, description="Remote existence lookup strategy"
    )
    workers: int = Field(
        default_factory=lambda: os.cpu_count() or 4,
        ge=1,
        le=256,
        description="Worker pool size",
    )
    large_file_threshold: int = Field(
        DEFAULT_LARGE_FILE_THRESHOLD,
        ge=MIN_PART_SIZE,
        description="Files at or above this size use multipart uploads",
    )
    part_size: Optional[int] = Field(
        None,
        ge=MIN_PART_SIZE,
        description="Multipart part size in bytes (auto-sized if unset)",
    )
    endpoint_url: Optional[str] = Field(None, description="S3 endpoint URL")
    region: Optional[str] = Field(None, description="S3 region")
    access_key: Optional[str] = Field(None, description="S3 access key")
    secret_key: Optional[str] = Field(None, description="S3 secret key")
    max_retries: int = Field(5, ge=1, le=20, description="Per-request retry attempts")
    shutdown_timeout: float = Field(
        30.0, ge=0, description="Seconds to wait for running work on exit"
    )
    shutdown_grace: float = Field(
        15.0, ge=0, description="Seconds to wait after canceling remaining work"
    )
    strict_state: bool = Field(
        False, description="Fail on malformed cache lines instead of skipping them"
    )

    @field_validator("bucket")
    @classmethod
    def validate_bucket(cls, v: str) -> str:
        """Validate bucket name."""
        v = v.strip()
        if not v or any(c.isspace() for c in v):
            raise ValueError("Bucket name must be non-empty and contain no whitespace")
        return v

    @field_validator("endpoint_url")
    @classmethod
    def validate_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Validate endpoint URL scheme."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint URL must start with http:// or https://")
        return v
