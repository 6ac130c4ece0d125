"""S3-compatible remote store used by the sync engine."""

import logging
import math
import os
import time
from concurrent.futures import Executor, Future
from concurrent.futures import wait as wait_futures
from threading import Event, Lock
from typing import Any, Callable, Dict, Iterator, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from .exceptions import (
    ConfigurationError,
    ObjectNotFoundError,
    RemoteStoreError,
    StartupError,
)
from .hasher import sha1_base64, sha1_hex
from .models import (
    DEFAULT_LARGE_FILE_THRESHOLD,
    ObjectIdentity,
    ProgressState,
    RemoteObjectRecord,
    UnfinishedUpload,
    UploadProgress,
    UploadRequest,
)
from .remote import ProgressCallback, RemoteStore

logger = logging.getLogger(__name__)

SMALL_HASH_KEY = "sha1"
LARGE_HASH_KEY = "large-file-sha1"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
MAX_PARTS = 10000


def optimal_part_size(file_size: int) -> int:
    """Pick a multipart part size from the file size."""
    file_size_gb = file_size / (1024**3)

    if file_size_gb < 1:
        part_size = 10 * 1024 * 1024      # 10MB for < 1GB
    elif file_size_gb < 10:
        part_size = 50 * 1024 * 1024      # 50MB for 1-10GB
    elif file_size_gb < 50:
        part_size = 100 * 1024 * 1024     # 100MB for 10-50GB
    else:
        part_size = 200 * 1024 * 1024     # 200MB for > 50GB

    while math.ceil(file_size / part_size) > MAX_PARTS:
        part_size *= 2
    return part_size


def human_mb_per_s(num_bytes: int, seconds: float) -> float:
    """Return MB/s as float, avoiding divide-by-zero."""
    return (num_bytes / (1024 * 1024)) / seconds if seconds > 0 else float("inf")


def status_code_of(exc: Exception) -> Optional[int]:
    if isinstance(exc, ClientError):
        return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


def error_code_of(exc: Exception) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def is_524_error(exc: Exception) -> bool:
    """Return True if the exception wraps a 524 timeout response."""
    return status_code_of(exc) == 524


def is_not_found_error(exc: Exception) -> bool:
    return error_code_of(exc) in NOT_FOUND_CODES or status_code_of(exc) == 404


def translate_error(description: str, exc: Exception) -> RemoteStoreError:
    """Wrap a botocore error into a RemoteStoreError."""
    return RemoteStoreError(f"{description} failed: {exc}", status_code_of(exc))


class S3RemoteStore(RemoteStore):
    """Remote store backed by an S3-compatible bucket."""

    def __init__(
        self,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_retries: int = 5,
        large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD,
        part_size: Optional[int] = None,
        s3_client: Optional[Any] = None,
    ):
        """Initialize the S3 remote store.

        Args:
            access_key: S3 access key (or BUCKET_SYNC_ACCESS_KEY env var)
            secret_key: S3 secret key (or BUCKET_SYNC_SECRET_KEY env var)
            region: S3 region
            endpoint_url: Endpoint URL of an S3-compatible service
            max_retries: Maximum number of attempts per request
            large_file_threshold: Size at or above which multipart is used
            part_size: Fixed multipart part size (auto-sized if None)
            s3_client: Preconfigured boto3 S3 client to use instead
        """
        self.access_key = access_key or os.getenv("BUCKET_SYNC_ACCESS_KEY")
        self.secret_key = secret_key or os.getenv("BUCKET_SYNC_SECRET_KEY")

        if bool(self.access_key) != bool(self.secret_key):
            raise ConfigurationError(
                "Both BUCKET_SYNC_ACCESS_KEY and BUCKET_SYNC_SECRET_KEY are required "
                "when either is set."
            )

        self.region = region
        self.endpoint_url = endpoint_url
        self.max_retries = max_retries
        self.large_file_threshold = large_file_threshold
        self.part_size = part_size
        self.cancel_event = Event()

        if s3_client is None:
            # Without explicit keys boto3 falls back to its default credential chain.
            self.session = boto3.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region,
            )
            self.config = Config(
                region_name=self.region,
                retries={"max_attempts": self.max_retries, "mode": "standard"},
            )
            s3_client = self.session.client(
                "s3", config=self.config, endpoint_url=self.endpoint_url
            )
        self.s3 = s3_client

    def call_with_retry(self, description: str, func: Callable[[], Any]) -> Any:
        """Call ``func`` retrying on HTTP 524 or timeout errors."""
        for attempt in range(1, self.max_retries + 1):
            try:
                return func()
            except ClientError as exc:
                if not is_524_error(exc):
                    raise
                logger.warning(f"{description}: received 524 response (attempt {attempt})")
                if attempt == self.max_retries:
                    logger.error(f"{description}: exceeded max_retries for 524")
                    raise
            except (ReadTimeoutError, ConnectTimeoutError) as exc:
                logger.warning(f"{description}: request timed out (attempt {attempt}): {exc}")
                if attempt == self.max_retries:
                    logger.error(f"{description}: exceeded max_retries for timeout")
                    raise
            backoff = 2**attempt
            logger.info(f"{description}: retrying in {backoff}s...")
            time.sleep(backoff)

    def get_bucket(self, bucket: str) -> str:
        try:
            self.s3.head_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as e:
            raise StartupError(f"Cannot open bucket {bucket}: {e}", bucket) from e
        return bucket

    def _record_from_head(self, name: str, head: Dict[str, Any]) -> RemoteObjectRecord:
        metadata = {k.lower(): v for k, v in head.get("Metadata", {}).items()}
        small_hash = metadata.get(SMALL_HASH_KEY)
        checksum = head.get("ChecksumSHA1")
        # Multipart checksums are composite ("<b64>-<parts>") and not a file hash.
        if small_hash is None and checksum and "-" not in checksum:
            small_hash = sha1_hex(checksum)
        return RemoteObjectRecord(
            file_name=name,
            small_file_hash=small_hash,
            large_file_hash=metadata.get(LARGE_HASH_KEY),
            file_id=head.get("VersionId") or head.get("ETag", "").strip('"') or None,
        )

    def _head(self, bucket: str, name: str, version_id: Optional[str] = None) -> Dict[str, Any]:
        kwargs = {"Bucket": bucket, "Key": name, "ChecksumMode": "ENABLED"}
        if version_id and version_id != "null":
            kwargs["VersionId"] = version_id
        return self.call_with_retry(f"head_object {name}", lambda: self.s3.head_object(**kwargs))

    def find_object_by_name(self, bucket: str, name: str) -> RemoteObjectRecord:
        try:
            head = self._head(bucket, name)
        except ClientError as e:
            if is_not_found_error(e):
                raise ObjectNotFoundError(name, bucket) from e
            raise translate_error(f"head_object {name}", e) from e
        except BotoCoreError as e:
            raise translate_error(f"head_object {name}", e) from e
        return self._record_from_head(name, head)

    def list_object_versions(
        self, bucket: str, prefix: str, name: Optional[str] = None
    ) -> Iterator[RemoteObjectRecord]:
        try:
            paginator = self.s3.get_paginator("list_object_versions")
            listed: List[Dict[str, Any]] = []
            deleted = set()
            # A key's delete marker can arrive on a later page than its versions.
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for marker in page.get("DeleteMarkers", []):
                    if marker.get("IsLatest"):
                        deleted.add(marker["Key"])
                for version in page.get("Versions", []):
                    if name is None or version["Key"] == name:
                        listed.append(version)

            for version in listed:
                key = version["Key"]
                if key in deleted:
                    logger.debug(f"{key} latest version is a delete marker")
                    continue
                try:
                    head = self._head(bucket, key, version.get("VersionId"))
                except ClientError as e:
                    if is_not_found_error(e):
                        logger.debug(f"{key} version vanished while listing")
                        continue
                    raise
                yield self._record_from_head(key, head)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(f"list_object_versions {prefix}", e) from e

    def list_unfinished_large_uploads(self, bucket: str) -> Iterator[UnfinishedUpload]:
        try:
            paginator = self.s3.get_paginator("list_multipart_uploads")
            for page in paginator.paginate(Bucket=bucket):
                for upload in page.get("Uploads", []):
                    yield UnfinishedUpload(
                        file_id=upload["UploadId"], file_name=upload["Key"], bucket=bucket
                    )
        except (ClientError, BotoCoreError) as e:
            raise translate_error(f"list_multipart_uploads {bucket}", e) from e

    def cancel_large_upload(self, upload: UnfinishedUpload) -> None:
        try:
            self.call_with_retry(
                f"abort_multipart_upload {upload.file_id}",
                lambda: self.s3.abort_multipart_upload(
                    Bucket=upload.bucket, Key=upload.file_name, UploadId=upload.file_id
                ),
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_error(f"abort_multipart_upload {upload.file_id}", e) from e

    def upload_small(self, request: UploadRequest) -> ObjectIdentity:
        """Upload a file with a single PutObject, letting the server verify its SHA-1."""
        logger.info(f"Uploading {request.local_path} to {request.bucket}/{request.file_name}")
        try:
            with open(request.local_path, "rb") as body:

                def put():
                    body.seek(0)
                    return self.s3.put_object(
                        Bucket=request.bucket,
                        Key=request.file_name,
                        Body=body,
                        ContentType=request.content_type,
                        Metadata={SMALL_HASH_KEY: request.content_hash},
                        ChecksumSHA1=sha1_base64(request.content_hash),
                    )

                resp = self.call_with_retry(f"put_object {request.file_name}", put)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(f"put_object {request.file_name}", e) from e

        return ObjectIdentity(
            file_id=resp.get("VersionId") or resp.get("ETag", "").strip('"'),
            file_name=request.file_name,
        )

    def upload_large(
        self,
        request: UploadRequest,
        pool: Executor,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ObjectIdentity:
        uploader = LargeMultipartUploader(
            store=self,
            request=request,
            pool=pool,
            part_size=self.part_size or optimal_part_size(request.content_length),
            progress_callback=progress_callback,
        )
        try:
            return uploader.upload()
        except (ClientError, BotoCoreError) as e:
            raise translate_error(f"multipart upload {request.file_name}", e) from e

    def current_large_file_threshold(self) -> int:
        return self.large_file_threshold


class LargeMultipartUploader:
    """Upload a large file as a multipart session with parts run on a shared pool."""

    def __init__(
        self,
        *,
        store: S3RemoteStore,
        request: UploadRequest,
        pool: Executor,
        part_size: int,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.store = store
        self.s3 = store.s3
        self.request = request
        self.pool = pool
        self.part_size = part_size
        self.progress_callback = progress_callback

        self.file_size = request.content_length
        self.total_parts = max(1, math.ceil(self.file_size / self.part_size))
        self.progress_lock = Lock()
        self.bytes_uploaded = 0
        self.aborted = Event()
        self.upload_id: Optional[str] = None

    def _notify(self, state: ProgressState, part_index: int) -> None:
        if not self.progress_callback:
            return
        with self.progress_lock:
            bytes_so_far = self.bytes_uploaded
        try:
            self.progress_callback(
                UploadProgress(
                    state=state,
                    bytes_so_far=bytes_so_far,
                    length=self.file_size,
                    part_index=part_index,
                    part_count=self.total_parts,
                )
            )
        except Exception as e:
            logger.warning(f"Progress callback error: {e}")

    def _check_canceled(self) -> None:
        if self.aborted.is_set() or self.store.cancel_event.is_set():
            raise RemoteStoreError(f"Upload of {self.request.file_name} canceled")

    def upload_part(self, *, part_number: int, offset: int, bytes_to_read: int) -> dict:
        """Upload a single part with exponential-backoff retries."""
        if self.upload_id is None:
            raise RuntimeError("upload_id not set")

        part_index = part_number - 1
        for attempt in range(1, self.store.max_retries + 1):
            self._check_canceled()
            self._notify(ProgressState.STARTING, part_index)
            try:
                logger.debug(
                    f"Part {part_number}: reading bytes {offset}-{offset + bytes_to_read} (attempt {attempt})"
                )
                with open(self.request.local_path, "rb") as f:
                    f.seek(offset)
                    data = f.read(bytes_to_read)
                resp = self.s3.upload_part(
                    Bucket=self.request.bucket,
                    Key=self.request.file_name,
                    PartNumber=part_number,
                    UploadId=self.upload_id,
                    Body=data,
                )
                with self.progress_lock:
                    self.bytes_uploaded += len(data)
                self._notify(ProgressState.UPLOADING, part_index)
                return {"PartNumber": part_number, "ETag": resp["ETag"]}
            except (BotoCoreError, ClientError) as exc:
                if status_code_of(exc) == 507:
                    logger.error(f"Part {part_number}: received 507 Insufficient Storage; aborting")
                    self._notify(ProgressState.FAILED, part_index)
                    raise RemoteStoreError("Server reported insufficient storage", 507) from exc
                logger.warning(f"Part {part_number}: attempt {attempt} failed: {exc}")
                if attempt == self.store.max_retries:
                    logger.error(f"Part {part_number}: exceeded max_retries ({self.store.max_retries})")
                    self._notify(ProgressState.FAILED, part_index)
                    raise translate_error(f"upload_part {part_number}", exc) from exc
                backoff = 2**attempt
                logger.info(f"Part {part_number}: retrying in {backoff}s...")
                time.sleep(backoff)

    def upload(self) -> ObjectIdentity:
        """Execute the multipart upload."""
        request = self.request
        logger.info(
            f"{request.file_name}: {self.file_size} bytes in {self.total_parts} parts "
            f"of up to {self.part_size} bytes"
        )
        start_time = time.time()

        resp = self.store.call_with_retry(
            "create_multipart_upload",
            lambda: self.s3.create_multipart_upload(
                Bucket=request.bucket,
                Key=request.file_name,
                ContentType=request.content_type,
                Metadata={LARGE_HASH_KEY: request.content_hash},
            ),
        )
        self.upload_id = resp["UploadId"]
        logger.info(f"Initiated multipart upload: UploadId={self.upload_id}")
        self._notify(ProgressState.WAITING_TO_START, 0)

        futures: List[Future] = []
        try:
            for part_number in range(1, self.total_parts + 1):
                offset = (part_number - 1) * self.part_size
                futures.append(
                    self.pool.submit(
                        self.upload_part,
                        part_number=part_number,
                        offset=offset,
                        bytes_to_read=min(self.part_size, self.file_size - offset),
                    )
                )

            parts = []
            for fut in futures:
                parts.append(fut.result())

            self.store.call_with_retry(
                "complete_multipart_upload",
                lambda: self.s3.complete_multipart_upload(
                    Bucket=request.bucket,
                    Key=request.file_name,
                    UploadId=self.upload_id,
                    MultipartUpload={"Parts": sorted(parts, key=lambda p: p["PartNumber"])},
                ),
            )
        except BaseException as exc:
            self.aborted.set()
            for fut in futures:
                fut.cancel()
            wait_futures(futures)
            logger.error(
                f"Upload interrupted: {exc}. UploadId {self.upload_id} left for cleanup"
            )
            raise

        head = self.store.call_with_retry(
            "head_object",
            lambda: self.s3.head_object(Bucket=request.bucket, Key=request.file_name),
        )
        uploaded_size = head.get("ContentLength")
        if uploaded_size != self.file_size:
            raise RemoteStoreError(
                f"Multipart upload verification failed: remote object is {uploaded_size} "
                f"bytes, local file is {self.file_size} bytes"
            )

        with self.progress_lock:
            self.bytes_uploaded = self.file_size
        self._notify(ProgressState.SUCCEEDED, self.total_parts - 1)

        elapsed = time.time() - start_time
        speed = human_mb_per_s(self.file_size, elapsed)
        duration = time.strftime("%Hh %Mm %Ss", time.gmtime(elapsed))
        logger.info(f"Upload Speed {speed:.2f} MB/s, Duration {duration}")

        return ObjectIdentity(
            file_id=head.get("VersionId") or self.upload_id,
            file_name=request.file_name,
        )
