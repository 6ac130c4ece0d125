"""Decides whether and how a file is uploaded."""

import logging
import mimetypes
from pathlib import Path
from typing import Optional

from .models import RemoteObjectRecord, UploadDecision, UploadRequest

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
SKIP_REASON = "already present with matching checksum"


def guess_content_type(file_path: str) -> str:
    content_type, _ = mimetypes.guess_type(file_path)
    return content_type or DEFAULT_CONTENT_TYPE


class UploadPlanner:
    """Chooses between skipping, a single-part upload and a multipart upload."""

    def __init__(self, bucket: str) -> None:
        self.bucket = bucket

    def decide(
        self,
        file_path: str,
        local_hash: str,
        remote_record: Optional[RemoteObjectRecord],
        content_length: int,
        large_file_threshold: int,
    ) -> UploadDecision:
        """Plan the transfer of one file.

        Args:
            file_path: Local path, also used as the object name
            local_hash: Hex SHA-1 of the local content
            remote_record: Record currently stored under the name, if any
            content_length: Local file size in bytes
            large_file_threshold: Size at or above which multipart is used

        Returns:
            The upload decision
        """
        if remote_record is not None and remote_record.matches(local_hash):
            return UploadDecision.skip(file_path, SKIP_REASON)

        request = UploadRequest(
            bucket=self.bucket,
            file_name=file_path,
            local_path=Path(file_path),
            content_type=guess_content_type(file_path),
            content_hash=local_hash,
            content_length=content_length,
        )

        if content_length >= large_file_threshold:
            logger.debug(
                f"{file_path}: {content_length} bytes >= {large_file_threshold}, multipart upload"
            )
            return UploadDecision.large(request)
        return UploadDecision.small(request)
