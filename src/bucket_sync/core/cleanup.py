"""Cancels multipart uploads left behind by earlier runs."""

import logging

from .exceptions import RemoteStoreError
from .models import CleanupReport
from .remote import RemoteStore

logger = logging.getLogger(__name__)


class CleanupCoordinator:
    """Best-effort cancellation of every unfinished large upload in a bucket."""

    def __init__(self, store: RemoteStore) -> None:
        self.store = store

    def cleanup(self, bucket: str) -> CleanupReport:
        """Cancel unfinished uploads one by one.

        A failed cancel is logged and does not stop the others. Failing to
        list the uploads propagates.
        """
        report = CleanupReport()
        for upload in self.store.list_unfinished_large_uploads(bucket):
            try:
                self.store.cancel_large_upload(upload)
                report.canceled += 1
                logger.info(f"Canceled unfinished upload: {upload.file_name} ({upload.file_id})")
            except RemoteStoreError as e:
                report.failed += 1
                logger.error(f"Failed to cancel upload {upload.file_id} ({upload.file_name}): {e}")

        if report.canceled or report.failed:
            logger.info(
                f"Cleanup of {bucket}: {report.canceled} canceled, {report.failed} failed"
            )
        return report
