"""Runs planned uploads against the remote store."""

import logging
from concurrent.futures import Executor
from typing import Callable, Optional

from .exceptions import RemoteStoreError, TransferError
from .models import (
    ObjectIdentity,
    ProgressState,
    UploadAction,
    UploadDecision,
    UploadProgress,
)
from .remote import ProgressCallback, RemoteStore

logger = logging.getLogger(__name__)


def progress_logger(file_name: str) -> ProgressCallback:
    """Build a progress callback that logs each event for ``file_name``."""

    def listener(p: UploadProgress) -> None:
        logger.info(
            f"{file_name} {p.state.value} {p.percent}% {p.part_index + 1}/{p.part_count}"
        )

    return listener


class UploadExecutor:
    """Executes small and large uploads; never retries on its own."""

    def __init__(
        self,
        store: RemoteStore,
        pool: Executor,
        listener_factory: Callable[[str], ProgressCallback] = progress_logger,
    ) -> None:
        self.store = store
        self.pool = pool
        self.listener_factory = listener_factory

    def run(
        self, decision: UploadDecision, progress_callback: Optional[ProgressCallback] = None
    ) -> ObjectIdentity:
        """Transfer the file described by ``decision``.

        Raises:
            ValueError: if the decision is a skip
            TransferError: if the transfer fails
        """
        if decision.action == UploadAction.SKIP or decision.request is None:
            raise ValueError(f"Nothing to upload for {decision.file_name}: {decision.reason}")

        request = decision.request
        callback = progress_callback or self.listener_factory(request.file_name)

        try:
            if decision.action == UploadAction.LARGE:
                return self.store.upload_large(request, self.pool, callback)
            return self._upload_small(decision, callback)
        except (RemoteStoreError, OSError) as e:
            raise TransferError(
                f"Upload of {request.file_name} failed: {e}", str(request.local_path)
            ) from e

    def _upload_small(
        self, decision: UploadDecision, callback: ProgressCallback
    ) -> ObjectIdentity:
        request = decision.request
        length = request.content_length
        callback(UploadProgress(state=ProgressState.STARTING, length=length))
        try:
            identity = self.store.upload_small(request)
        except Exception:
            callback(UploadProgress(state=ProgressState.FAILED, length=length))
            raise
        callback(
            UploadProgress(state=ProgressState.SUCCEEDED, bytes_so_far=length, length=length)
        )
        return identity
