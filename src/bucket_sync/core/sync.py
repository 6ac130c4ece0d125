"""Drives cleanup, hashing, lookup, planning and upload for a stream of paths."""

import logging
import os
from concurrent.futures import Future, wait
from pathlib import Path
from threading import BoundedSemaphore, Lock
from typing import Iterable, List, Optional, Union

from .cleanup import CleanupCoordinator
from .executor import UploadExecutor
from .models import LookupStrategy, SyncSummary, UploadAction
from .planner import UploadPlanner
from .remote import RemoteStore, create_remote_index
from .state import StateStore
from .workers import create_worker_pool, default_workers, shutdown_and_await_termination

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Uploads every changed file named in the input to one bucket.

    Files are processed on one pool; the parts of large uploads run on a
    second pool so a file task waiting on its parts never starves them.
    """

    def __init__(
        self,
        store: RemoteStore,
        bucket: str,
        state_file: Union[str, Path] = "state.txt",
        *,
        lookup: LookupStrategy = LookupStrategy.BY_NAME,
        workers: Optional[int] = None,
        strict_state: bool = False,
        shutdown_timeout: float = 30.0,
        shutdown_grace: float = 15.0,
    ) -> None:
        self.store = store
        self.bucket = bucket
        self.state_file = Path(state_file)
        self.strict_state = strict_state
        self.workers = workers or default_workers()
        self.shutdown_timeout = shutdown_timeout
        self.shutdown_grace = shutdown_grace

        self.index = create_remote_index(lookup, store, bucket)
        self.planner = UploadPlanner(bucket)
        self.cleaner = CleanupCoordinator(store)
        self.state: Optional[StateStore] = None
        self._summary_lock = Lock()

    def run(self, lines: Iterable[str]) -> SyncSummary:
        """Clean up stale uploads, then sync each path in ``lines``."""
        summary = SyncSummary()
        slots = BoundedSemaphore(self.workers * 2)
        futures: List[Future] = []
        # A previous run on this store may have timed out and left it signaled.
        if self.store.cancel_event is not None:
            self.store.cancel_event.clear()

        with StateStore.open(self.state_file, strict=self.strict_state) as state:
            self.state = state
            file_pool = create_worker_pool(self.workers, "bucket-sync-file")
            part_pool = create_worker_pool(self.workers, "bucket-sync-part")
            executor = UploadExecutor(self.store, part_pool)
            try:
                summary.cleanup = self.cleaner.cleanup(self.bucket)

                for line in lines:
                    file_name = line.rstrip("\r\n")
                    if not file_name:
                        continue
                    slots.acquire()
                    future = file_pool.submit(self._process, executor, file_name, summary)
                    future.add_done_callback(lambda _: slots.release())
                    futures.append(future)
                    if len(futures) >= 1024:
                        futures = [f for f in futures if not f.done()]

                # Every file pipeline resolves before shutdown starts its clock.
                wait(futures)
            finally:
                cancel_event = self.store.cancel_event
                shutdown_and_await_termination(
                    file_pool, futures, self.shutdown_timeout, self.shutdown_grace, cancel_event
                )
                shutdown_and_await_termination(
                    part_pool, (), self.shutdown_timeout, self.shutdown_grace, cancel_event
                )
                self.state = None

        logger.info(
            f"Sync of {self.bucket} finished: {summary.uploaded} uploaded, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    def _process(self, executor: UploadExecutor, file_name: str, summary: SyncSummary) -> None:
        try:
            action = self.sync_file(executor, file_name)
        except Exception as e:
            logger.error(f"Failed to upload {file_name}: {e}")
            logger.debug(f"{file_name} failure details", exc_info=True)
            with self._summary_lock:
                summary.failed += 1
                summary.failed_files.append(file_name)
            return

        with self._summary_lock:
            if action == UploadAction.SKIP:
                summary.skipped += 1
            else:
                summary.uploaded += 1

    def sync_file(self, executor: UploadExecutor, file_name: str) -> UploadAction:
        """Hash, look up, plan and upload a single file."""
        if self.state is None:
            raise RuntimeError("sync_file called outside of run()")

        sha1 = self.state.hash_for(file_name)
        record = self.index.query(file_name)
        threshold = self.store.current_large_file_threshold()
        size = os.path.getsize(file_name)

        decision = self.planner.decide(file_name, sha1, record, size, threshold)
        if decision.action == UploadAction.SKIP:
            logger.info(f"{file_name} exists with matching checksum {sha1}")
            return decision.action

        identity = executor.run(decision)
        logger.info(f"{identity.file_name} upload completed -> {identity.file_id}")
        return decision.action
