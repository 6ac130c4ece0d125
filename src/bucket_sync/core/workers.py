"""Worker pool creation and graceful shutdown."""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Event
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


def default_workers() -> int:
    return os.cpu_count() or 4


def create_worker_pool(workers: Optional[int] = None, name: str = "bucket-sync") -> ThreadPoolExecutor:
    """Create a fixed-size thread pool with named threads."""
    return ThreadPoolExecutor(max_workers=workers or default_workers(), thread_name_prefix=name)


def shutdown_and_await_termination(
    pool: ThreadPoolExecutor,
    futures: Iterable[Future] = (),
    timeout: float = 30.0,
    grace: float = 15.0,
    cancel_event: Optional[Event] = None,
) -> bool:
    """Stop ``pool``, giving running work ``timeout`` seconds to finish.

    Work still pending after the timeout is canceled, ``cancel_event`` is set
    so cooperative tasks stop early, and ``grace`` more seconds are granted.

    Returns:
        True if every future finished
    """
    futures = list(futures)
    pool.shutdown(wait=False)

    _, not_done = wait(futures, timeout=timeout)
    if not not_done:
        return True

    logger.warning(f"{len(not_done)} tasks still running after {timeout}s, canceling")
    pool.shutdown(wait=False, cancel_futures=True)
    if cancel_event is not None:
        cancel_event.set()

    _, not_done = wait(not_done, timeout=grace)
    if not_done:
        logger.error(f"Pool did not terminate: abandoning {len(not_done)} tasks")
        return False
    return True
