"""
Best-effort background tasks.

Work submitted here is detached from the caller: failures are captured and
logged, never raised back. Used for media prefetch and for blob cleanup
during cascading deletes, where an orphaned blob is an acceptable outcome.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Thread pool for fire-and-forget work with logged failures."""

    def __init__(self, max_workers: int = 4, name: str = "qrhunt-bg"):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=name
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, description: str, fn: Callable, *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._finished(description, f))
        return future

    def _finished(self, description: str, future: Future) -> None:
        if not future.cancelled():
            error = future.exception()
            if error is not None:
                logger.warning("Background task failed (%s): %s", description, error)
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every task submitted so far has finished."""
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return
            wait(pending, timeout=timeout)
            if timeout is not None:
                return

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

