from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
import threading
from typing import Any

from loguru import logger

DEFAULT_MAX_WORKERS = 4


class CancellationToken:
    """Marks one asynchronous request as superseded.

    The token is tagged with the identity the request was issued for.
    Results for a cancelled token are computed but never delivered.
    """

    def __init__(self, identity: str) -> None:
        self.identity = identity
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ImageTaskRunner:
    """Dispatches image work to a private thread pool.

    The pool starts lazily on the first submit. `drain()` waits for the
    work submitted so far; `shutdown()` drains and releases the threads.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self._max_workers = max(1, int(max_workers or DEFAULT_MAX_WORKERS))
        self._lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self._pending: set[Future[Any]] = set()
        self._closed = False

    def start(self) -> None:
        with self._lock:
            self._ensure_pool()

    def _ensure_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="sift-image"
            )
        return self._pool

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any] | None:
        """Schedule `fn(*args)`; returns None once the runner is shut down."""
        with self._lock:
            if self._closed:
                logger.debug("Image task dropped after shutdown")
                return None
            future = self._ensure_pool().submit(fn, *args)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait until all submitted tasks finish. Returns False on timeout."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=True)
