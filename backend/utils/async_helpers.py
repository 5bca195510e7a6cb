"""
Async utility functions for concurrent operations.

This module provides utilities for running blocking operations asynchronously
using thread pools, and for handing coroutines from Flask request threads to
a long-lived background event loop.
"""

import asyncio
import atexit
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Global thread pool for blocking file and database work
_io_thread_pool = None
_IO_POOL_SIZE = 4


def get_io_thread_pool() -> ThreadPoolExecutor:
    """
    Get or create the global I/O thread pool.

    Returns:
        ThreadPoolExecutor used for DuckDB checkpoints and asset writes
    """
    global _io_thread_pool
    if _io_thread_pool is None:
        _io_thread_pool = ThreadPoolExecutor(
            max_workers=_IO_POOL_SIZE,
            thread_name_prefix="io_worker"
        )
        logger.info("Initialized I/O thread pool with %d workers", _IO_POOL_SIZE)
    return _io_thread_pool


async def run_in_thread(func: Callable, *args, **kwargs) -> Any:
    """
    Run a blocking function in a thread pool.

    Args:
        func: Blocking function to execute
        *args: Positional arguments for the function
        **kwargs: Keyword arguments for the function

    Returns:
        Result from the function execution
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        get_io_thread_pool(),
        lambda: func(*args, **kwargs)
    )


async def gather_with_concurrency(n: int, *tasks):
    """
    Run multiple async tasks with a concurrency limit.

    Args:
        n: Maximum number of concurrent tasks
        *tasks: Async tasks/coroutines to execute

    Returns:
        List of results in the same order as input tasks
    """
    semaphore = asyncio.Semaphore(n)

    async def sem_task(task):
        async with semaphore:
            return await task

    return await asyncio.gather(*(sem_task(task) for task in tasks))


class LoopRunnerError(RuntimeError):
    """The background event loop is not available."""


class LoopRunner:
    """
    Dedicated event loop thread for work started from synchronous code.

    Flask handlers are synchronous; job services schedule their coroutines
    here with ``submit`` and return immediately, while tests and scripts can
    block on a result with ``call``.
    """

    def __init__(self, name: str = "workflow-loop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()
        self._closed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        self.start()
        return self._loop

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise LoopRunnerError("Loop runner has been stopped")
            if self._thread is not None:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever, name=self.name, daemon=True
            )
            self._thread.start()
            logger.debug("Started background event loop %s", self.name)

    def submit(self, coro_fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Future:
        """Schedule ``coro_fn(*args, **kwargs)`` and return its concurrent Future."""
        loop = self.loop
        coro = coro_fn(*args, **kwargs)
        try:
            return asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as exc:
            coro.close()
            raise LoopRunnerError(f"Failed to schedule {coro_fn.__name__}: {exc}") from exc

    def stop(self) -> None:
        with self._lock:
            if self._loop is not None and self._thread is not None:
                self._loop.call_soon_threadsafe(self._loop.stop)
                self._thread.join(timeout=2)
                if self._thread.is_alive():
                    logger.warning("Event loop thread %s did not stop in time", self.name)
                else:
                    self._loop.close()
                self._loop = None
                self._thread = None
            self._closed = True


_shared_runner: Optional[LoopRunner] = None
_shared_lock = threading.Lock()


def get_shared_runner() -> LoopRunner:
    """Process-wide LoopRunner, created on first use."""
    global _shared_runner
    with _shared_lock:
        if _shared_runner is None:
            _shared_runner = LoopRunner()
            _shared_runner.start()
            atexit.register(shutdown_background_workers)
        return _shared_runner


def shutdown_background_workers():
    """
    Stop the shared event loop and thread pools.

    Should be called on application shutdown.
    """
    global _io_thread_pool, _shared_runner
    if _shared_runner is not None:
        _shared_runner.stop()
        _shared_runner = None
    if _io_thread_pool:
        logger.info("Shutting down I/O thread pool...")
        _io_thread_pool.shutdown(wait=True)
        _io_thread_pool = None
