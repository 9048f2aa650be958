"""Inference concurrency layer.

Architecture:
    frame source thread -> serial context (one asyncio loop thread)
                        -> ThreadPoolExecutor(N) -> ONNX inference
                        -> back on the serial context -> result sink

Setup, frame ingestion, both classifier submissions and result delivery all
run on the serial context. Classifier calls run on the pool and their
completions resume on the loop thread, so pipeline state is never touched
from a pool thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from cardinfer.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERIAL_THREAD_NAME: str = "card-inference"
SHUTDOWN_TIMEOUT_SECONDS: float = 5.0


class InferenceWorker:
    """Owns the serial execution context and the classifier thread pool."""

    def __init__(self, settings: Settings) -> None:
        self._loop = asyncio.new_event_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=settings.classifier_threads,
            thread_name_prefix="onnx-inference",
        )
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._closed = False

        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Start the serial context thread. Safe to call repeatedly."""
        with self._state_lock:
            if self._closed:
                raise RuntimeError("Inference worker is shut down")
            if self._thread is not None:
                return
            ready = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(ready,),
                name=SERIAL_THREAD_NAME,
                daemon=True,
            )
            self._thread.start()
        ready.wait()
        logger.debug("Serial inference context started")

    def shutdown(self) -> None:
        """Cancel pending work, stop the loop and the classifier pool."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread

        if thread is not None:
            cancel = asyncio.run_coroutine_threadsafe(self._cancel_pending(), self._loop)
            try:
                cancel.result(timeout=SHUTDOWN_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.warning("Timed out cancelling pending inference tasks")
            self._loop.call_soon_threadsafe(self._loop.stop)
            thread.join(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        else:
            self._loop.close()

        self._executor.shutdown(wait=True)
        logger.debug("Serial inference context stopped")

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._closed

    def in_context(self) -> bool:
        """Return True when called from the serial context thread."""
        return self._thread is not None and threading.current_thread() is self._thread

    # -- Scheduling ---------------------------------------------------------

    def call(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func`` on the serial context and block until it returns.

        Runs inline when already on the serial context.
        """
        if self.in_context():
            return func(*args)
        self.start()
        future = asyncio.run_coroutine_threadsafe(self._invoke(func, *args), self._loop)
        return future.result()

    def post(self, func: Callable[..., object], *args: object) -> None:
        """Schedule ``func`` on the serial context without waiting."""
        if self._closed:
            logger.debug("Dropping %s: inference worker is shut down", getattr(func, "__name__", func))
            return
        self.start()
        self._loop.call_soon_threadsafe(func, *args)

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        """Schedule a coroutine on the serial context.

        Raises:
            RuntimeError: If the worker has been shut down.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("Inference worker is shut down")
        self.start()
        with self._counter_lock:
            self._queue_depth += 1
        return asyncio.run_coroutine_threadsafe(self._tracked(coro), self._loop)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a blocking classifier call on the pool, resuming on the serial context."""
        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            with self._counter_lock:
                self._active_count -= 1

    # -- Introspection ------------------------------------------------------

    @property
    def active_count(self) -> int:
        """Number of classifier calls currently running on the pool."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of submitted coroutines that have not finished."""
        with self._counter_lock:
            return self._queue_depth

    # -- Internal -----------------------------------------------------------

    def _run_loop(self, ready: threading.Event) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(ready.set)
        try:
            self._loop.run_forever()
        finally:
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    async def _tracked(self, coro: Coroutine[Any, Any, T]) -> T:
        try:
            return await coro
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

    @staticmethod
    async def _invoke(func: Callable[..., T], *args: object) -> T:
        return func(*args)

    async def _cancel_pending(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
