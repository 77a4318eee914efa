"""Single-threaded dispatcher for transport callbacks and registry operations.

paho-mqtt, grpc and the HTTP server each call back on their own threads. None
of those threads touch bridge state directly: they post a task here, and one
worker thread runs the tasks in FIFO order, each to completion before the
next starts. Registry reads and writes therefore need no lock.
"""
from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


class Dispatcher:
    """FIFO task queue drained by a single worker thread."""

    def __init__(self, name: str = "Dispatcher") -> None:
        self._name = name
        self._queue: queue.Queue[Any] = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()
        logger.debug("[DISPATCH] Started dispatcher thread")

    def stop(self, timeout: float = 5.0) -> None:
        """Run the tasks already queued, then stop the worker thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug("[DISPATCH] Stopped dispatcher thread")

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue ``fn(*args)`` to run on the dispatcher thread."""
        self._queue.put((fn, args))

    def wrap(self, fn: Callable[..., Any]) -> Callable[..., None]:
        """Return a callable that posts ``fn`` instead of running it."""
        def posted(*args: Any) -> None:
            self.post(fn, *args)
        return posted

    def call(self, fn: Callable[..., Any], *args: Any, timeout: float | None = 10.0) -> Any:
        """Run ``fn(*args)`` on the dispatcher thread and return its result.

        Exceptions raised by ``fn`` are re-raised in the caller. When called
        from the dispatcher thread itself, or when the worker is not running,
        ``fn`` runs inline.
        """
        if self._thread is None or threading.current_thread() is self._thread:
            return fn(*args)

        future: Future[Any] = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)

        self.post(run)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            # A cancelled task is skipped when the worker reaches it
            future.cancel()
            raise

    def run_pending(self) -> int:
        """Run every queued task on the calling thread; returns how many ran."""
        count = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return count
            if item is _STOP:
                continue
            self._execute(*item)
            count += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._execute(*item)

    def _execute(self, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            fn(*args)
        except Exception as e:
            name = getattr(fn, "__qualname__", repr(fn))
            logger.exception(f"[DISPATCH] Unhandled error in {name}: {e}")
