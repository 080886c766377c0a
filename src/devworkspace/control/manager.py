"""ControllerManager - work queue and reconcile worker pool.

Queue semantics (per workspace key):
- A key is queued at most once; enqueueing a queued key is a no-op.
- A key is never reconciled by two workers at once. A key enqueued while
  it is being reconciled is marked dirty and re-queued when the pass ends.
- Result.after(t): re-added after exactly t seconds.
- Result.now() and unclassified errors: re-added with per-key exponential
  backoff (backoff_base_delay * 2^failures, capped at backoff_max_delay).
- Result.done(): backoff for the key is reset.
"""

import asyncio
import logging
import time

from devworkspace.app.config import ControllerConfig, get_settings
from devworkspace.app.metrics.collector import (
    RECONCILE_DURATION,
    RECONCILE_TOTAL,
    WORKQUEUE_DEPTH,
)
from devworkspace.control.predicates import WorkspaceKey
from devworkspace.control.reconciler import Reconciler
from devworkspace.control.result import Result
from devworkspace.core.logging_schema import ErrorClass, LogEvent
from devworkspace.core.retryable import backoff_delay

logger = logging.getLogger(__name__)


class ControllerManager:
    """Runs Reconciler passes for queued workspace keys."""

    def __init__(self, reconciler: Reconciler, settings: ControllerConfig | None = None) -> None:
        self._reconciler = reconciler
        self._settings = settings or get_settings().controller
        self._queue: asyncio.Queue[WorkspaceKey] = asyncio.Queue()
        self._queued: set[WorkspaceKey] = set()
        self._processing: set[WorkspaceKey] = set()
        self._dirty: set[WorkspaceKey] = set()
        self._failures: dict[WorkspaceKey, int] = {}
        self._timers: dict[WorkspaceKey, tuple[float, asyncio.TimerHandle]] = {}
        self._workers: list[asyncio.Task[None]] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._workers:
            return
        for index in range(max(1, self._settings.max_concurrent_reconciles)):
            self._workers.append(
                asyncio.create_task(self._worker(), name=f"reconcile-worker-{index}")
            )
        logger.info(
            "Controller manager started",
            extra={"event": LogEvent.APP_STARTED, "workers": len(self._workers)},
        )

    async def stop(self) -> None:
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        for worker in self._workers:
            worker.cancel()
        for worker in self._workers:
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._workers.clear()
        logger.info("Controller manager stopped", extra={"event": LogEvent.APP_STOPPED})

    def healthy(self) -> bool:
        return bool(self._workers) and not any(w.done() for w in self._workers)

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, key: WorkspaceKey) -> None:
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)
        WORKQUEUE_DEPTH.set(self._queue.qsize())

    def enqueue_after(self, key: WorkspaceKey, delay: float) -> None:
        if delay <= 0:
            self.enqueue(key)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        existing = self._timers.get(key)
        if existing is not None:
            # Earliest deadline wins
            if existing[0] <= deadline:
                return
            existing[1].cancel()
        handle = loop.call_later(delay, self._fire, key)
        self._timers[key] = (deadline, handle)

    def enqueue_rate_limited(self, key: WorkspaceKey) -> None:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = backoff_delay(
            failures, self._settings.backoff_base_delay, self._settings.backoff_max_delay
        )
        self.enqueue_after(key, delay)

    def forget(self, key: WorkspaceKey) -> None:
        self._failures.pop(key, None)

    def _fire(self, key: WorkspaceKey) -> None:
        self._timers.pop(key, None)
        self.enqueue(key)

    # =========================================================================
    # Workers
    # =========================================================================

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            WORKQUEUE_DEPTH.set(self._queue.qsize())
            try:
                await self.process(key)
            finally:
                self._processing.discard(key)
                self._queue.task_done()
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(key)

    async def process(self, key: WorkspaceKey) -> None:
        """Reconcile one key and schedule its next pass."""
        namespace, name = key
        start = time.monotonic()
        try:
            result = await self._reconciler.reconcile(namespace, name)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            RECONCILE_TOTAL.labels(result="error").inc()
            logger.exception(
                "Reconciler error: %s",
                exc,
                extra={
                    "event": LogEvent.RECONCILE_ERROR,
                    "namespace": namespace,
                    "workspace": name,
                    "error_class": ErrorClass.UNCLASSIFIED,
                },
            )
            self.enqueue_rate_limited(key)
            return
        finally:
            RECONCILE_DURATION.observe(time.monotonic() - start)

        RECONCILE_TOTAL.labels(result=result.label).inc()
        self._schedule(key, result)

    def _schedule(self, key: WorkspaceKey, result: Result) -> None:
        if result.requeue_after > 0:
            self.forget(key)
            self.enqueue_after(key, result.requeue_after)
        elif result.requeue:
            self.enqueue_rate_limited(key)
        else:
            self.forget(key)
