"""
Admission Queue

Serialized executor in front of a backend that can only handle one conversation at a time.

- Strict FIFO: units start in the order they were enqueued
- Capacity 1: a single worker, never two units running at once
- Unbounded backlog: enqueue never blocks and never rejects on size
- Error isolation: a failing unit resolves its own future, the worker keeps going
- Health monitoring & worker self-healing
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger("QueueManager")

UnitOfWork = Callable[[], Awaitable[Any]]


# ─────────────────────────────────────────────────────────────────────────── #
# CONFIGURATION
# ─────────────────────────────────────────────────────────────────────────── #
@dataclass
class QueueConfig:
    health_log_interval: float = 60.0  # Seconds between health log outputs


# ─────────────────────────────────────────────────────────────────────────── #
# QUEUE ITEM
# ─────────────────────────────────────────────────────────────────────────── #
@dataclass(eq=False)
class QueueItem:
    label: str
    work: UnitOfWork
    future: asyncio.Future
    submitted_at: float = 0.0


# ─────────────────────────────────────────────────────────────────────────── #
# ADMISSION QUEUE
# ─────────────────────────────────────────────────────────────────────────── #
class AdmissionQueue:
    """
    Single-worker FIFO queue.

    Usage:
        queue = AdmissionQueue()
        await queue.start()

        future = queue.enqueue(unit_of_work, label="chat:42")
        result = await future

        await queue.shutdown()
    """

    def __init__(self, config: Optional[QueueConfig] = None):
        self._config = config or QueueConfig()

        # Internal queue (unbounded)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: List[QueueItem] = []
        self._active: Optional[QueueItem] = None

        self._worker_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self._total_submitted = 0
        self._total_processed = 0
        self._total_errors = 0
        self._started_at: Optional[float] = None
        self._peak_pending = 0

    # ───────────────────────────────────────────────────────────────────── #
    # LIFECYCLE
    # ───────────────────────────────────────────────────────────────────── #
    async def start(self):
        """Start the worker and health monitor."""
        if self._running:
            logger.warning("Queue already running")
            return

        self._running = True
        self._started_at = time.time()
        self._worker_task = asyncio.create_task(self._worker(), name="admission-worker")
        self._health_task = asyncio.create_task(
            self._health_monitor(), name="admission-health"
        )
        logger.info("✅ [Queue] Started | capacity=1 backlog=unbounded")

    async def shutdown(self):
        """Cancel units that have not started, then stop the worker."""
        if not self._running:
            return

        logger.info("🛑 [Queue] Shutting down...")
        self._running = False

        for item in self._pending:
            if not item.future.done():
                item.future.cancel()
        self._pending.clear()

        tasks = [t for t in (self._health_task, self._worker_task) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._worker_task = None
        self._health_task = None
        logger.info("✅ [Queue] Shutdown complete | stats=%s", self.get_stats())

    @property
    def running(self) -> bool:
        return self._running

    # ───────────────────────────────────────────────────────────────────── #
    # ENQUEUE
    # ───────────────────────────────────────────────────────────────────── #
    def enqueue(self, work: UnitOfWork, label: str = "") -> asyncio.Future:
        """
        Append a unit of work to the backlog.

        Returns a future resolved with the unit's result, or with the exception it
        raised, once the unit has fully run.

        Raises:
            RuntimeError: Queue not running
        """
        if not self._running:
            raise RuntimeError("Queue is not running")

        loop = asyncio.get_running_loop()
        item = QueueItem(
            label=label,
            work=work,
            future=loop.create_future(),
            submitted_at=time.time(),
        )
        self._pending.append(item)
        self._queue.put_nowait(item)

        self._total_submitted += 1
        self._peak_pending = max(self._peak_pending, len(self._pending))

        logger.debug(
            "[Queue] Enqueued %s pending=%d active=%d",
            label, len(self._pending), 1 if self._active else 0,
        )
        return item.future

    # ───────────────────────────────────────────────────────────────────── #
    # WORKER
    # ───────────────────────────────────────────────────────────────────── #
    async def _worker(self):
        """Pull items one at a time and run each to completion."""
        logger.debug("[Queue] Worker started")

        while self._running:
            item: QueueItem = await self._queue.get()

            if item in self._pending:
                self._pending.remove(item)

            # Cancelled during shutdown
            if item.future.done():
                self._queue.task_done()
                continue

            self._active = item
            wait_time = time.time() - item.submitted_at
            logger.info(
                "[Queue] Processing %s waited=%.1fs pending=%d",
                item.label, wait_time, len(self._pending),
            )

            try:
                result = await item.work()
                if not item.future.done():
                    item.future.set_result(result)
                self._total_processed += 1
                logger.info(
                    "[Queue] Completed %s total=%.1fs",
                    item.label, time.time() - item.submitted_at,
                )

            except asyncio.CancelledError:
                if not item.future.done():
                    item.future.cancel()
                if not self._running or asyncio.current_task().cancelling():
                    raise
                # Raised by the unit itself, the worker keeps going
                self._total_errors += 1
                logger.error("[Queue] Unit %s cancelled itself", item.label)

            except Exception as exc:
                self._total_errors += 1
                logger.error("[Queue] Unit %s failed: %s", item.label, exc)
                if not item.future.done():
                    item.future.set_exception(exc)

            finally:
                self._active = None
                self._queue.task_done()

        logger.debug("[Queue] Worker stopped")

    # ───────────────────────────────────────────────────────────────────── #
    # STATISTICS & HEALTH
    # ───────────────────────────────────────────────────────────────────── #
    def get_stats(self) -> dict:
        uptime = round(time.time() - self._started_at, 1) if self._started_at else 0
        return {
            "running": self._running,
            "current": {
                "pending": len(self._pending),
                "active": 1 if self._active else 0,
            },
            "totals": {
                "submitted": self._total_submitted,
                "processed": self._total_processed,
                "errors": self._total_errors,
            },
            "peaks": {
                "max_pending": self._peak_pending,
            },
            "uptime_seconds": uptime,
        }

    async def _health_monitor(self):
        """Periodic health logging + worker self-healing."""
        while self._running:
            try:
                await asyncio.sleep(self._config.health_log_interval)
                if not self._running:
                    break

                stats = self.get_stats()
                current = stats["current"]
                totals = stats["totals"]

                # Only log if there's activity
                if totals["submitted"] > 0 or current["pending"] > 0 or current["active"] > 0:
                    logger.info(
                        "[Queue Health] pending=%d active=%d processed=%d errors=%d",
                        current["pending"],
                        current["active"],
                        totals["processed"],
                        totals["errors"],
                    )

                task = self._worker_task
                if task is not None and task.done():
                    exc = task.exception() if not task.cancelled() else None
                    if exc:
                        logger.error("⚠️ [Queue] Worker died: %s, restarting", exc)
                    else:
                        logger.warning("⚠️ [Queue] Worker stopped unexpectedly, restarting")
                    self._worker_task = asyncio.create_task(
                        self._worker(), name="admission-worker"
                    )
                    logger.info("✅ [Queue] Worker restarted")

            except asyncio.CancelledError:
                return
            except Exception as exc:
                logger.error("[Queue Health] Monitor error: %s", exc)
