"""
Notification Fanout

Pushes position updates to every waiter after a completion without holding up
the admission worker.

- broadcast() only enqueues, it never awaits a delivery
- at most `concurrency` deliveries in flight (default 20), the rest wait FIFO
- one failed delivery is logged and never stops the others
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from queue_manager.ledger import RequestID

logger = logging.getLogger("NotificationFanout")

DEFAULT_CONCURRENCY = 20

DeliverFn = Callable[[RequestID, int], Awaitable[None]]


class NotificationFanout:
    """
    Bounded worker pool fed by a channel of (request_id, position) pairs.

    Usage:
        fanout = NotificationFanout(deliver_fn=notify_position)
        await fanout.start()
        fanout.broadcast(ledger.snapshot())
        await fanout.shutdown()
    """

    def __init__(self, deliver_fn: DeliverFn, concurrency: int = DEFAULT_CONCURRENCY):
        if not callable(deliver_fn):
            raise ValueError("deliver_fn must be callable")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self._deliver = deliver_fn
        self._concurrency = concurrency
        self._channel: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._running = False

        self._in_flight = 0
        self._peak_in_flight = 0
        self._total_queued = 0
        self._total_delivered = 0
        self._total_failed = 0

    # ───────────────────────────────────────────────────────────────────── #
    # LIFECYCLE
    # ───────────────────────────────────────────────────────────────────── #
    async def start(self):
        if self._running:
            logger.warning("Fanout already running")
            return

        self._running = True
        for i in range(self._concurrency):
            task = asyncio.create_task(self._worker(i), name=f"fanout-worker-{i}")
            self._workers.append(task)
        logger.info("✅ [Fanout] Started | workers=%d", self._concurrency)

    async def shutdown(self):
        if not self._running:
            return

        self._running = False
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("✅ [Fanout] Shutdown complete | stats=%s", self.get_stats())

    @property
    def running(self) -> bool:
        return self._running

    # ───────────────────────────────────────────────────────────────────── #
    # BROADCAST
    # ───────────────────────────────────────────────────────────────────── #
    def broadcast(self, snapshot: Iterable[Tuple[RequestID, int]]) -> int:
        """Queue one delivery per snapshot entry. Returns how many were queued."""
        count = 0
        for request_id, position in snapshot:
            self._channel.put_nowait((request_id, position))
            count += 1
        self._total_queued += count
        if count:
            logger.debug("[Fanout] Queued %d position updates", count)
        return count

    async def join(self):
        """Wait until every queued delivery has been attempted."""
        await self._channel.join()

    # ───────────────────────────────────────────────────────────────────── #
    # WORKER
    # ───────────────────────────────────────────────────────────────────── #
    async def _worker(self, worker_id: int):
        while self._running:
            request_id, position = await self._channel.get()
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                await self._deliver(request_id, position)
                self._total_delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._total_failed += 1
                logger.warning(
                    "[Fanout] Worker #%d delivery failed request=%s position=%d: %s",
                    worker_id, request_id, position, exc,
                )
            finally:
                self._in_flight -= 1
                self._channel.task_done()

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "concurrency": self._concurrency,
            "backlog": self._channel.qsize(),
            "in_flight": self._in_flight,
            "peak_in_flight": self._peak_in_flight,
            "totals": {
                "queued": self._total_queued,
                "delivered": self._total_delivered,
                "failed": self._total_failed,
            },
        }


def format_snapshot(snapshot: Optional[Iterable[Tuple[RequestID, int]]]) -> str:
    """Compact `key=position` rendering for log lines."""
    if not snapshot:
        return "-"
    return ", ".join(f"{request_id.key}={position}" for request_id, position in snapshot)
