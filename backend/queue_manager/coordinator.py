"""
Request Coordinator

Ties the ledger, the admission queue and the fanout together for one request:

    Created -> Registered -> Queued/Running -> Completed

- register + enqueue happen back to back, so ledger order == execution order
- the caller's own position is reported before its unit may start
- completion (release + broadcast) runs inside the worker, before the next unit
  starts, whether the unit succeeded or failed
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from queue_manager.fanout import NotificationFanout, format_snapshot
from queue_manager.ledger import PositionLedger, RequestID
from queue_manager.request_queue import AdmissionQueue

logger = logging.getLogger("RequestCoordinator")

NotifyFn = Callable[[RequestID, int], Awaitable[None]]


class RequestCoordinator:
    def __init__(
        self,
        queue: AdmissionQueue,
        fanout: NotificationFanout,
        notify_fn: NotifyFn,
        ledger: Optional[PositionLedger] = None,
    ):
        self._queue = queue
        self._fanout = fanout
        self._notify = notify_fn
        self.ledger = ledger or PositionLedger()
        self._total_completed = 0

    async def submit(
        self,
        request_id: RequestID,
        work: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Queue `work` for `request_id` and wait for it.

        Returns the unit's result or re-raises its exception. The ledger entry is
        released exactly once in every outcome.
        """
        position = self.ledger.register(request_id)
        announced = asyncio.Event()
        completed = False

        def complete() -> None:
            nonlocal completed
            if completed:
                return
            completed = True
            self._complete(request_id)

        async def tracked() -> Any:
            try:
                await announced.wait()
                return await work()
            finally:
                complete()

        try:
            future = self._queue.enqueue(tracked, label=request_id.key)
        except Exception:
            complete()
            raise

        logger.info(
            "[Coordinator] Registered request=%s position=%d running=%d queued=%d",
            request_id, position, self.ledger.running, self.ledger.queued,
        )

        try:
            await self._announce(request_id, position)
        finally:
            announced.set()

        try:
            return await asyncio.shield(future)
        finally:
            # Never started (queue shut down)
            if future.cancelled():
                complete()

    def _complete(self, request_id: RequestID) -> None:
        self.ledger.release(request_id)
        self._total_completed += 1
        snapshot = self.ledger.snapshot()
        self._fanout.broadcast(snapshot)
        logger.info(
            "[Coordinator] Completed request=%s waiters=[%s]",
            request_id, format_snapshot(snapshot),
        )

    async def _announce(self, request_id: RequestID, position: int) -> None:
        try:
            await self._notify(request_id, position)
        except Exception as exc:
            logger.warning(
                "[Coordinator] Initial position report failed request=%s: %s",
                request_id, exc,
            )

    def get_stats(self) -> dict:
        return {
            "running": self.ledger.running,
            "queued": self.ledger.queued,
            "completed": self._total_completed,
            "queue": self._queue.get_stats(),
            "fanout": self._fanout.get_stats(),
        }
