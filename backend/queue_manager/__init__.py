"""
Queue Manager: serialized admission with live queue positions

Decoupled from the bot (zero application imports):
- PositionLedger: who is ahead of whom
- AdmissionQueue: one unit of work at a time, strict FIFO, unbounded backlog
- NotificationFanout: bounded-concurrency position updates after every completion
- RequestCoordinator: register → enqueue → report position → await → release + broadcast
- LeadingEdgeThrottle: rate limit for partial-result updates
"""

from queue_manager.coordinator import RequestCoordinator
from queue_manager.errors import (
    BackendError,
    BackendTimeout,
    LedgerInconsistencyError,
    NotificationDeliveryError,
)
from queue_manager.fanout import DEFAULT_CONCURRENCY, NotificationFanout
from queue_manager.ledger import PositionLedger, RequestID
from queue_manager.request_queue import AdmissionQueue, QueueConfig
from queue_manager.throttle import LeadingEdgeThrottle

__all__ = [
    "AdmissionQueue",
    "BackendError",
    "BackendTimeout",
    "DEFAULT_CONCURRENCY",
    "LeadingEdgeThrottle",
    "LedgerInconsistencyError",
    "NotificationDeliveryError",
    "NotificationFanout",
    "PositionLedger",
    "QueueConfig",
    "RequestCoordinator",
    "RequestID",
]
