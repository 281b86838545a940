"""
Queue Manager Errors

Failures the admission layer knows how to absorb. Backend errors are caught at the
unit-of-work boundary, delivery errors at the fanout-item boundary.
"""


class BackendError(Exception):
    """Raised when the conversation backend fails to produce a reply."""
    pass


class BackendTimeout(BackendError):
    """Raised when the conversation backend did not answer in time."""
    pass


class NotificationDeliveryError(Exception):
    """Raised when a status update could not be pushed to one waiter."""
    pass


class LedgerInconsistencyError(Exception):
    """Raised when a ledger operation would break the position invariant."""
    pass
