"""Error taxonomy for the order sync engine.

Every error here is caught at the orchestrator boundary and turned into an
OperationResult. Only programming errors are allowed to escape.
"""

from typing import Optional


class OrderSyncError(Exception):
    """Base class for engine errors."""


class RemoteBackendError(OrderSyncError):
    """The remote system of record rejected or failed a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(RemoteBackendError):
    """Transient failure reaching the remote backend (timeout, refused, 5xx gateway).

    Triggers the offline fallback, never surfaced as fatal.
    """


class StorageCorruption(OrderSyncError):
    """Malformed content in the local durable store."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class PartialSyncFailure(OrderSyncError):
    """One queued task failed during a reconciliation pass."""

    def __init__(self, task_id: str, order_id: str, cause: Exception):
        super().__init__(f"task {task_id} (order {order_id}) failed: {cause}")
        self.task_id = task_id
        self.order_id = order_id
        self.cause = cause


class ValidationError(OrderSyncError):
    """Malformed modification input; rejected before it reaches the queue."""
