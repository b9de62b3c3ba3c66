"""Operation queueing and execution."""

from couchops.dispatch.dispatcher import Dispatcher, OperationHandle, OperationState, QueueEntry

__all__ = ["Dispatcher", "OperationHandle", "OperationState", "QueueEntry"]
