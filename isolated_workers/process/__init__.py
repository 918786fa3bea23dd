"""Async process isolation primitives: channels, correlation and lifecycle."""

from .channel import Channel
from .correlator import Correlator, PendingRequest
from .manager import FROM_CONFIG, PersistentWorker, WorkerManager, WorkerState
from .messages import RemoteError

__all__ = [
    "FROM_CONFIG",
    "Channel",
    "Correlator",
    "PendingRequest",
    "PersistentWorker",
    "RemoteError",
    "WorkerManager",
    "WorkerState",
]
