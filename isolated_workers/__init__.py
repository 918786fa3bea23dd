from .blocking import BlockingCoordinator, BlockingWorker
from .config import WorkerConfig
from .errors import (
    ChannelClosed,
    CorrelationError,
    EncodingError,
    IsolationError,
    PayloadError,
    RequestTimeout,
    SpawnFailure,
    WorkerClosed,
)
from .pool import WorkerPool
from .process import PersistentWorker, WorkerManager, WorkerState
from .worker import (
    get_manager,
    has_spawned,
    run_isolated,
    shutdown_workers,
    spawn_worker,
)

__all__ = [
    "run_isolated",
    "spawn_worker",
    "shutdown_workers",
    "has_spawned",
    "get_manager",
    "WorkerManager",
    "PersistentWorker",
    "WorkerState",
    "WorkerPool",
    "WorkerConfig",
    "BlockingCoordinator",
    "BlockingWorker",
    "IsolationError",
    "SpawnFailure",
    "PayloadError",
    "ChannelClosed",
    "RequestTimeout",
    "WorkerClosed",
    "EncodingError",
    "CorrelationError",
]
