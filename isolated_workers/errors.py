"""Failure conditions surfaced by isolated workers."""

from __future__ import annotations

from typing import Any, Optional


class IsolationError(RuntimeError):
    """Base class for worker isolation related failures."""


class SpawnFailure(IsolationError):
    """Raised when an isolation context could not be started."""


class ChannelClosed(IsolationError):
    """Raised when a message is sent on a closed channel."""


class WorkerClosed(IsolationError):
    """Raised for calls made after close() began, or cut short by teardown."""


class CorrelationError(IsolationError):
    """A correlation id was registered twice. Always a programming error."""


class EncodingError(IsolationError, TypeError):
    """Raised when a message cannot be serialized for transport."""


class RequestTimeout(IsolationError, TimeoutError):
    """Raised when a correlated request exceeds its deadline."""

    def __init__(self, request_id: int, timeout: float, worker: str = "") -> None:
        where = f" on {worker}" if worker else ""
        super().__init__(f"Request {request_id}{where} timed out after {timeout}s")
        self.request_id = request_id
        self.timeout = timeout
        self.worker = worker


class PayloadError(IsolationError):
    """The user-supplied function failed inside the worker."""

    def __init__(
        self,
        description: str,
        *,
        remote_type: str = "",
        remote_traceback: Optional[str] = None,
        worker: str = "",
    ) -> None:
        super().__init__(description)
        self.description = description
        self.remote_type = remote_type
        self.remote_traceback = remote_traceback
        self.worker = worker

    @classmethod
    def from_remote(cls, error: Any, worker: str = "") -> "PayloadError":
        return cls(
            error.describe(),
            remote_type=error.type_name,
            remote_traceback=error.traceback,
            worker=worker,
        )

    def __str__(self) -> str:
        if self.worker:
            return f"{self.description} (in {self.worker})"
        return self.description
