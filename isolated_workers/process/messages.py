"""Message variants exchanged between a coordinator and its workers."""

from __future__ import annotations

import traceback as _traceback
from dataclasses import dataclass
from typing import Any, Optional, Union

import cloudpickle

from ..errors import EncodingError


@dataclass(frozen=True)
class RemoteError:
    """Serializable description of an exception raised inside a worker."""

    type_name: str
    message: str
    traceback: Optional[str] = None

    @classmethod
    def capture(cls, exc: BaseException) -> "RemoteError":
        tb = "".join(
            _traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
        return cls(type_name=type(exc).__qualname__, message=str(exc), traceback=tb)

    def describe(self) -> str:
        if not self.message:
            return self.type_name
        return f"{self.type_name}: {self.message}"


@dataclass(frozen=True)
class Ready:
    pid: int


@dataclass(frozen=True)
class SetupFailed:
    error: RemoteError


@dataclass(frozen=True)
class Request:
    request_id: int
    payload: Any = None
    op: str = "call"


@dataclass(frozen=True)
class Response:
    request_id: int
    value: Any = None


@dataclass(frozen=True)
class Failure:
    request_id: int
    error: RemoteError


@dataclass(frozen=True)
class Shutdown:
    pass


Message = Union[Ready, SetupFailed, Request, Response, Failure, Shutdown]
MESSAGE_TYPES = (Ready, SetupFailed, Request, Response, Failure, Shutdown)


def encode(message: Message) -> bytes:
    """Serialize ``message``; the receiver always gets its own deep copy."""

    if not isinstance(message, MESSAGE_TYPES):
        raise EncodingError(f"Not a message: {message!r}")
    try:
        return cloudpickle.dumps(message)
    except Exception as exc:
        raise EncodingError(
            f"Cannot serialize {type(message).__name__}: {exc}"
        ) from exc


def decode(data: bytes) -> Message:
    message = cloudpickle.loads(data)
    if not isinstance(message, MESSAGE_TYPES):
        raise EncodingError(f"Unexpected frame of type {type(message).__name__}")
    return message
