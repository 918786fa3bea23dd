"""Environment driven configuration for worker processes."""

from __future__ import annotations

import multiprocessing as mp
import os
from dataclasses import dataclass
from typing import Mapping, Optional

_ENV_PREFIX = "ISOLATED_WORKERS_"
_NONE_VALUES = ("", "none", "off")


def _env_name(field: str) -> str:
    return _ENV_PREFIX + field.upper()


def _parse_seconds(name: str, raw: str, *, allow_none: bool) -> Optional[float]:
    if raw.strip().lower() in _NONE_VALUES:
        if allow_none:
            return None
        raise ValueError(f"{name} requires a number of seconds")
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name}={raw!r} is not a number of seconds") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass(frozen=True)
class WorkerConfig:
    """Settings shared by every worker of one manager.

    ``ready_timeout`` bounds how long a freshly spawned worker may take to
    report ready. ``drain_timeout`` bounds how long ``close()`` waits for
    pending requests; ``None`` waits for all of them.
    """

    start_method: str = "spawn"
    ready_timeout: Optional[float] = 30.0
    join_timeout: float = 1.0
    drain_timeout: Optional[float] = None
    pool_throttle: int = 3
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        if self.start_method not in mp.get_all_start_methods():
            raise ValueError(f"Unsupported start method {self.start_method!r}")
        if self.pool_throttle < 1:
            raise ValueError("pool_throttle must be at least 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkerConfig":
        env = os.environ if environ is None else environ
        kwargs = {}
        raw = env.get(_env_name("start_method"))
        if raw:
            kwargs["start_method"] = raw.strip()
        for field, allow_none in (
            ("ready_timeout", True),
            ("join_timeout", False),
            ("drain_timeout", True),
        ):
            name = _env_name(field)
            if name in env:
                kwargs[field] = _parse_seconds(name, env[name], allow_none=allow_none)
        name = _env_name("pool_throttle")
        if name in env:
            try:
                kwargs["pool_throttle"] = int(env[name])
            except ValueError:
                raise ValueError(f"{name}={env[name]!r} is not an integer") from None
        raw = env.get(_env_name("log_level"))
        if raw:
            kwargs["log_level"] = raw.strip().upper()
        return cls(**kwargs)
