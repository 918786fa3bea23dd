import pytest

from isolated_workers import WorkerConfig


@pytest.fixture
def config() -> WorkerConfig:
    """Generous start-up allowance, short joins so forced teardowns stay quick."""

    return WorkerConfig(ready_timeout=60.0, join_timeout=0.5)
