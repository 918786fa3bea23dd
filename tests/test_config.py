import pytest

from isolated_workers import WorkerConfig


def test_defaults_without_environment():
    config = WorkerConfig.from_env({})
    assert config == WorkerConfig()
    assert config.start_method == "spawn"
    assert config.drain_timeout is None


def test_values_from_environment():
    config = WorkerConfig.from_env(
        {
            "ISOLATED_WORKERS_READY_TIMEOUT": "none",
            "ISOLATED_WORKERS_JOIN_TIMEOUT": "2.5",
            "ISOLATED_WORKERS_DRAIN_TIMEOUT": "10",
            "ISOLATED_WORKERS_POOL_THROTTLE": "7",
            "ISOLATED_WORKERS_LOG_LEVEL": "debug",
        }
    )
    assert config.ready_timeout is None
    assert config.join_timeout == 2.5
    assert config.drain_timeout == 10.0
    assert config.pool_throttle == 7
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize(
    "name, value",
    [
        ("ISOLATED_WORKERS_JOIN_TIMEOUT", "none"),
        ("ISOLATED_WORKERS_READY_TIMEOUT", "soon"),
        ("ISOLATED_WORKERS_DRAIN_TIMEOUT", "-1"),
        ("ISOLATED_WORKERS_POOL_THROTTLE", "many"),
        ("ISOLATED_WORKERS_POOL_THROTTLE", "0"),
        ("ISOLATED_WORKERS_START_METHOD", "teleport"),
    ],
)
def test_invalid_values_are_rejected(name, value):
    with pytest.raises(ValueError):
        WorkerConfig.from_env({name: value})


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("ISOLATED_WORKERS_JOIN_TIMEOUT", "0.25")
    assert WorkerConfig.from_env().join_timeout == 0.25
