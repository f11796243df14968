"""Pytest fixtures and config."""

import pytest

from chatstream.core.broadcast import StreamBroadcast


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Keep host environment out of config tests."""
    for name in (
        "STREAMING_GRANULARITY",
        "STREAMING_INTER_STEP_DELAY_MS",
        "LOG_LEVEL",
        "CHATSTREAM_ENV_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    yield


@pytest.fixture
def broadcast():
    b = StreamBroadcast()
    yield b
    b.close()


@pytest.fixture
def recorder():
    """Callable that records every value it is called with."""

    class Recorder:
        def __init__(self) -> None:
            self.calls: list = []

        def __call__(self, value) -> None:
            self.calls.append(value)

    return Recorder()
