import sys

import pytest

from cligate.breaker import BreakerStore, MemoryBackend
from cligate.providers.base import ProviderDescriptor


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def minutes(self, m: float) -> None:
        self.now += m * 60


def python_provider(script: str, *, name: str = "fake", timeout_s: float = 10, **kw) -> ProviderDescriptor:
    """Descriptor that runs `python -c script <prompt>`; the prompt is sys.argv[1]."""
    return ProviderDescriptor(
        name=name,
        executable=sys.executable,
        timeout_s=timeout_s,
        model_flag=None,
        pre_prompt_args=("-c", script),
        **kw,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend, clock):
    return BreakerStore(backend, threshold=3, window_s=300, cooldown_s=600, clock=clock)
