import pytest

from dispatcher import EventDispatcher
from state import SessionState


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSurface:
    """Presentation surface that remembers everything sent to it."""

    def __init__(self):
        self.events = []
        self.window_calls = []

    def send(self, event, payload=None):
        self.events.append((event, payload))

    def minimize(self):
        self.window_calls.append("minimize")

    def maximize(self):
        self.window_calls.append("maximize")

    def close(self):
        self.window_calls.append("close")

    def names(self):
        return [event for event, _ in self.events]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state(clock):
    return SessionState(clock=clock)


@pytest.fixture
def dispatcher(state):
    return EventDispatcher(state)


@pytest.fixture
def surface():
    return RecordingSurface()
