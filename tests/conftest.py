"""Shared fakes for sinks and the terminal."""

import threading

import pytest

from stock_viewer.ui.terminal import TerminalError


class FakeStore:
    """Async persistence sink recording every insert."""

    def __init__(self, fail_ids=()):
        self.inserts = []
        self.fail_ids = set(fail_ids)
        self.opened = 0
        self.closed = 0

    async def open(self):
        self.opened += 1

    async def insert(self, instrument_id, price, timestamp=None):
        if instrument_id in self.fail_ids:
            raise ConnectionError(f"insert for {instrument_id} refused")
        self.inserts.append((instrument_id, price, timestamp))

    async def close(self):
        self.closed += 1


class FakeCache:
    """Cache sink recording every set() call."""

    def __init__(self, fail=False, delay=0.0):
        self.calls = []
        self.values = {}
        self.fail = fail
        self.delay = delay
        self._lock = threading.Lock()

    def set(self, key, value):
        if self.delay:
            threading.Event().wait(self.delay)
        if self.fail:
            raise ConnectionError("cache down")
        with self._lock:
            self.calls.append((key, value))
            self.values[key] = value


class FakeTerminal:
    """Scripted terminal: poll_key() returns queued keys, then None."""

    def __init__(self, keys=(), size=(120, 40), fail_draw=False, fail_close=False,
                 fail_open=False):
        self.keys = list(keys)
        self._size = size
        self.fail_open = fail_open
        self.fail_draw = fail_draw
        self.fail_close = fail_close
        self.opened = 0
        self.closed = 0
        self.polls = 0
        self.draws = []

    def open(self):
        self.opened += 1
        if self.fail_open:
            raise TerminalError("not a terminal")

    def poll_key(self, timeout):
        self.polls += 1
        if self.keys:
            return self.keys.pop(0)
        threading.Event().wait(timeout)
        return None

    def draw(self, renderable):
        if self.fail_draw:
            raise TerminalError("screen went away")
        self.draws.append(renderable)

    def size(self):
        return self._size

    def close(self):
        self.closed += 1
        if self.fail_close:
            raise TerminalError("could not leave alternate screen")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def make_store():
    return FakeStore


@pytest.fixture
def make_cache():
    return FakeCache


@pytest.fixture
def make_terminal():
    return FakeTerminal
