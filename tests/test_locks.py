"""Tests for the reader-writer lock."""

import threading
import time

import pytest

from stock_viewer.engine.locks import RWLock


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.001)


def test_readers_share_the_lock():
    lock = RWLock()
    held = threading.Event()
    release = threading.Event()

    def reader():
        with lock.read():
            held.set()
            release.wait(2.0)

    t = threading.Thread(target=reader)
    t.start()
    held.wait(2.0)

    with lock.read():
        assert lock.readers == 2

    release.set()
    t.join(2.0)
    assert lock.readers == 0


def test_writer_waits_for_readers():
    lock = RWLock()
    acquired = threading.Event()

    lock.acquire_read()

    def writer():
        with lock.write():
            acquired.set()

    t = threading.Thread(target=writer)
    t.start()
    time.sleep(0.05)
    assert not acquired.is_set()

    lock.release_read()
    t.join(2.0)
    assert acquired.is_set()


def test_waiting_writer_goes_before_new_readers():
    lock = RWLock()
    order = []

    lock.acquire_read()

    def writer():
        with lock.write():
            order.append("writer")

    def late_reader():
        with lock.read():
            order.append("reader")

    w = threading.Thread(target=writer)
    w.start()
    _wait_for(lambda: lock._writers_waiting == 1)

    r = threading.Thread(target=late_reader)
    r.start()
    time.sleep(0.05)
    assert order == []

    lock.release_read()
    w.join(2.0)
    r.join(2.0)
    assert order == ["writer", "reader"]


def test_unmatched_release_raises():
    lock = RWLock()
    with pytest.raises(RuntimeError):
        lock.release_read()
    with pytest.raises(RuntimeError):
        lock.release_write()


def test_context_managers_release_on_error():
    lock = RWLock()
    with pytest.raises(KeyError):
        with lock.write():
            raise KeyError("boom")
    assert not lock.write_locked

    with pytest.raises(KeyError):
        with lock.read():
            raise KeyError("boom")
    assert lock.readers == 0
