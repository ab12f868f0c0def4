"""Tests for the generator loop, sink fan-out and the dispatcher."""

import threading
import time

import numpy as np

from stock_viewer.datafeed.dispatch import SinkDispatcher
from stock_viewer.datafeed.generator import Generator
from stock_viewer.datafeed.ticklog import Flusher, TickLog
from stock_viewer.engine.state import HISTORY_LEN, MarketState


def test_dispatcher_runs_jobs_and_counts_failures():
    dispatcher = SinkDispatcher(workers=2)
    dispatcher.start()
    seen = []

    def boom():
        raise OSError("disk full")

    dispatcher.submit("ok", seen.append, 1)
    dispatcher.submit("bad", boom)
    dispatcher.submit("ok", seen.append, 2)
    dispatcher.drain()
    dispatcher.stop()

    assert sorted(seen) == [1, 2]
    assert dispatcher.completed == 2
    assert dispatcher.failed == 1


def test_tick_updates_every_instrument_within_bounds():
    market = MarketState(count=3)
    generator = Generator(market, SinkDispatcher(workers=1), rng=np.random.default_rng(11))

    for _ in range(HISTORY_LEN * 2):
        before = [inst.price for inst in market.instruments]
        records = generator.tick()
        assert [r.instrument_id for r in records] == [0, 1, 2]
        for inst, old, record in zip(market.instruments, before, records):
            assert -2.0 <= inst.price - old <= 2.0
            assert inst.history[-1] == inst.price == record.price
            assert len(inst.history) == HISTORY_LEN

    assert generator.ticks == HISTORY_LEN * 2


def test_tick_fans_out_to_tick_log_and_cache(tmp_path, cache):
    market = MarketState(count=3)
    dispatcher = SinkDispatcher(workers=1)
    dispatcher.start()
    log = TickLog(tmp_path / "ticks.txt")
    generator = Generator(market, dispatcher, log, cache, rng=np.random.default_rng(2))

    for _ in range(10):
        generator.tick()
    dispatcher.drain()
    dispatcher.stop()

    lines = (tmp_path / "ticks.txt").read_text().splitlines()
    assert len(lines) == 30
    assert len(cache.calls) == 30
    # Single worker keeps FIFO order, so the cache ends on the latest prices
    assert cache.values == {
        f"stock:{inst.instrument_id}": inst.price for inst in market.instruments
    }


def test_cache_failures_are_logged_and_do_not_stop_ticks(tmp_path, make_cache):
    market = MarketState(count=2)
    dispatcher = SinkDispatcher(workers=1)
    dispatcher.start()
    log = TickLog(tmp_path / "ticks.txt")
    generator = Generator(market, dispatcher, log, make_cache(fail=True))

    generator.tick()
    generator.tick()
    dispatcher.drain()
    dispatcher.stop()

    assert dispatcher.failed == 4
    assert len((tmp_path / "ticks.txt").read_text().splitlines()) == 4


def test_slow_sink_does_not_hold_the_market_lock(make_cache):
    market = MarketState(count=3)
    dispatcher = SinkDispatcher(workers=1)
    dispatcher.start()
    generator = Generator(market, dispatcher, cache=make_cache(delay=0.3))

    start = time.perf_counter()
    generator.tick()
    elapsed = time.perf_counter() - start

    assert elapsed < 0.15
    assert not market.lock.write_locked
    # A reader gets in while the sink is still busy
    assert market.snapshot()[0].price == market.instruments[0].price
    dispatcher.stop()


def test_run_loop_ticks_and_flushes_everything(tmp_path, store):
    market = MarketState(count=3)
    dispatcher = SinkDispatcher(workers=2)
    dispatcher.start()
    log = TickLog(tmp_path / "ticks.txt")
    flusher = Flusher(log, store, interval_sec=0.05)
    generator = Generator(market, dispatcher, log, flusher=flusher, period_sec=0.01)
    stop = threading.Event()

    t = threading.Thread(target=generator.run, args=(stop,))
    t.start()
    time.sleep(0.3)
    stop.set()
    t.join(2.0)
    assert not t.is_alive()

    dispatcher.drain()
    dispatcher.stop()
    flusher.flush_blocking()
    flusher.close()

    assert generator.ticks >= 5
    assert len(store.inserts) == generator.ticks * 3
    assert (tmp_path / "ticks.txt").read_text() == ""


class FullDiskTickLog(TickLog):
    def __init__(self, path, full_for):
        super().__init__(path)
        self.full_for = full_for

    def append(self, record):
        if record.instrument_id in self.full_for:
            raise OSError("disk full")
        super().append(record)


def test_append_failure_skips_only_that_record(tmp_path, cache):
    market = MarketState(count=3)
    dispatcher = SinkDispatcher(workers=1)
    dispatcher.start()
    log = FullDiskTickLog(tmp_path / "ticks.txt", full_for={1})
    generator = Generator(market, dispatcher, log, cache, rng=np.random.default_rng(5))

    generator.tick()
    dispatcher.drain()
    dispatcher.stop()

    lines = (tmp_path / "ticks.txt").read_text().splitlines()
    assert [line.split(",")[0] for line in lines] == ["0", "2"]
    assert sorted(cache.values) == ["stock:0", "stock:1", "stock:2"]
    assert dispatcher.failed == 1
    assert dispatcher.completed == 5


def test_pending_counts_jobs_not_yet_run():
    dispatcher = SinkDispatcher(workers=1)  # not started
    dispatcher.submit("cache", lambda: None)
    dispatcher.submit("cache", lambda: None)

    assert dispatcher.pending == 2
