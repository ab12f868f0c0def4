"""
Synthetic price generator.

Every 100ms:
1. One exclusive-locked sweep over MarketState (random walk, +/- 2.0 per tick)
2. After the lock is released, each new price goes to the sink dispatcher
   twice: once for the append-only tick log, once for the cache
3. If a second has passed, the flusher drains the tick log into persistence

Performance notes:
- Deltas for the whole sweep are drawn as one numpy vector before taking the
  lock, so the lock covers only the in-memory update
- No sink I/O ever happens while the market lock is held
"""

from __future__ import annotations

import logging
import threading
import time

import numpy as np

from .dispatch import SinkDispatcher
from .sinks import CacheSink, NullCache, cache_key
from .ticklog import Flusher, TickLog
from ..engine.state import MarketState
from ..types import TickRecord

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SEC = 0.1
MAX_DELTA = 2.0


class Generator:
    """
    Random-walk price source plus co-scheduled flusher.

    Usage:
        gen = Generator(market, dispatcher, tick_log, cache, flusher)
        threading.Thread(target=gen.run, args=(stop,), daemon=True).start()
    """

    def __init__(
        self,
        market: MarketState,
        dispatcher: SinkDispatcher,
        tick_log: TickLog | None = None,
        cache: CacheSink | None = None,
        flusher: Flusher | None = None,
        period_sec: float = DEFAULT_PERIOD_SEC,
        max_delta: float = MAX_DELTA,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.market = market
        self.dispatcher = dispatcher
        self.tick_log = tick_log
        self.cache = cache if cache is not None else NullCache()
        self.flusher = flusher
        self.period_sec = period_sec
        self.max_delta = max_delta
        self._rng = rng if rng is not None else np.random.default_rng()
        self._ticks: int = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    def sweep(self) -> list[TickRecord]:
        """
        Apply one random step to every instrument.

        HOT PATH - called every tick. Returns the new (id, price) records.
        """
        deltas = self._rng.uniform(-self.max_delta, self.max_delta, size=len(self.market))
        return self.market.apply_sweep(deltas)

    def publish(self, records: list[TickRecord]) -> None:
        """Hand each record to the sinks. Fire-and-forget, never blocks."""
        for record in records:
            if self.tick_log is not None:
                self.dispatcher.submit("tick log", self.tick_log.append, record)
            self.dispatcher.submit(
                "cache", self.cache.set, cache_key(record.instrument_id), record.price
            )

    def tick(self) -> list[TickRecord]:
        """One full generator cycle (sweep + fan-out), without the flush."""
        records = self.sweep()
        self.publish(records)
        self._ticks += 1
        return records

    def run(self, stop: threading.Event) -> None:
        """
        Tick every period_sec until stop is set.

        Plain sleep after each cycle: no drift correction and no catch-up
        when a flush overruns the period.
        """
        logger.info(
            "Generator started (%d instruments, period=%.3fs)",
            len(self.market), self.period_sec,
        )
        while not stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Generator tick failed")

            if self.flusher is not None:
                self.flusher.maybe_flush(time.monotonic())

            stop.wait(self.period_sec)
        logger.info("Generator stopped after %d ticks", self._ticks)
