"""
Moving-average aggregator.

Reads raw history from MarketState and writes a smoothed value per instrument
into UiState every 300ms.

Consistency: the generator applies whole sweeps under the exclusive market
lock, and we hold the shared market lock for the whole recompute, so one
cycle always sees every instrument from the same tick.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from itertools import islice
from typing import Sequence

import numpy as np

from .state import MarketState, UiState, lock_market_then_ui

logger = logging.getLogger(__name__)

MOVING_AVG_LEN = 5
DEFAULT_PERIOD_SEC = 0.3


def moving_average(history: Sequence[float] | deque[float], window: int = MOVING_AVG_LEN) -> float | None:
    """
    Arithmetic mean of the last min(window, len(history)) values.

    Returns None for an empty history.
    """
    if window <= 0:
        raise ValueError("window must be > 0")

    n = len(history)
    if n == 0:
        return None

    take = min(window, n)
    # islice over the tail avoids copying the full history
    tail = np.fromiter(islice(history, n - take, n), dtype=np.float64, count=take)
    return float(tail.mean())


class Aggregator:
    """
    Periodic moving-average job.

    Thread-safety: run() is meant for one dedicated thread; recompute() may be
    called from anywhere since it takes both locks itself.
    """

    __slots__ = ('market', 'ui', 'window', 'period_sec', '_cycles')

    def __init__(
        self,
        market: MarketState,
        ui: UiState,
        window: int = MOVING_AVG_LEN,
        period_sec: float = DEFAULT_PERIOD_SEC,
    ) -> None:
        if len(market) != len(ui):
            raise ValueError("market and ui states must track the same instruments")
        self.market = market
        self.ui = ui
        self.window = window
        self.period_sec = period_sec
        self._cycles: int = 0

    def recompute(self, now: float | None = None) -> None:
        """One aggregation cycle over every instrument."""
        if now is None:
            now = time.monotonic()

        with lock_market_then_ui(self.market, self.ui):
            for i, derived in enumerate(self.ui.instruments):
                avg = moving_average(self.market.instruments[i].history, self.window)
                if avg is None:
                    continue  # nothing to average yet, keep the previous value
                derived.replace_value(avg, now)

        self._cycles += 1

    @property
    def cycles(self) -> int:
        return self._cycles

    def run(self, stop: threading.Event) -> None:
        """Recompute every period_sec until stop is set. Plain sleep, no catch-up."""
        logger.info("Aggregator started (window=%d, period=%.3fs)", self.window, self.period_sec)
        while not stop.is_set():
            try:
                self.recompute()
            except Exception:
                logger.exception("Aggregator cycle failed")
            stop.wait(self.period_sec)
        logger.info("Aggregator stopped after %d cycles", self._cycles)
