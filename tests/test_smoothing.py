"""Tests for the moving average and the aggregator."""

import threading
from collections import deque

import pytest

from stock_viewer.engine.smoothing import Aggregator, moving_average
from stock_viewer.engine.state import HISTORY_LEN, MarketState, UiState


def _set_history(market, index, values):
    inst = market.instruments[index]
    inst.history.clear()
    inst.history.extend(values)
    if values:
        inst.price = values[-1]


def test_moving_average_full_window():
    assert moving_average(deque([100.0, 101.0, 99.0, 102.0, 103.0])) == 101.0


def test_moving_average_uses_only_the_last_window():
    assert moving_average([1.0, 1.0, 100.0, 101.0, 99.0, 102.0, 103.0], window=5) == 101.0


def test_moving_average_short_history():
    assert moving_average([10.0, 20.0], window=5) == 15.0


def test_moving_average_empty_and_bad_window():
    assert moving_average([]) is None
    with pytest.raises(ValueError):
        moving_average([1.0], window=0)


def test_recompute_writes_mean_of_recent_raw_prices():
    market = MarketState(count=2)
    ui = UiState.for_market(market)
    _set_history(market, 0, [100.0, 101.0, 99.0, 102.0, 103.0])

    Aggregator(market, ui).recompute(now=7.0)

    first, second = ui.snapshot()
    assert first.value == 101.0
    assert first.history == (101.0,)
    assert first.last_update == 7.0
    # Untouched instrument averages its flat seed history
    assert second.value == 100.0


def test_recompute_keeps_previous_value_for_empty_history():
    market = MarketState(count=1)
    ui = UiState.for_market(market)
    _set_history(market, 0, [])

    Aggregator(market, ui).recompute()

    view = ui.snapshot()[0]
    assert view.value == 100.0
    assert view.history == ()


def test_derived_history_is_bounded():
    market = MarketState(count=1)
    ui = UiState.for_market(market)
    aggregator = Aggregator(market, ui)

    for _ in range(HISTORY_LEN + 20):
        market.apply_sweep([1.0])
        aggregator.recompute()

    view = ui.snapshot()[0]
    assert len(view.history) == HISTORY_LEN
    assert view.history[-1] == view.value
    assert aggregator.cycles == HISTORY_LEN + 20


def test_prior_readers_keep_their_stale_value():
    market = MarketState(count=1)
    ui = UiState.for_market(market)
    aggregator = Aggregator(market, ui)
    aggregator.recompute()
    old = ui.snapshot()[0]

    market.apply_sweep([2.0])
    aggregator.recompute()

    assert old.value == 100.0
    assert ui.snapshot()[0].value == pytest.approx(100.4)


def test_aggregator_rejects_mismatched_states():
    with pytest.raises(ValueError):
        Aggregator(MarketState(count=2), UiState(count=3))


def test_run_loop_recomputes_until_stopped():
    market = MarketState(count=1)
    ui = UiState.for_market(market)
    aggregator = Aggregator(market, ui, period_sec=0.01)
    stop = threading.Event()

    t = threading.Thread(target=aggregator.run, args=(stop,))
    t.start()
    threading.Event().wait(0.1)
    stop.set()
    t.join(2.0)

    assert not t.is_alive()
    assert aggregator.cycles >= 2
