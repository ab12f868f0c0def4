"""
Stock Viewer - live terminal dashboard for synthetic stock prices.

Architecture:
- engine/: Shared market/UI state, reader-writer lock, moving-average aggregator
- datafeed/: Price generator, tick log + flusher, sink dispatch (Redis, Postgres)
- ui/: Dashboard renderer (Rich + plotext) and terminal session
"""

__version__ = "0.1.0"
