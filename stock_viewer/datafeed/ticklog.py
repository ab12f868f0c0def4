"""
Append-only tick log and the flusher that drains it into persistence.

Log format: one "<instrument_id>,<price>" line per tick record, e.g.
    0,101.53017461222146
    1,98.0

Dispatcher workers append; the flusher (running inside the generator loop,
about once a second) reads the whole file, inserts every parseable line,
then cuts the consumed bytes off the front. Lines appended between the read
and the cut survive for the next flush.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from pathlib import Path

from .sinks import PersistenceSink
from ..types import TickRecord

logger = logging.getLogger(__name__)

DEFAULT_LOG_PATH = "stock_data.txt"
DEFAULT_FLUSH_INTERVAL_SEC = 1.0


def format_line(record: TickRecord) -> str:
    return f"{record.instrument_id},{record.price}\n"


def parse_line(line: str) -> TickRecord:
    """
    Parse one log line into a TickRecord.

    Raises ValueError for a wrong field count or non-numeric fields.
    """
    parts = line.strip().split(',')
    if len(parts) != 2:
        raise ValueError(f"expected 2 fields, got {len(parts)}")

    id_str, price_str = parts
    try:
        instrument_id = int(id_str)
    except ValueError:
        raise ValueError(f"bad instrument id {id_str!r}") from None
    try:
        price = float(price_str)
    except ValueError:
        raise ValueError(f"bad price {price_str!r}") from None

    return TickRecord(instrument_id, price)


class TickLog:
    """
    Local append-only file of tick records.

    Thread-safety: append/read/truncate are serialised by a private mutex,
    so a flush never interleaves with a half-written line.
    """

    __slots__ = ('path', '_lock')

    def __init__(self, path: str | os.PathLike[str] = DEFAULT_LOG_PATH) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: TickRecord) -> None:
        """Append one record. OSError propagates to the caller (the dispatcher logs it)."""
        line = format_line(record)
        with self._lock:
            with open(self.path, 'a', encoding='utf-8') as f:
                f.write(line)

    def read(self) -> tuple[str, int]:
        """
        Read the whole log.

        Returns (text, consumed_bytes). A missing file reads as empty.
        Undecodable bytes become U+FFFD so they surface as malformed lines.
        """
        with self._lock:
            try:
                data = self.path.read_bytes()
            except FileNotFoundError:
                return "", 0
        return data.decode('utf-8', errors='replace'), len(data)

    def truncate(self, consumed: int) -> None:
        """Remove the first `consumed` bytes, keeping anything appended after read()."""
        with self._lock:
            try:
                data = self.path.read_bytes()
            except FileNotFoundError:
                return
            with open(self.path, 'wb') as f:
                f.write(data[consumed:])


class Flusher:
    """
    Batch job moving tick log records into a PersistenceSink.

    Not a thread of its own: the generator calls maybe_flush() after every
    tick and the flush runs inline, so writes are strictly sequential and in
    file order.

    The persistence sink is async (asyncpg), so the flusher owns a private
    event loop used only from the generator thread.
    """

    def __init__(
        self,
        log: TickLog,
        store: PersistenceSink,
        interval_sec: float = DEFAULT_FLUSH_INTERVAL_SEC,
    ) -> None:
        self.log = log
        self.store = store
        self.interval_sec = interval_sec

        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_flush: float = time.monotonic()

        # Totals across the process lifetime
        self.flushes: int = 0
        self.records_written: int = 0
        self.lines_skipped: int = 0

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def open(self) -> None:
        """Connect the persistence sink. Failures propagate (startup error)."""
        self._get_loop().run_until_complete(self.store.open())

    def close(self) -> None:
        if self._loop is None:
            return
        try:
            self._loop.run_until_complete(self.store.close())
        except Exception:
            logger.exception("Error closing persistence sink")
        finally:
            self._loop.close()
            self._loop = None

    async def flush(self) -> int:
        """
        Drain the log once. Returns the number of records persisted.

        Read or truncate failure aborts the flush (logged). Malformed lines
        and failed inserts are logged and skipped.
        """
        try:
            content, consumed = self.log.read()
        except OSError:
            logger.exception("Could not read tick log %s, flush aborted", self.log.path)
            return 0

        if not content:
            return 0

        lines = content.splitlines()
        logger.info("Flushing %d lines to persistence...", len(lines))

        written = 0
        for lineno, line in enumerate(lines, start=1):
            try:
                record = parse_line(line)
            except ValueError as e:
                self.lines_skipped += 1
                logger.warning("Skipping malformed tick log line %d %r: %s", lineno, line, e)
                continue

            try:
                await self.store.insert(record.instrument_id, record.price)
            except Exception:
                logger.exception("Persistence insert failed for instrument %d", record.instrument_id)
                continue
            written += 1

        try:
            self.log.truncate(consumed)
        except OSError:
            logger.exception("Could not truncate tick log %s", self.log.path)
            return written

        self.flushes += 1
        self.records_written += written
        logger.info("Flushed %d/%d records from %s", written, len(lines), self.log.path)
        return written

    def flush_blocking(self) -> int:
        """Run flush() to completion on the private loop."""
        return self._get_loop().run_until_complete(self.flush())

    def maybe_flush(self, now: float | None = None) -> bool:
        """Flush if at least interval_sec has passed since the last one."""
        if now is None:
            now = time.monotonic()
        if now - self._last_flush < self.interval_sec:
            return False
        try:
            self.flush_blocking()
        except Exception:
            logger.exception("Flush failed")
        self._last_flush = time.monotonic()
        return True
