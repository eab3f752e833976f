from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from scout_api.db.schemas import DatasetStatus, Transaction
from scout_api.services.datastore import DataStoreError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


class LoadCancelled(RuntimeError):
    """The load was cancelled before all pages arrived."""


class RowSource(Protocol):
    def count(self, table: str) -> int: ...

    def fetch_range(self, table: str, start: int, end: int) -> list[dict[str, Any]]: ...


def progress_percent(loaded: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, not banker's rounding
    return min(100, int(math.floor(loaded / total * 100 + 0.5)))


@dataclass
class LoadState:
    status: str = "idle"
    progress: int = 0
    error: str | None = None
    rows: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    history: list[int] = field(default_factory=list)

    def start(self) -> None:
        self.status = "loading"
        self.progress = 0
        self.error = None
        self.rows = 0
        self.history = []
        self.started_at = datetime.now(timezone.utc)
        self.finished_at = None

    def report(self, percent: int) -> None:
        self.progress = percent
        self.history.append(percent)

    def succeed(self, rows: int) -> None:
        self.status = "ready"
        self.rows = rows
        self.finished_at = datetime.now(timezone.utc)

    def fail(self, message: str, status: str = "error") -> None:
        self.status = status
        self.error = message
        self.rows = 0
        self.finished_at = datetime.now(timezone.utc)

    def snapshot(self) -> DatasetStatus:
        return DatasetStatus(
            status=self.status,
            progress=self.progress,
            error=self.error,
            rows=self.rows,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class BulkTransactionLoader:
    """Pages an entire table into memory.

    One count query, then sequential range queries of ``page_size`` rows until
    the offset passes the reported total. The first failing request aborts the
    whole load and nothing partial is returned.
    """

    def __init__(self, source: RowSource, table: str = "transactions", page_size: int = DEFAULT_PAGE_SIZE):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.source = source
        self.table = table
        self.page_size = page_size

    def load(
        self,
        state: LoadState | None = None,
        on_progress: Callable[[int], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Transaction]:
        state = state or LoadState()
        state.start()
        try:
            rows = self._fetch_all(state, on_progress, cancel)
            transactions = [Transaction.from_row(r) for r in rows]
        except LoadCancelled as exc:
            logger.info("Load of %s cancelled at %s%%", self.table, state.progress)
            state.fail(str(exc), status="cancelled")
            raise
        except DataStoreError as exc:
            logger.error("Load of %s failed: %s", self.table, exc)
            state.fail(str(exc))
            raise
        except Exception as exc:
            logger.exception("Load of %s failed unexpectedly", self.table)
            state.fail(str(exc) or type(exc).__name__)
            raise
        state.succeed(len(transactions))
        logger.info("Loaded %d rows from %s", len(transactions), self.table)
        return transactions

    def _fetch_all(
        self,
        state: LoadState,
        on_progress: Callable[[int], None] | None,
        cancel: threading.Event | None,
    ) -> list[dict[str, Any]]:
        total = self.source.count(self.table)
        logger.info("Total records to fetch from %s: %s", self.table, total)
        if not total:
            return []

        out: list[dict[str, Any]] = []
        for offset in range(0, total, self.page_size):
            if cancel is not None and cancel.is_set():
                raise LoadCancelled(f"Load cancelled after {len(out)} of {total} rows")
            page = self.source.fetch_range(self.table, offset, offset + self.page_size - 1)
            out.extend(page)
            percent = progress_percent(len(out), total)
            state.report(percent)
            if on_progress is not None:
                on_progress(percent)
            logger.debug("Progress %s%% (%d/%d)", percent, len(out), total)

        if len(out) != total:
            logger.warning("Expected %d rows from %s, received %d", total, self.table, len(out))
        return out
