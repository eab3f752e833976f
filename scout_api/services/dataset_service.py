from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from scout_api.core.config import Settings
from scout_api.db.schemas import DatasetStatus, Transaction
from scout_api.services.cache import TTLCache, cache_key
from scout_api.services.loader import BulkTransactionLoader, LoadState, RowSource

logger = logging.getLogger(__name__)


class DataSource(RowSource, Protocol):
    def rpc(self, fn: str, params: dict[str, Any] | None = None) -> Any: ...


class DatasetService:
    """Owns the in-memory transaction collection and the RPC result cache."""

    def __init__(self, source: DataSource, settings: Settings, cache: TTLCache | None = None):
        self.source = source
        self.settings = settings
        self.cache = cache or TTLCache(settings.cache.ttl_seconds)
        self.state = LoadState()
        self._load_lock = threading.Lock()
        self._cancel: threading.Event | None = None

    @property
    def _transactions_key(self) -> str:
        return cache_key("transactions", {"table": self.settings.transactions_table})

    def status(self) -> DatasetStatus:
        return self.state.snapshot()

    def cached_transactions(self) -> list[Transaction] | None:
        return self.cache.get(self._transactions_key)

    def transactions(self, force: bool = False) -> list[Transaction]:
        key = self._transactions_key
        if not force and self.settings.cache.enabled:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        with self._load_lock:
            if not force and self.settings.cache.enabled:
                # another request may have finished the load while we waited
                cached = self.cache.get(key)
                if cached is not None:
                    return cached

            self._cancel = threading.Event()
            state = LoadState()
            self.state = state
            loader = BulkTransactionLoader(self.source, self.settings.transactions_table, self.settings.page_size)
            try:
                rows = loader.load(state=state, cancel=self._cancel)
            finally:
                self._cancel = None
            if self.settings.cache.enabled:
                self.cache.set(key, rows)
            return rows

    def refresh(self) -> list[Transaction]:
        logger.info("Manual refresh of %s requested", self.settings.transactions_table)
        self.cache.invalidate("transactions:")
        return self.transactions(force=True)

    def cancel(self) -> bool:
        token = self._cancel
        if token is None:
            return False
        logger.info("Cancelling in-flight load at %s%%", self.state.progress)
        token.set()
        return True

    def aggregate(self, fn: str, params: dict[str, Any] | None = None) -> Any:
        key = cache_key(f"rpc:{fn}", params)
        if self.settings.cache.enabled:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        logger.debug("Aggregate cache miss for %s", key)
        data = self.source.rpc(fn, params)
        if self.settings.cache.enabled:
            self.cache.set(key, data)
        return data
