from __future__ import annotations

import logging
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

logger = logging.getLogger(__name__)

RPC_FUNCTIONS = (
    "get_hourly_trends",
    "get_brand_performance",
    "get_age_distribution_simple",
    "get_gender_distribution_simple",
    "get_daily_kpis",
    "get_basket_summary",
    "get_quick_stats",
    "get_filter_options",
    "get_scout_dashboard_data",
)


class DataStoreError(RuntimeError):
    """A request to the remote store failed."""


class SupabaseDataStore:
    def __init__(self, url: str, key: str, client: Client | None = None):
        self.client = client or create_client(url, key)

    def count(self, table: str) -> int:
        try:
            resp = self.client.table(table).select("*", count="exact", head=True).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise DataStoreError(f"Count query on {table} failed: {exc}") from exc
        return int(resp.count or 0)

    def fetch_range(self, table: str, start: int, end: int) -> list[dict[str, Any]]:
        try:
            resp = self.client.table(table).select("*").range(start, end).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise DataStoreError(f"Range query on {table} [{start}, {end}] failed: {exc}") from exc
        return list(resp.data or [])

    def rpc(self, fn: str, params: dict[str, Any] | None = None) -> Any:
        if fn not in RPC_FUNCTIONS:
            raise ValueError(f"Unknown aggregate function: {fn}")
        logger.debug("rpc %s params=%s", fn, params)
        try:
            resp = self.client.rpc(fn, params or {}).execute()
        except (APIError, httpx.HTTPError) as exc:
            raise DataStoreError(f"RPC {fn} failed: {exc}") from exc
        return resp.data
