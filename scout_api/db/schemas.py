from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _to_float(val: Any) -> float | None:
    if val is None or isinstance(val, bool):
        return None
    try:
        out = float(val)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _to_int(val: Any) -> int | None:
    f = _to_float(val)
    return int(f) if f is not None else None


def _to_text(val: Any) -> str | None:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def _to_datetime(val: Any) -> datetime | None:
    if isinstance(val, datetime):
        return val
    if not isinstance(val, str) or not val.strip():
        return None
    s = val.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        return None


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | str | None = None
    created_at: datetime | None = None
    total_amount: float = 0.0
    store_id: int | None = None
    store_location: str | None = None
    region: str | None = None
    city: str | None = None
    customer_id: str | None = None
    customer_age: int | None = None
    customer_gender: str | None = None
    payment_method: str | None = None
    brand: str | None = None
    category: str | None = None
    items_count: int | None = None
    transcript: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        """Build a transaction from a raw store row, never rejecting it.

        Malformed values become ``None`` (or 0 for the amount) so that every
        row still shows up in the aggregates, in the "Unknown" buckets.
        """
        raw_id = row.get("id")
        return cls(
            id=raw_id if isinstance(raw_id, (int, str)) and not isinstance(raw_id, bool) else None,
            created_at=_to_datetime(row.get("created_at") or row.get("timestamp")),
            total_amount=_to_float(row.get("total_amount", row.get("amount"))) or 0.0,
            store_id=_to_int(row.get("store_id")),
            store_location=_to_text(row.get("store_location")),
            region=_to_text(row.get("region")),
            city=_to_text(row.get("city")),
            customer_id=_to_text(row.get("customer_id") or row.get("device_id")),
            customer_age=_to_int(row.get("customer_age")),
            customer_gender=_to_text(row.get("customer_gender")),
            payment_method=_to_text(row.get("payment_method")),
            brand=_to_text(row.get("brand") or row.get("brand_name")),
            category=_to_text(row.get("category")),
            items_count=_to_int(row.get("items_count") or row.get("basket_size")),
            transcript=_to_text(row.get("transcript") or row.get("audio_transcript")),
        )


class MetricBucket(BaseModel):
    key: str | int
    count: int = 0
    amount: float = 0.0


class HeatmapCell(BaseModel):
    hour: int
    day_of_week: int
    transaction_count: int = 0
    revenue: float = 0.0
    avg_transaction_value: float = 0.0


class KPISummary(BaseModel):
    total_transactions: int = 0
    total_revenue: float = 0.0
    average_transaction_value: float = 0.0
    unique_customers: int = 0
    avg_basket_size: float = 0.0


class DatasetStatus(BaseModel):
    status: Literal["idle", "loading", "ready", "error", "cancelled"]
    progress: int
    error: str | None = None
    rows: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str | None = None


class ChatMessageOut(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime


class ChatResponse(BaseModel):
    session_id: str
    answer: str
    failed: bool = False
    messages: list[ChatMessageOut] = []


class PresetRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    filters: dict[str, Any] = {}
