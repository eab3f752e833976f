from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, tzinfo
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from scout_api.db.schemas import Transaction
from scout_api.services.metrics import age_bracket, local_time, region_of
from scout_api.services.storage import LocalStore

logger = logging.getLogger(__name__)

DATE_WINDOWS = ("all", "today", "7d", "30d", "custom")
AGE_GROUPS = ("18-25", "26-35", "36-50", "50+")
GENDERS = ("Male", "Female")
PAYMENT_METHODS = ("cash", "card", "gcash")

# field name -> URL query parameter
QUERY_KEYS = {
    "date_filter": "date",
    "start_date": "start",
    "end_date": "end",
    "region": "region",
    "city": "city",
    "category": "category",
    "brand": "brand",
    "age_group": "age",
    "gender": "gender",
    "payment_method": "payment",
    "min_transaction": "min",
    "max_transaction": "max",
    "customer_segment": "segment",
    "store_id": "store_id",
    "search_query": "q",
}

# field name -> RPC parameter
API_KEYS = {
    "date_filter": "p_date_filter",
    "region": "p_region_filter",
    "category": "p_category_filter",
    "brand": "p_brand_filter",
    "age_group": "p_age_filter",
    "gender": "p_gender_filter",
    "payment_method": "p_payment_filter",
}

SUMMARY_LABELS = {
    "date_filter": "Date",
    "start_date": "From",
    "end_date": "To",
    "region": "Region",
    "city": "City",
    "category": "Category",
    "brand": "Brand",
    "age_group": "Age",
    "gender": "Gender",
    "payment_method": "Payment",
    "min_transaction": "Min",
    "max_transaction": "Max",
    "customer_segment": "Segment",
    "store_id": "Store",
    "search_query": "Search",
}

PRESETS_NAMESPACE = "filter-presets"
LAST_FILTERS_NAMESPACE = "filters"
LAST_FILTERS_KEY = "scout-dashboard-filters"


class FilterState(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    date_filter: str = "all"
    start_date: date | None = None
    end_date: date | None = None
    region: str | None = None
    city: str | None = None
    category: str | None = None
    brand: str | None = None
    age_group: str | None = None
    gender: str | None = None
    payment_method: str | None = None
    min_transaction: float | None = Field(default=None, ge=0)
    max_transaction: float | None = Field(default=None, ge=0)
    customer_segment: str | None = None
    store_id: str | None = None
    search_query: str | None = None

    @field_validator("date_filter")
    @classmethod
    def _check_date_filter(cls, v: str) -> str:
        if v not in DATE_WINDOWS:
            raise ValueError(f"date_filter must be one of {', '.join(DATE_WINDOWS)}")
        return v

    @field_validator("age_group")
    @classmethod
    def _check_age_group(cls, v: str | None) -> str | None:
        if v is not None and v not in AGE_GROUPS:
            raise ValueError(f"age_group must be one of {', '.join(AGE_GROUPS)}")
        return v

    @field_validator("gender")
    @classmethod
    def _check_gender(cls, v: str | None) -> str | None:
        if v is not None and v not in GENDERS:
            raise ValueError(f"gender must be one of {', '.join(GENDERS)}")
        return v

    @field_validator("payment_method")
    @classmethod
    def _check_payment(cls, v: str | None) -> str | None:
        if v is not None and v not in PAYMENT_METHODS:
            raise ValueError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
        return v

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "FilterState":
        """Read filters from URL query parameters.

        Unknown parameters are ignored and invalid values fall back to the
        default, so a stale or hand-edited URL still yields a usable state.
        """
        data: dict[str, Any] = {}
        for name, qkey in QUERY_KEYS.items():
            raw = params.get(qkey)
            if raw is None:
                continue
            value = None if raw in ("", "null") else raw
            try:
                cls.model_validate({**data, name: value})
            except ValidationError:
                logger.warning("Ignoring invalid filter %s=%r", qkey, raw)
                continue
            data[name] = value
        return cls.model_validate(data)

    def non_default(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self.model_dump().items()
            if value is not None and value != DEFAULT_FILTERS_DUMP[name]
        }

    def to_query_string(self) -> str:
        return urlencode({QUERY_KEYS[name]: _as_text(value) for name, value in self.non_default().items()})


def _as_text(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


DEFAULT_FILTERS = FilterState()
DEFAULT_FILTERS_DUMP = DEFAULT_FILTERS.model_dump()
FILTER_NAMES = tuple(FilterState.model_fields)


def _eq(a: str | None, b: str) -> bool:
    return a is not None and a.strip().lower() == b.strip().lower()


def apply_filters(
    transactions: Sequence[Transaction],
    state: FilterState,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> list[Transaction]:
    """Return the transactions matching every active filter.

    Date windows are compared on calendar days in ``tz``. Transactions without
    a timestamp drop out as soon as any date constraint is active.
    """
    if now is None:
        now = datetime.now(tz) if tz is not None else datetime.now()
    elif tz is not None and now.tzinfo is not None:
        now = now.astimezone(tz)
    today = now.date()

    window_start: date | None = None
    window_end: date | None = None
    if state.date_filter == "today":
        window_start = window_end = today
    elif state.date_filter == "7d":
        window_start, window_end = today - timedelta(days=7), today
    elif state.date_filter == "30d":
        window_start, window_end = today - timedelta(days=30), today
    dated = window_start is not None or state.start_date is not None or state.end_date is not None

    out: list[Transaction] = []
    for t in transactions:
        if dated:
            ts = local_time(t, tz)
            if ts is None:
                continue
            d = ts.date()
            if window_start is not None and not window_start <= d <= window_end:
                continue
            if state.start_date is not None and d < state.start_date:
                continue
            if state.end_date is not None and d > state.end_date:
                continue
        if state.region and not _eq(region_of(t), state.region):
            continue
        if state.city and not (_eq(t.city, state.city) or _city_in_location(t.store_location, state.city)):
            continue
        if state.category and not _eq(t.category, state.category):
            continue
        if state.brand and not _eq(t.brand, state.brand):
            continue
        if state.age_group and age_bracket(t.customer_age) != state.age_group:
            continue
        if state.gender and not _eq(t.customer_gender, state.gender):
            continue
        if state.payment_method and not _eq(t.payment_method, state.payment_method):
            continue
        if state.min_transaction is not None and t.total_amount < state.min_transaction:
            continue
        if state.max_transaction is not None and t.total_amount > state.max_transaction:
            continue
        if state.store_id and str(t.store_id) != state.store_id:
            continue
        if state.search_query and not _matches_text(t, state.search_query):
            continue
        out.append(t)
    return out


def _city_in_location(location: str | None, city: str) -> bool:
    if not location:
        return False
    return any(_eq(part, city) for part in location.split(","))


def _matches_text(t: Transaction, query: str) -> bool:
    q = query.lower()
    return any(q in field.lower() for field in (t.transcript, t.brand, t.category, t.store_location) if field)


class PresetStore:
    """Named filter selections kept in the local store."""

    def __init__(self, db: Session):
        self.store = LocalStore(db, PRESETS_NAMESPACE)

    def save(self, name: str, state: FilterState) -> bool:
        payload = {"name": name, "filters": state.model_dump(mode="json")}
        return self.store.save_json(name, payload, stamp="createdAt")

    def load(self, name: str) -> FilterState | None:
        data = self.store.load_json(name)
        if data is None:
            return None
        try:
            return FilterState.model_validate(data.get("filters") or {})
        except ValidationError:
            logger.warning("Discarding unreadable preset %r", name)
            self.store.remove_item(name)
            return None

    def list_presets(self) -> list[dict[str, Any]]:
        out = []
        for name in self.store.keys():
            data = self.store.load_json(name)
            if data is None:
                continue
            out.append({"name": name, "createdAt": data.get("createdAt"), "filters": data.get("filters") or {}})
        return out

    def delete(self, name: str) -> bool:
        return self.store.remove_item(name)


def save_last_filters(db: Session, state: FilterState) -> bool:
    return LocalStore(db, LAST_FILTERS_NAMESPACE).save_json(LAST_FILTERS_KEY, state.model_dump(mode="json"))


def load_last_filters(db: Session, expiration_hours: float = 24) -> FilterState | None:
    store = LocalStore(db, LAST_FILTERS_NAMESPACE)
    data = store.load_json(LAST_FILTERS_KEY, expiration_hours=expiration_hours)
    if data is None:
        return None
    data.pop("savedAt", None)
    try:
        return FilterState.model_validate(data)
    except ValidationError:
        store.remove_item(LAST_FILTERS_KEY)
        return None


class FilterManager:
    """Holds the current filter selection and the operations on it.

    The selection is never mutated: every operation swaps in a new
    ``FilterState``.
    """

    def __init__(self, state: FilterState | None = None, presets: PresetStore | None = None):
        self.filters = state or DEFAULT_FILTERS
        self.presets = presets

    def update_filter(self, name: str, value: Any) -> FilterState:
        return self.update_filters({name: value})

    def update_filters(self, updates: Mapping[str, Any]) -> FilterState:
        unknown = [k for k in updates if k not in FILTER_NAMES]
        if unknown:
            raise ValueError(f"Unknown filter: {', '.join(unknown)}")
        self.filters = FilterState.model_validate({**self.filters.model_dump(), **updates})
        return self.filters

    def reset_filters(self, names: Iterable[str] | None = None) -> FilterState:
        if names is None:
            self.filters = DEFAULT_FILTERS
            return self.filters
        return self.update_filters({name: DEFAULT_FILTERS_DUMP[name] for name in names if name in FILTER_NAMES})

    def apply_quick_filter(self, preset: str, today: date | None = None) -> FilterState:
        today = today or date.today()
        if preset == "today":
            updates = {"date_filter": "today", "region": None, "category": None}
        elif preset == "yesterday":
            yesterday = today - timedelta(days=1)
            updates = {"date_filter": "custom", "start_date": yesterday, "end_date": yesterday}
        elif preset == "last-week":
            updates = {"date_filter": "7d", "region": None, "category": None}
        elif preset == "last-month":
            updates = {"date_filter": "30d", "region": None, "category": None}
        elif preset == "high-value":
            updates = {"min_transaction": 500, "customer_segment": "premium"}
        elif preset == "metro-manila":
            updates = {"region": "NCR", "city": None}
        elif preset == "digital-payments":
            updates = {"payment_method": "gcash"}
        elif preset == "young-customers":
            updates = {"age_group": "18-25"}
        else:
            raise KeyError(preset)
        return self.update_filters(updates)

    def save_filter_preset(self, name: str) -> bool:
        if self.presets is None:
            return False
        return self.presets.save(name, self.filters)

    def load_filter_preset(self, name: str) -> FilterState:
        if self.presets is not None:
            stored = self.presets.load(name)
            if stored is not None:
                self.filters = stored
        return self.filters

    def list_presets(self) -> list[dict[str, Any]]:
        return self.presets.list_presets() if self.presets is not None else []

    def delete_preset(self, name: str) -> bool:
        return self.presets.delete(name) if self.presets is not None else False

    @property
    def query_string(self) -> str:
        return self.filters.to_query_string()

    @property
    def active_filter_count(self) -> int:
        return len(self.filters.non_default())

    @property
    def filter_summary(self) -> list[str]:
        return [f"{SUMMARY_LABELS[name]}: {_as_text(value)}" for name, value in self.filters.non_default().items()]

    def api_filters(self) -> dict[str, Any]:
        out = {}
        for name, value in self.filters.non_default().items():
            out[API_KEYS.get(name, f"p_{name}")] = _as_text(value) if isinstance(value, date) else value
        return out

    def suggestions(self) -> list[dict[str, str]]:
        f = self.filters
        if not self.active_filter_count:
            return [
                {"preset": "today", "label": "Today's Data", "description": "View today's transactions"},
                {"preset": "high-value", "label": "High Value Customers", "description": "Transactions over ₱500"},
                {"preset": "metro-manila", "label": "Metro Manila", "description": "NCR region only"},
            ]
        out = []
        if f.date_filter == "all":
            out.append({"preset": "today", "label": "Focus on Today", "description": "Narrow to today's data"})
        if not f.region:
            out.append({"preset": "metro-manila", "label": "Metro Manila", "description": "Add location filter"})
        if not f.payment_method:
            out.append({"preset": "digital-payments", "label": "Digital Payments", "description": "GCash/Card only"})
        return out
