"""Derived metrics over the in-memory transaction collection.

Every function here is pure: it takes the transactions (already filtered) and
returns fresh buckets. Missing or malformed grouping fields are counted under
``UNKNOWN`` so that bucket counts always add up to the number of inputs.
"""
from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, tzinfo

from scout_api.db.schemas import HeatmapCell, KPISummary, MetricBucket, Transaction

UNKNOWN = "Unknown"
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
AGE_BRACKETS = ("Under 18", "18-25", "26-35", "36-50", "50+")
AVG_ITEM_PRICE = 50.0
MAX_BASKET_SIZE = 15
BUSINESS_HOURS = (6, 22)


def local_time(txn: Transaction, tz: tzinfo | None = None) -> datetime | None:
    ts = txn.created_at
    if ts is None:
        return None
    if tz is not None and ts.tzinfo is not None:
        return ts.astimezone(tz)
    return ts


def region_of(txn: Transaction) -> str | None:
    if txn.region:
        return txn.region
    if txn.store_location:
        head = txn.store_location.split(",")[0].strip()
        return head or None
    return None


def age_bracket(age: int | None) -> str:
    if age is None or age < 0 or age > 120:
        return UNKNOWN
    if age < 18:
        return "Under 18"
    if age <= 25:
        return "18-25"
    if age <= 35:
        return "26-35"
    if age <= 50:
        return "36-50"
    return "50+"


def basket_size(txn: Transaction) -> int:
    if txn.items_count is not None and txn.items_count > 0:
        return min(txn.items_count, MAX_BASKET_SIZE)
    estimated = max(1, math.floor(txn.total_amount / AVG_ITEM_PRICE + 0.5))
    return min(estimated, MAX_BASKET_SIZE)


def _group(
    transactions: Iterable[Transaction],
    key_fn: Callable[[Transaction], str | int | None],
    seed: Sequence[str | int] = (),
) -> dict[str | int, MetricBucket]:
    buckets: dict[str | int, MetricBucket] = {k: MetricBucket(key=k) for k in seed}
    for t in transactions:
        key = key_fn(t)
        if key is None or key == "":
            key = UNKNOWN
        b = buckets.get(key)
        if b is None:
            b = buckets[key] = MetricBucket(key=key)
        b.count += 1
        b.amount += t.total_amount
    for b in buckets.values():
        b.amount = round(b.amount, 2)
    return buckets


def _unknown_last(buckets: list[MetricBucket]) -> list[MetricBucket]:
    known = [b for b in buckets if b.key != UNKNOWN]
    rest = [b for b in buckets if b.key == UNKNOWN]
    return known + rest


def _by_amount(buckets: dict[str | int, MetricBucket]) -> list[MetricBucket]:
    ordered = sorted(buckets.values(), key=lambda b: (-b.amount, -b.count, str(b.key)))
    return _unknown_last(ordered)


def _by_count(buckets: dict[str | int, MetricBucket]) -> list[MetricBucket]:
    ordered = sorted(buckets.values(), key=lambda b: (-b.count, -b.amount, str(b.key)))
    return _unknown_last(ordered)


def _in_seed_order(buckets: dict[str | int, MetricBucket], seed: Sequence[str | int]) -> list[MetricBucket]:
    out = [buckets[k] for k in seed]
    extra = [b for k, b in buckets.items() if k not in seed]
    return _unknown_last(out + extra)


def by_hour(transactions: Sequence[Transaction], tz: tzinfo | None = None) -> list[MetricBucket]:
    """Count and revenue per hour of day, 0-23 ascending."""
    hours = list(range(24))

    def key(t: Transaction) -> int | None:
        ts = local_time(t, tz)
        return ts.hour if ts is not None else None

    return _in_seed_order(_group(transactions, key, hours), hours)


def by_day_of_week(transactions: Sequence[Transaction], tz: tzinfo | None = None) -> list[MetricBucket]:
    def key(t: Transaction) -> str | None:
        ts = local_time(t, tz)
        # isoweekday: Monday=1 .. Sunday=7
        return DAY_NAMES[ts.isoweekday() % 7] if ts is not None else None

    return _in_seed_order(_group(transactions, key, DAY_NAMES), DAY_NAMES)


def by_region(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    return _by_amount(_group(transactions, region_of))


def by_payment_method(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    return _by_count(_group(transactions, lambda t: t.payment_method.lower() if t.payment_method else None))


def by_gender(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    return _by_count(_group(transactions, lambda t: t.customer_gender.title() if t.customer_gender else None))


def by_age_bracket(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    buckets = _group(transactions, lambda t: age_bracket(t.customer_age), AGE_BRACKETS)
    return _in_seed_order(buckets, AGE_BRACKETS)


def by_brand(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    return _by_amount(_group(transactions, lambda t: t.brand))


def by_category(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    return _by_amount(_group(transactions, lambda t: t.category))


def by_basket_size(transactions: Sequence[Transaction]) -> list[MetricBucket]:
    sizes = list(range(1, MAX_BASKET_SIZE + 1))
    return _in_seed_order(_group(transactions, basket_size, sizes), sizes)


def daily_trend(transactions: Sequence[Transaction], tz: tzinfo | None = None) -> list[MetricBucket]:
    def key(t: Transaction) -> str | None:
        ts = local_time(t, tz)
        return ts.date().isoformat() if ts is not None else None

    buckets = _group(transactions, key)
    ordered = sorted((b for b in buckets.values() if b.key != UNKNOWN), key=lambda b: str(b.key))
    return _unknown_last(ordered + [b for b in buckets.values() if b.key == UNKNOWN])


def hourly_heatmap(
    transactions: Sequence[Transaction],
    tz: tzinfo | None = None,
    hours: tuple[int, int] = BUSINESS_HOURS,
) -> list[HeatmapCell]:
    """Day-of-week x hour grid restricted to business hours.

    ``day_of_week`` is 0 for Sunday. Transactions outside the hour window or
    without a timestamp are left out.
    """
    start, end = hours
    cells = {(d, h): HeatmapCell(hour=h, day_of_week=d) for d in range(7) for h in range(start, end)}
    for t in transactions:
        ts = local_time(t, tz)
        if ts is None or not start <= ts.hour < end:
            continue
        cell = cells[(ts.isoweekday() % 7, ts.hour)]
        cell.transaction_count += 1
        cell.revenue += t.total_amount
    for cell in cells.values():
        cell.revenue = round(cell.revenue, 2)
        cell.avg_transaction_value = round(cell.revenue / cell.transaction_count, 2) if cell.transaction_count else 0.0
    return list(cells.values())


def kpi_summary(transactions: Sequence[Transaction]) -> KPISummary:
    n = len(transactions)
    if not n:
        return KPISummary()
    revenue = sum(t.total_amount for t in transactions)
    customers = {t.customer_id for t in transactions if t.customer_id}
    items = sum(basket_size(t) for t in transactions)
    return KPISummary(
        total_transactions=n,
        total_revenue=round(revenue, 2),
        average_transaction_value=round(revenue / n, 2),
        unique_customers=len(customers),
        avg_basket_size=round(items / n, 1),
    )


METRICS: dict[str, Callable[..., list[MetricBucket]]] = {
    "hourly": by_hour,
    "daily": daily_trend,
    "weekday": by_day_of_week,
    "regions": by_region,
    "payments": by_payment_method,
    "gender": by_gender,
    "age": by_age_bracket,
    "brands": by_brand,
    "categories": by_category,
    "basket": by_basket_size,
}
TIME_METRICS = {"hourly", "daily", "weekday"}


def compute(metric: str, transactions: Sequence[Transaction], tz: tzinfo | None = None) -> list[MetricBucket]:
    fn = METRICS.get(metric)
    if fn is None:
        raise KeyError(metric)
    if metric in TIME_METRICS:
        return fn(transactions, tz)
    return fn(transactions)
