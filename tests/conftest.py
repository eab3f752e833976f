import os

os.environ.setdefault("STORAGE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("FEATURES__SCHEDULED_CLEANUP", "false")

import pytest
from langchain_core.messages import AIMessage
from sqlalchemy.orm import sessionmaker

from scout_api.core.config import Settings
from scout_api.db import models  # noqa: F401
from scout_api.db.session import Base, make_engine
from scout_api.services.datastore import DataStoreError

REGIONS = ["NCR", "Cebu", "Davao", None]
PAYMENTS = ["cash", "GCash", "card", None]
GENDERS = ["Male", "Female", None]
AGES = [19, 30, 42, 60, None, 15]
BRANDS = ["Alaska", "Oishi", "Del Monte", None]
CATEGORIES = ["Dairy", "Snacks", "Beverages"]


def make_rows(n: int) -> list[dict]:
    rows = []
    for i in range(n):
        rows.append(
            {
                "id": i + 1,
                "created_at": f"2025-06-{(i % 28) + 1:02d}T{i % 24:02d}:15:00+00:00",
                "total_amount": 50 + (i % 100),
                "store_id": 100 + (i % 5),
                "region": REGIONS[i % len(REGIONS)],
                "payment_method": PAYMENTS[i % len(PAYMENTS)],
                "customer_gender": GENDERS[i % len(GENDERS)],
                "customer_age": AGES[i % len(AGES)],
                "customer_id": f"c{i % 400}",
                "brand": BRANDS[i % len(BRANDS)],
                "category": CATEGORIES[i % len(CATEGORIES)],
            }
        )
    return rows


class FakeStore:
    def __init__(self, rows: list[dict], fail_on_page: int | None = None, fail_count: bool = False):
        self.rows = rows
        self.fail_on_page = fail_on_page
        self.fail_count = fail_count
        self.count_calls = 0
        self.calls: list[tuple[int, int]] = []
        self.rpc_calls: list[tuple[str, dict | None]] = []

    def count(self, table: str) -> int:
        self.count_calls += 1
        if self.fail_count:
            raise DataStoreError("count query failed")
        return len(self.rows)

    def fetch_range(self, table: str, start: int, end: int) -> list[dict]:
        self.calls.append((start, end))
        if self.fail_on_page is not None and len(self.calls) - 1 == self.fail_on_page:
            raise DataStoreError(f"range [{start}, {end}] failed")
        return self.rows[start : end + 1]

    def rpc(self, fn: str, params: dict | None = None):
        self.rpc_calls.append((fn, params))
        return [{"fn": fn, "value": 1}]


class FakeLLM:
    def __init__(self, reply: str = "Fake reply", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[list] = []

    def invoke(self, messages):
        self.prompts.append(messages)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.reply)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
