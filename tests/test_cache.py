import pytest

from scout_api.services.cache import TTLCache, cache_key
from scout_api.services.dataset_service import DatasetService
from scout_api.services.datastore import DataStoreError
from tests.conftest import FakeStore, make_rows


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cache_key_ignores_param_order():
    assert cache_key("rpc:x", {"a": 1, "b": 2}) == cache_key("rpc:x", {"b": 2, "a": 1})
    assert cache_key("rpc:x") == "rpc:x:{}"


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("k", "v")

    clock.now = 9.9
    assert cache.get("k") == "v"
    clock.now = 10
    assert cache.get("k") is None
    assert cache.hits == 1
    assert cache.misses == 1


def test_invalidate_by_prefix_and_purge():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("transactions:a", 1)
    cache.set("rpc:b", 2)
    cache.set("rpc:c", 3, ttl_seconds=1)

    assert cache.invalidate("transactions:") == 1
    clock.now = 5
    assert cache.purge_expired() == 1
    assert len(cache) == 1


def _service(settings, store, clock=None):
    return DatasetService(store, settings, cache=TTLCache(settings.cache.ttl_seconds, clock=clock or FakeClock()))


def test_transactions_are_served_from_cache_until_expiry(settings):
    clock = FakeClock()
    store = FakeStore(make_rows(30))
    svc = _service(settings, store, clock)

    assert len(svc.transactions()) == 30
    assert len(svc.transactions()) == 30
    assert store.count_calls == 1

    clock.now = settings.cache.ttl_seconds + 1
    svc.transactions()
    assert store.count_calls == 2


def test_refresh_forces_reload(settings):
    store = FakeStore(make_rows(30))
    svc = _service(settings, store)
    svc.transactions()

    svc.refresh()

    assert store.count_calls == 2
    assert svc.status().status == "ready"
    assert svc.status().progress == 100


def test_failed_load_caches_nothing(settings):
    store = FakeStore(make_rows(30), fail_on_page=0)
    svc = _service(settings, store)

    with pytest.raises(DataStoreError):
        svc.transactions()

    assert svc.status().status == "error"
    assert svc.cached_transactions() is None


def test_cancel_without_load_in_flight(settings):
    svc = _service(settings, FakeStore([]))
    assert svc.status().status == "idle"
    assert svc.cancel() is False


def test_aggregates_cached_per_params(settings):
    store = FakeStore([])
    svc = _service(settings, store)

    svc.aggregate("get_quick_stats")
    svc.aggregate("get_quick_stats")
    svc.aggregate("get_scout_dashboard_data", {"p_region_filter": "NCR"})
    svc.aggregate("get_scout_dashboard_data", {"p_region_filter": "Cebu"})

    assert [c[0] for c in store.rpc_calls] == ["get_quick_stats", "get_scout_dashboard_data", "get_scout_dashboard_data"]
