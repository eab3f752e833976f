import pytest
from fastapi.testclient import TestClient

from scout_api import main
from scout_api.api.deps import get_assistant_service, get_dataset_service
from scout_api.core.config import FeatureFlags
from scout_api.db.session import get_db
from scout_api.main import app
from scout_api.services.assistant_service import GREETING, AssistantService
from scout_api.services.dataset_service import DatasetService
from tests.conftest import FakeLLM, FakeStore, make_rows

API = "/api/v1"


@pytest.fixture
def store():
    return FakeStore(make_rows(2500))


@pytest.fixture
def client(store, settings, session_factory):
    dataset = DatasetService(store, settings)
    assistant = AssistantService(settings, llm=FakeLLM())

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_dataset_service] = lambda: dataset
    app.dependency_overrides[get_assistant_service] = lambda: assistant
    app.dependency_overrides[get_db] = override_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    res = client.get(f"{API}/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_kpis_and_dataset_status(client, store):
    res = client.get(f"{API}/kpis")

    assert res.status_code == 200
    assert res.json()["total_transactions"] == 2500
    assert len(store.calls) == 3

    status = client.get(f"{API}/dataset/status").json()
    assert status["status"] == "ready"
    assert status["progress"] == 100
    assert status["rows"] == 2500


def test_metric_totals_respect_filters(client):
    hourly = client.get(f"{API}/metrics/hourly").json()
    assert sum(b["count"] for b in hourly) == 2500

    ncr = client.get(f"{API}/metrics/regions", params={"region": "NCR"}).json()
    assert [(b["key"], b["count"]) for b in ncr] == [("NCR", 625)]


def test_unknown_metric(client):
    assert client.get(f"{API}/metrics/nope").status_code == 404


def test_heatmap(client):
    cells = client.get(f"{API}/metrics/heatmap").json()
    assert len(cells) == 7 * 16


def test_load_failure_is_503(settings, session_factory):
    failing = DatasetService(FakeStore(make_rows(2500), fail_on_page=2), settings)
    app.dependency_overrides[get_dataset_service] = lambda: failing
    try:
        client = TestClient(app)
        assert client.get(f"{API}/kpis").status_code == 503
        status = client.get(f"{API}/dataset/status").json()
        assert status["status"] == "error"
        assert status["error"]
    finally:
        app.dependency_overrides.clear()


def test_refresh_reloads(client, store):
    client.get(f"{API}/kpis")
    res = client.post(f"{API}/dataset/refresh")

    assert res.status_code == 200
    assert store.count_calls == 2
    assert client.post(f"{API}/dataset/cancel").json()["cancelled"] is False


def test_aggregates(client, store):
    res = client.get(f"{API}/aggregates/get_scout_dashboard_data", params={"region": "NCR"})

    assert res.status_code == 200
    assert res.json()["params"] == {"p_region_filter": "NCR"}
    assert store.rpc_calls == [("get_scout_dashboard_data", {"p_region_filter": "NCR"})]
    assert client.get(f"{API}/aggregates/drop_table").status_code == 404


def test_filters_describe_update_and_quick(client):
    body = client.get(f"{API}/filters", params={"region": "NCR", "gender": "Robot"}).json()
    assert body["active_filter_count"] == 1
    assert body["query"] == "region=NCR"

    bad = client.post(f"{API}/filters/update", json={"gender": "Robot"})
    assert bad.status_code == 422

    ok = client.post(f"{API}/filters/update", params={"region": "NCR"}, json={"category": "Snacks"}).json()
    assert ok["filters"]["region"] == "NCR"
    assert ok["filters"]["category"] == "Snacks"

    quick = client.post(f"{API}/filters/quick/digital-payments").json()
    assert quick["filters"]["payment_method"] == "gcash"
    assert client.post(f"{API}/filters/quick/nope").status_code == 404

    reset = client.post(f"{API}/filters/reset", params={"region": "NCR", "brand": "Oishi"}, json={"names": ["brand"]}).json()
    assert reset["filters"]["brand"] is None
    assert reset["filters"]["region"] == "NCR"


def test_presets_lifecycle(client):
    created = client.post(f"{API}/filters/presets", json={"name": "ncr", "filters": {"region": "NCR"}})
    assert created.status_code == 201

    assert [p["name"] for p in client.get(f"{API}/filters/presets").json()["presets"]] == ["ncr"]
    assert client.get(f"{API}/filters/presets/ncr").json()["filters"]["region"] == "NCR"

    assert client.delete(f"{API}/filters/presets/ncr").status_code == 200
    assert client.get(f"{API}/filters/presets/ncr").status_code == 404
    assert client.delete(f"{API}/filters/presets/ncr").status_code == 404


def test_last_filters(client):
    assert client.get(f"{API}/filters/last").json()["active_filter_count"] == 0

    saved = client.put(f"{API}/filters/last", json={"region": "Cebu"}).json()
    assert saved["saved"] is True

    assert client.get(f"{API}/filters/last").json()["filters"]["region"] == "Cebu"


def test_chat_flow(client):
    res = client.post(f"{API}/chat", json={"message": "Top brand?"}).json()
    sid = res["session_id"]

    assert res["answer"] == "Fake reply"
    assert res["failed"] is False
    assert [m["role"] for m in res["messages"]] == ["assistant", "user", "assistant"]

    assert client.get(f"{API}/sessions").json()["sessions"][0]["session_id"] == sid

    export = client.get(f"{API}/sessions/{sid}/export", params={"format": "txt"})
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/plain")
    assert "USER: Top brand?" in export.text
    assert client.get(f"{API}/sessions/{sid}/export", params={"format": "doc"}).status_code == 400

    reset = client.delete(f"{API}/sessions/{sid}").json()
    assert [m["content"] for m in reset["messages"]] == [GREETING]
    assert client.get(f"{API}/sessions/missing").status_code == 404


def test_chat_rejects_empty_message(client):
    assert client.post(f"{API}/chat", json={"message": ""}).status_code == 422


def test_csv_export(client):
    res = client.get(f"{API}/export/csv", params={"region": "Cebu"})

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    lines = res.text.strip().splitlines()
    assert lines[0].startswith("id,created_at,total_amount")
    assert len(lines) == 626


def test_binary_exports(client):
    excel = client.get(f"{API}/export/excel")
    pdf = client.get(f"{API}/export/pdf")

    assert excel.status_code == 200
    assert excel.content[:2] == b"PK"
    assert pdf.status_code == 200
    assert pdf.content.startswith(b"%PDF")


def test_lifespan_starts_and_stops_scheduler(monkeypatch, settings):
    class FakeScheduler:
        stopped = False

        def shutdown(self, wait=True):
            self.stopped = True

    started = []

    def fake_start(cfg, session_factory, cache_provider):
        started.append(FakeScheduler())
        return started[-1]

    monkeypatch.setattr(main, "settings", settings.model_copy(update={"features": FeatureFlags(scheduled_cleanup=True)}))
    monkeypatch.setattr(main, "start_scheduler", fake_start)

    with TestClient(app) as client:
        assert client.get(f"{API}/health").status_code == 200
        assert len(started) == 1
        assert not started[0].stopped

    assert started[0].stopped
