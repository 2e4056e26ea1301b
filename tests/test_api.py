import csv
import io

from fastapi.testclient import TestClient

from visitor_site.geo import GeoLocator
from visitor_site.main import create_app
from visitor_site.storage import CSV_HEADERS, CsvMirror, JsonLinesStore, StorageError

from .conftest import CHROME_WINDOWS


class BrokenStore(JsonLinesStore):
    def append(self, record):
        raise StorageError("disk full")


def test_landing_page_records_visit_and_sets_cookie(client, store):
    response = client.get("/", headers={"User-Agent": CHROME_WINDOWS})
    assert response.status_code == 200
    assert "Visits to this page are logged" in response.text
    assert "sessionId" in response.cookies

    records = list(store.iter_records())
    assert len(records) == 1
    assert records[0]["source"] == "page"
    assert records[0]["sessionId"] == response.cookies["sessionId"]
    assert records[0]["browser"]["name"] == "Chrome"


def test_collect_returns_summary(client, store):
    response = client.post(
        "/api/collect",
        json={"sessionId": "client_42", "screen": {"width": 1280, "height": 800}},
        headers={"X-Forwarded-For": "203.0.113.5, 70.41.3.18"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["sessionId"] == "client_42"
    assert body["ip"] == "203.0.113.5"
    assert body["isLocalhost"] is False
    assert body["timestamp"]

    record = store.list_recent(1)[0]
    assert record["screen"]["width"] == 1280
    assert record["source"] == "collect"


def test_collect_without_body(client):
    response = client.post("/api/collect")
    assert response.status_code == 200
    assert response.json()["isLocalhost"] is True


def test_collect_storage_failure_returns_500(settings):
    app = create_app(settings=settings, store=BrokenStore(settings.log_file), geo=GeoLocator(),
                     csv_mirror=CsvMirror(settings.csv_file))
    response = TestClient(app).post("/api/collect", json={})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to collect data"}


def test_landing_page_survives_storage_failure(settings):
    app = create_app(settings=settings, store=BrokenStore(settings.log_file), geo=GeoLocator(),
                     csv_mirror=CsvMirror(settings.csv_file))
    assert TestClient(app).get("/").status_code == 200


class CrashingStore(JsonLinesStore):
    def append(self, record):
        raise RuntimeError("unexpected")


def test_collect_unexpected_failure_returns_500(settings):
    app = create_app(settings=settings, store=CrashingStore(settings.log_file), geo=GeoLocator(),
                     csv_mirror=CsvMirror(settings.csv_file))
    response = TestClient(app).post("/api/collect", json={})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to collect data"}
    beacon = TestClient(app).post("/api/beacon", content="{}", headers={"Content-Type": "text/plain"})
    assert beacon.status_code == 204


def test_oversized_screen_width_is_still_recorded(client, store):
    body = '{"screen": {"width": ' + "9" * 400 + ', "availWidth": 1}}'
    collected = client.post("/api/collect", content=body, headers={"Content-Type": "application/json"})
    assert collected.status_code == 200
    beacon = client.post("/api/beacon", content=body, headers={"Content-Type": "text/plain"})
    assert beacon.status_code == 204

    records = list(store.iter_records())
    assert [r["source"] for r in records] == ["collect", "beacon"]
    assert records[0]["network"]["proxyVpnHeuristic"]["multiMonitor"] is False


def test_beacon_accepts_text_plain_and_garbage(client, store):
    ok = client.post("/api/beacon", content='{"sessionId": "b1"}', headers={"Content-Type": "text/plain"})
    assert ok.status_code == 204
    bad = client.post("/api/beacon", content="not json", headers={"Content-Type": "text/plain"})
    assert bad.status_code == 204
    assert [r["source"] for r in store.iter_records()] == ["beacon", "beacon"]
    assert store.list_recent(2)[1]["sessionId"] == "b1"


def test_logs_newest_first_with_stats(client):
    for n in range(3):
        client.post("/api/collect", json={"sessionId": f"s{n}"})
    body = client.get("/api/logs", params={"limit": 2}).json()
    assert body["success"] is True
    assert body["total"] == 3
    assert [log["sessionId"] for log in body["logs"]] == ["s2", "s1"]
    assert body["stats"]["countries"] == {"Localhost": 3}
    assert body["stats"]["today"] == 3


def test_delete_then_get_logs_is_empty(client):
    client.get("/")
    assert client.delete("/api/logs").json()["success"] is True
    assert client.delete("/api/logs").json()["success"] is True
    body = client.get("/api/logs").json()
    assert body["total"] == 0
    assert body["logs"] == []


def test_csv_download(client):
    assert client.get("/api/logs/csv").status_code == 404

    client.get("/", headers={"User-Agent": CHROME_WINDOWS})
    response = client.get("/api/logs/csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == CSV_HEADERS
    assert len(rows) == 2

    client.delete("/api/logs")
    assert client.get("/api/logs/csv").status_code == 404


def test_stats_endpoint(client):
    client.post("/api/collect", json={}, headers={"X-Real-IP": "198.51.100.1"})
    client.post("/api/collect", json={}, headers={"X-Real-IP": "198.51.100.2"})
    client.post("/api/collect", json={}, headers={"X-Real-IP": "198.51.100.2"})
    body = client.get("/api/stats").json()
    assert body["success"] is True
    assert body["total"] == 3
    assert body["uniqueVisitors"] == 2
    assert sum(body["hourlyData"].values()) == 3


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["records"] == 0
    assert body["memory"]["rss"] > 0


def test_debug_echoes_resolution(client):
    body = client.get("/api/debug", headers={"CF-Connecting-IP": "9.9.9.9"}).json()
    assert body["ip"] == "9.9.9.9"
    assert body["isLocalhost"] is False
    assert body["candidates"]["cf-connecting-ip"] == "9.9.9.9"
    assert body["headers"]["cf-connecting-ip"] == "9.9.9.9"


def test_dashboard_escapes_user_agent(client):
    client.get("/", headers={"User-Agent": "<script>alert(1)</script>"})
    response = client.get("/dashboard")
    assert response.status_code == 200
    assert "<script>alert(1)</script>" not in response.text
    assert "Visitor Dashboard" in response.text
