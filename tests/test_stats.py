from datetime import date

from visitor_site.stats import hourly_buckets, iso_hour, local_day, summarize, unique_visitors
from visitor_site.storage import JsonLinesStore

from .test_storage import make_record


def test_iso_hour_bucket():
    assert iso_hour("2026-10-18T12:59:59.000Z") == "2026-10-18T12:00"
    assert iso_hour("not a time") is None


def test_summarize(tmp_path):
    store = JsonLinesStore(tmp_path / "logs.jsonl")
    store.append(make_record(1, ip="203.0.113.1", browser="Chrome"))
    store.append(make_record(2, ip="203.0.113.1", browser="Firefox", country=None))
    store.append(make_record(3, ip="198.51.100.2", browser="Chrome", timestamp="2020-01-01T00:00:00.000Z"))

    today = local_day("2026-10-18T12:30:00.000Z")
    stats = summarize(store, today=today)
    assert stats["total"] == 3
    assert stats["uniqueIPs"] == 2
    assert stats["browsers"] == {"Chrome": 2, "Firefox": 1}
    assert stats["countries"] == {"DE": 2, "Unknown": 1}
    assert stats["devices"] == {"desktop": 3}
    assert stats["today"] == 2


def test_summarize_today_defaults_to_current_date(tmp_path):
    store = JsonLinesStore(tmp_path / "logs.jsonl")
    store.append(make_record(1, timestamp="2000-01-01T00:00:00.000Z"))
    assert summarize(store)["today"] == 0
    assert summarize(store, today=date(1999, 1, 1))["today"] == 0


def test_hourly_buckets_and_unique_visitors(tmp_path):
    store = JsonLinesStore(tmp_path / "logs.jsonl")
    store.append(make_record(1, timestamp="2026-10-18T12:05:00.000Z"))
    store.append(make_record(2, timestamp="2026-10-18T12:55:00.000Z", ip="198.51.100.2"))
    store.append(make_record(3, timestamp="2026-10-18T13:00:00.000Z"))
    assert hourly_buckets(store) == {"2026-10-18T12:00": 2, "2026-10-18T13:00": 1}
    assert unique_visitors(store) == 2
