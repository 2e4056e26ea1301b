from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from .storage import VisitorStore, parse_timestamp


def local_day(timestamp: str) -> Optional[date]:
    try:
        return parse_timestamp(timestamp).astimezone().date()
    except (AttributeError, ValueError):
        return None


def iso_hour(timestamp: str) -> Optional[str]:
    try:
        ts = parse_timestamp(timestamp).astimezone(timezone.utc)
    except (AttributeError, ValueError):
        return None
    return ts.strftime("%Y-%m-%dT%H:00")


def unique_visitors(store: VisitorStore) -> int:
    return len(store.count_by("network.ip"))


def summarize(store: VisitorStore, today: Optional[date] = None) -> Dict[str, Any]:
    """Counts by browser, OS, device type and country, plus today's visits."""
    today = today or datetime.now().date()
    by_day = store.count_by(lambda r: local_day(r.get("timestamp", "")))
    return {
        "total": store.count(),
        "uniqueIPs": unique_visitors(store),
        "browsers": store.count_by("browser.name"),
        "os": store.count_by("os.name"),
        "devices": store.count_by("device.type"),
        "countries": store.count_by("geo.country"),
        "today": by_day.get(today, 0),
    }


def hourly_buckets(store: VisitorStore) -> Dict[str, int]:
    counts = store.count_by(lambda r: iso_hour(r.get("timestamp", "")))
    counts.pop("Unknown", None)
    return dict(sorted(counts.items()))
