"""
Visitor record storage.

Every store is append-only: records are never updated or deleted one by one,
only cleared in bulk. The JSON Lines backend writes one line per record with
a single O_APPEND write, so concurrent writers never overwrite each other.
The older "read the whole JSON array, append, rewrite the file" approach
drops records when two requests interleave and is not offered here.
"""
import csv
import json
import logging
import os
import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Union

from sqlalchemy import desc, func
from sqlalchemy.exc import SQLAlchemyError

from .cascade import UNKNOWN, dig
from .models import Visit

logger = logging.getLogger(__name__)

Key = Union[str, Callable[[Dict[str, Any]], Any]]


class StorageError(Exception):
    """Raised when a record could not be persisted."""


def _key_value(record: Dict[str, Any], key: Key) -> Any:
    value = key(record) if callable(key) else dig(record, key)
    if value is None or value == "":
        return UNKNOWN
    return value


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class VisitorStore:
    """Interface shared by the storage backends."""

    def append(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def list_recent(self, n: int) -> List[Dict[str, Any]]:
        """Last `n` records, newest first."""
        if n <= 0:
            return []
        records = list(self.iter_records())
        return records[-n:][::-1]

    def count(self) -> int:
        return sum(1 for _ in self.iter_records())

    def count_by(self, key: Key) -> Dict[Any, int]:
        """
        Counts records grouped by a dotted field path (e.g. "geo.country") or
        by the result of a callable. Missing values are grouped as "Unknown".
        """
        return dict(Counter(_key_value(r, key) for r in self.iter_records()))


class JsonLinesStore(VisitorStore):

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record):
        line = json.dumps(record, default=str, ensure_ascii=False) + "\n"
        data = line.encode("utf-8")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
                try:
                    while data:
                        written = os.write(fd, data)
                        data = data[written:]
                finally:
                    os.close(fd)
        except OSError as e:
            logger.error(f"Error writing visitor log {self.path}: {e}")
            raise StorageError(str(e)) from e

    def iter_records(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping corrupt line {lineno} in {self.path}")
        except OSError as e:
            # Unreadable log reads as empty
            logger.error(f"Error reading visitor log {self.path}: {e}")

    def clear(self):
        with self._lock:
            if self.path.exists():
                self.path.write_text("", encoding="utf-8")


class SqlVisitorStore(VisitorStore):
    """SQLAlchemy backed store, one `visits` row per record."""

    COLUMNS = {
        "browser.name": Visit.browser,
        "os.name": Visit.os,
        "device.type": Visit.device_type,
        "geo.country": Visit.country,
        "network.ip": Visit.ip_address,
        "sessionId": Visit.session_id,
    }

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def append(self, record):
        db = self.session_factory()
        try:
            visit = Visit(
                timestamp=parse_timestamp(record["timestamp"]).replace(tzinfo=None),
                source=record.get("source"),
                session_id=record.get("sessionId"),
                ip_address=dig(record, "network.ip"),
                browser=dig(record, "browser.name"),
                os=dig(record, "os.name"),
                device_type=dig(record, "device.type"),
                country=dig(record, "geo.country"),
                record=json.loads(json.dumps(record, default=str)),
            )
            db.add(visit)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error saving visit: {e}")
            raise StorageError(str(e)) from e
        finally:
            db.close()

    def iter_records(self):
        db = self.session_factory()
        try:
            for visit in db.query(Visit).order_by(Visit.id).yield_per(500):
                yield visit.record
        finally:
            db.close()

    def list_recent(self, n):
        if n <= 0:
            return []
        db = self.session_factory()
        try:
            return [v.record for v in db.query(Visit).order_by(desc(Visit.id)).limit(n).all()]
        finally:
            db.close()

    def count(self):
        db = self.session_factory()
        try:
            return db.query(Visit).count()
        finally:
            db.close()

    def count_by(self, key):
        column = self.COLUMNS.get(key) if isinstance(key, str) else None
        if column is None:
            return super().count_by(key)

        db = self.session_factory()
        try:
            counts: Dict[Any, int] = {}
            for value, n in db.query(column, func.count(Visit.id)).group_by(column).all():
                label = value if value else UNKNOWN
                counts[label] = counts.get(label, 0) + n
            return counts
        finally:
            db.close()

    def clear(self):
        db = self.session_factory()
        try:
            db.query(Visit).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(str(e)) from e
        finally:
            db.close()


CSV_HEADERS = [
    "timestamp", "ip", "country", "city", "browser", "browser_version",
    "os", "os_version", "device_type", "device_model", "screen",
    "language", "timezone", "is_mobile", "is_bot", "session_id",
]


def csv_row(record: Dict[str, Any]) -> List[str]:
    def get(path):
        return _key_value(record, path)

    language = dig(record, "locale.language") or ""
    return [
        record.get("timestamp"),
        get("network.ip"),
        get("geo.country"),
        get("geo.city"),
        get("browser.name"),
        get("browser.version"),
        get("os.name"),
        get("os.version"),
        get("device.type"),
        get("device.model"),
        f"{dig(record, 'screen.width') or ''}x{dig(record, 'screen.height') or ''}",
        language.split(",")[0] or UNKNOWN,
        get("geo.timezone"),
        "Yes" if dig(record, "device.isMobile") else "No",
        "Yes" if dig(record, "device.isBot") else "No",
        record.get("sessionId"),
    ]


class CsvMirror:
    """Spreadsheet-friendly projection of the log, written best-effort."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def append(self, record):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                new_file = not self.path.exists()
                with open(self.path, "a", newline="", encoding="utf-8") as f:
                    writer = csv.writer(f, quoting=csv.QUOTE_ALL)
                    if new_file:
                        writer.writerow(CSV_HEADERS)
                    writer.writerow(csv_row(record))
        except OSError as e:
            logger.error(f"Error writing CSV {self.path}: {e}")

    def clear(self):
        with self._lock:
            self.path.unlink(missing_ok=True)
