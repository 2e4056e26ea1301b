import pytest
from fastapi.testclient import TestClient

from visitor_site.config import Settings
from visitor_site.geo import GeoLocator
from visitor_site.main import create_app
from visitor_site.storage import CsvMirror, JsonLinesStore

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("VISITOR_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SERVER_CANVAS", "0")
    monkeypatch.setenv("GEOIP_CITY_DB", str(tmp_path / "missing-city.mmdb"))
    monkeypatch.setenv("GEOIP_ASN_DB", str(tmp_path / "missing-asn.mmdb"))
    return Settings()


@pytest.fixture
def store(settings):
    return JsonLinesStore(settings.log_file)


@pytest.fixture
def client(settings, store):
    app = create_app(
        settings=settings,
        store=store,
        geo=GeoLocator(),
        csv_mirror=CsvMirror(settings.csv_file),
    )
    return TestClient(app)
