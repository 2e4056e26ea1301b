from types import SimpleNamespace

import geoip2.errors

from visitor_site.geo import GeoLocator


class FakeCityReader:
    def __init__(self, known):
        self.known = known

    def city(self, ip):
        if ip not in self.known:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not in database")
        return SimpleNamespace(
            country=SimpleNamespace(iso_code="DE"),
            registered_country=SimpleNamespace(iso_code="DE"),
            subdivisions=SimpleNamespace(most_specific=SimpleNamespace(iso_code="BE")),
            city=SimpleNamespace(name="Berlin"),
            location=SimpleNamespace(latitude=52.52, longitude=13.40, time_zone="Europe/Berlin", metro_code=None),
        )

    def close(self):
        pass


class FakeAsnReader:
    def asn(self, ip):
        return SimpleNamespace(autonomous_system_number=3320, autonomous_system_organization="Deutsche Telekom AG")

    def close(self):
        pass


def test_local_miss_gets_placeholder_without_database():
    geo = GeoLocator()
    record = geo.locate("127.0.0.1")
    assert record is not None
    assert record["country"] == "Localhost"
    assert record["city"] == "Localhost/Development"


def test_private_miss_gets_placeholder():
    geo = GeoLocator(city_reader=FakeCityReader(known=set()))
    assert geo.locate("192.168.1.50")["country"] == "Localhost"


def test_public_miss_is_none():
    assert GeoLocator().locate("8.8.8.8") is None
    assert GeoLocator(city_reader=FakeCityReader(known=set())).locate("8.8.8.8") is None


def test_public_hit_with_asn():
    geo = GeoLocator(city_reader=FakeCityReader(known={"93.184.216.34"}), asn_reader=FakeAsnReader())
    record = geo.locate("93.184.216.34")
    assert record["country"] == "DE"
    assert record["region"] == "BE"
    assert record["city"] == "Berlin"
    assert record["ll"] == [52.52, 13.40]
    assert record["timezone"] == "Europe/Berlin"
    assert record["isp"] == "Deutsche Telekom AG"
    assert record["as"] == "AS3320"


def test_missing_database_path_disables_lookups(tmp_path):
    geo = GeoLocator(city_db_path=str(tmp_path / "nope.mmdb"))
    assert geo.city_reader is None
    assert geo.lookup("8.8.8.8") is None


def test_placeholders_are_independent_copies():
    geo = GeoLocator()
    first = geo.locate("127.0.0.1")
    first["ll"].append(1.0)
    first["country"] = "Changed"
    second = geo.locate("127.0.0.1")
    assert second["ll"] == [0.0, 0.0]
    assert second["country"] == "Localhost"
