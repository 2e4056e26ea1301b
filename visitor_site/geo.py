import copy
import logging
import os
from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors

from .network import is_local_ip

logger = logging.getLogger(__name__)

LOCALHOST_GEO = {
    "country": "Localhost",
    "region": "Development",
    "city": "Localhost/Development",
    "ll": [0.0, 0.0],
    "timezone": None,
    "metro": None,
    "isp": "Local Network",
    "org": "Development",
    "as": None,
}


def _open_reader(path: Optional[str]):
    if not path or not os.path.exists(path):
        return None
    try:
        return geoip2.database.Reader(path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not open GeoIP database {path}: {e}")
        return None


class GeoLocator:
    """
    IP to location lookups against local MaxMind databases.

    Either database may be missing; lookups then simply miss. `city_reader`
    and `asn_reader` can be passed directly instead of paths.
    """

    def __init__(self, city_db_path=None, asn_db_path=None, city_reader=None, asn_reader=None):
        self.city_reader = city_reader if city_reader is not None else _open_reader(city_db_path)
        self.asn_reader = asn_reader if asn_reader is not None else _open_reader(asn_db_path)
        if self.city_reader is None:
            logger.info("GeoIP city database not available, geo lookups disabled")

    def _asn(self, ip: str) -> Dict[str, Any]:
        if self.asn_reader is None:
            return {}
        try:
            resp = self.asn_reader.asn(ip)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return {}
        number = resp.autonomous_system_number
        return {
            "isp": resp.autonomous_system_organization,
            "org": resp.autonomous_system_organization,
            "as": f"AS{number}" if number else None,
        }

    def lookup(self, ip: str) -> Optional[Dict[str, Any]]:
        if self.city_reader is None or not ip:
            return None
        try:
            resp = self.city_reader.city(ip)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None

        subdivision = resp.subdivisions.most_specific
        geo = {
            "country": resp.country.iso_code or resp.registered_country.iso_code,
            "region": subdivision.iso_code if subdivision else None,
            "city": resp.city.name,
            "ll": [resp.location.latitude, resp.location.longitude],
            "timezone": resp.location.time_zone,
            "metro": resp.location.metro_code,
            "isp": None,
            "org": None,
            "as": None,
        }
        geo.update(self._asn(ip))
        return geo

    def locate(self, ip: str) -> Optional[Dict[str, Any]]:
        """
        Geo record for `ip`. Private and loopback addresses that miss get the
        Localhost/Development placeholder so local traffic still lands in a
        labelled bucket; public misses stay None.
        """
        try:
            geo = self.lookup(ip)
        except Exception as e:
            logger.warning(f"Geo lookup failed for {ip}: {e}")
            geo = None
        if geo is None and is_local_ip(ip):
            return copy.deepcopy(LOCALHOST_GEO)
        return geo

    def close(self):
        for reader in (self.city_reader, self.asn_reader):
            if reader is not None:
                reader.close()
