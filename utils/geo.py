import ipaddress
from dataclasses import dataclass
from typing import Optional

import requests
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def label(self) -> str:
        return ",".join(part for part in (self.country, self.region, self.city) if part)


class GeoLookup:
    """IP -> coarse location. Implementations return None when unknown."""

    def lookup(self, ip_address: str) -> Optional[GeoLocation]:
        raise NotImplementedError


class NullGeoLookup(GeoLookup):
    def lookup(self, ip_address: str) -> Optional[GeoLocation]:
        return None


def _is_public(ip_address: str) -> bool:
    try:
        addr = ipaddress.ip_address((ip_address or "").split(",")[0].strip())
    except ValueError:
        return False
    return addr.is_global


class HttpGeoLookup(GeoLookup):
    """
    Queries an ip-api.com style endpoint. url_template must contain "{ip}",
    e.g. "http://ip-api.com/json/{ip}?fields=status,country,regionName,city,lat,lon".
    Any transport or payload error is logged and reported as "unknown".
    """

    def __init__(self, url_template: str, timeout: float = 2.0, http=None):
        self.url_template = url_template
        self.timeout = timeout
        self.http = http or requests.Session()

    def lookup(self, ip_address: str) -> Optional[GeoLocation]:
        if not _is_public(ip_address):
            return None

        url = self.url_template.format(ip=ip_address.split(",")[0].strip())
        try:
            resp = self.http.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("geo_lookup_failed", ip=ip_address, error=str(exc))
            return None

        if not isinstance(data, dict) or data.get("status") == "fail":
            return None

        lat = data.get("lat", data.get("latitude"))
        lon = data.get("lon", data.get("longitude"))
        try:
            lat = float(lat) if lat is not None else None
            lon = float(lon) if lon is not None else None
        except (TypeError, ValueError):
            lat = lon = None

        return GeoLocation(
            country=data.get("country") or data.get("country_name"),
            region=data.get("regionName") or data.get("region"),
            city=data.get("city"),
            latitude=lat,
            longitude=lon,
        )


def build_geo_lookup(config) -> GeoLookup:
    url = config.get("GEO_LOOKUP_URL")
    if not url:
        return NullGeoLookup()
    return HttpGeoLookup(url, timeout=config.get("GEO_LOOKUP_TIMEOUT_SECONDS", 2.0))
