"""
app/services/geocoding_service.py

Resolves a postal address to coordinates. Fallback chain, first hit wins:
  1. Google Geocoding API (only when GOOGLE_MAPS_API_KEY is set)
  2. Known-city table, jittered by up to ±0.025° per axis
  3. Any known city in the same state, jittered by up to ±0.05°
  4. None (not found)
"""

import logging
import math
import random
from dataclasses import dataclass
from typing import Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959

CITY_JITTER = 0.05   # full span, i.e. ±0.025°
STATE_JITTER = 0.1   # full span, i.e. ±0.05°

# Major US cities, used when the provider is unavailable
CITY_COORDINATES = {
    "austin,tx": (30.2672, -97.7431),
    "houston,tx": (29.7604, -95.3698),
    "dallas,tx": (32.7767, -96.7970),
    "san antonio,tx": (29.4241, -98.4936),
    "fort worth,tx": (32.7555, -97.3308),
    "san francisco,ca": (37.7749, -122.4194),
    "los angeles,ca": (34.0522, -118.2437),
    "san diego,ca": (32.7157, -117.1611),
    "san jose,ca": (37.3382, -121.8863),
    "denver,co": (39.7392, -104.9903),
    "miami,fl": (25.7617, -80.1918),
    "orlando,fl": (28.5383, -81.3792),
    "tampa,fl": (27.9506, -82.4572),
    "jacksonville,fl": (30.3322, -81.6557),
    "new york,ny": (40.7128, -74.0060),
    "chicago,il": (41.8781, -87.6298),
    "phoenix,az": (33.4484, -112.0740),
    "seattle,wa": (47.6062, -122.3321),
    "portland,or": (45.5051, -122.6750),
    "atlanta,ga": (33.7490, -84.3880),
    "boston,ma": (42.3601, -71.0589),
    "philadelphia,pa": (39.9526, -75.1652),
    "washington,dc": (38.9072, -77.0369),
    "las vegas,nv": (36.1699, -115.1398),
    "nashville,tn": (36.1627, -86.7816),
    "minneapolis,mn": (44.9778, -93.2650),
    "detroit,mi": (42.3314, -83.0458),
    "charlotte,nc": (35.2271, -80.8431),
    "raleigh,nc": (35.7796, -78.6382),
    "cleveland,oh": (41.4993, -81.6944),
    "columbus,oh": (39.9612, -82.9988),
    "indianapolis,in": (39.7684, -86.1581),
    "kansas city,mo": (39.0997, -94.5786),
    "st louis,mo": (38.6270, -90.1994),
    "new orleans,la": (29.9511, -90.0715),
    "salt lake city,ut": (40.7608, -111.8910),
    "pittsburgh,pa": (40.4406, -79.9959),
    "baltimore,md": (39.2904, -76.6122),
    "milwaukee,wi": (43.0389, -87.9065),
    "albuquerque,nm": (35.0844, -106.6504),
}


@dataclass
class GeocodingResult:
    lat: float
    lng: float
    formatted_address: Optional[str] = None


def format_address(address) -> str:
    parts = [_field(address, "street"), _field(address, "city"), _field(address, "state"), _field(address, "zip")]
    return ", ".join(p for p in parts if p)


def _field(address, name):
    if isinstance(address, dict):
        return address.get(name)
    return getattr(address, name, None)


class GoogleGeocodingProvider:
    """Thin client for the Google Geocoding API."""

    def __init__(self, api_key: str, url: str = None, timeout: float = None):
        self.api_key = api_key
        self.url = url or settings.GEOCODING_URL
        self.timeout = timeout or settings.GEOCODING_TIMEOUT_SECONDS

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, max=2),
        reraise=True,
    )
    def geocode(self, address_string: str) -> Optional[GeocodingResult]:
        response = requests.get(
            self.url,
            params={"address": address_string, "key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()

        if data.get("status") != "OK" or not data.get("results"):
            logger.info(f"Geocoding provider returned {data.get('status')} for '{address_string}'")
            return None

        top = data["results"][0]
        location = (top.get("geometry") or {}).get("location") or {}
        if "lat" not in location or "lng" not in location:
            return None

        return GeocodingResult(
            lat=location["lat"],
            lng=location["lng"],
            formatted_address=top.get("formatted_address"),
        )


class GeocodingService:
    def __init__(self, provider=None, rng: random.Random = None):
        if provider is None and settings.GOOGLE_MAPS_API_KEY:
            provider = GoogleGeocodingProvider(settings.GOOGLE_MAPS_API_KEY)
        self.provider = provider
        self.rng = rng or random.Random()

    def resolve(self, address) -> Optional[GeocodingResult]:
        full_address = format_address(address)
        city = (_field(address, "city") or "").strip().lower()
        state = (_field(address, "state") or "").strip().lower()

        # 1. Provider lookup
        if self.provider is not None:
            try:
                result = self.provider.geocode(full_address)
                if result is not None:
                    return result
            except Exception as e:
                logger.error(f"❌ Geocoding provider error for '{full_address}': {e}")

        # 2. Known city
        coords = CITY_COORDINATES.get(f"{city},{state}")
        if coords:
            return self._jittered(coords, CITY_JITTER, full_address)

        # 3. Any known city in the same state
        if state:
            for key, coords in CITY_COORDINATES.items():
                if key.endswith(f",{state}"):
                    return self._jittered(coords, STATE_JITTER, full_address)

        logger.warning(f"Could not geocode address: {full_address}")
        return None

    def _jittered(self, coords, span: float, formatted_address: str) -> GeocodingResult:
        lat, lng = coords
        return GeocodingResult(
            lat=lat + (self.rng.random() - 0.5) * span,
            lng=lng + (self.rng.random() - 0.5) * span,
            formatted_address=formatted_address,
        )


def to_postgis_point(lat: float, lng: float) -> str:
    """EWKT point in WGS84. PostGIS wants longitude first."""
    return f"SRID=4326;POINT({lng} {lat})"


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
