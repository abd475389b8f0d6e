from __future__ import annotations

import logging
from typing import Optional

import requests

from ruralink.config import SETTINGS
from ruralink.core.types import GeoPoint
from ruralink.storage import LocalStore

LOGGER = logging.getLogger(__name__)

REVERSE_GEOCODE_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

LOCATION_KEY = "location.current"
PROMPT_SHOWN_KEY = "location.prompt_shown"


def reverse_geocode(lat: float, lng: float, *, timeout: Optional[float] = None) -> GeoPoint:
    """Resolve a display address for a coordinate.

    Any failure degrades to the raw coordinates as the address.
    """
    fallback = GeoPoint(lat=lat, lng=lng, address=f"{lat:.4f}, {lng:.4f}")
    try:
        resp = requests.get(
            REVERSE_GEOCODE_URL,
            params={"latitude": lat, "longitude": lng, "localityLanguage": "en"},
            timeout=timeout or SETTINGS.geocode_timeout,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        LOGGER.info("reverse geocode failed lat=%s lng=%s: %s", lat, lng, e)
        return fallback

    if not isinstance(data, dict) or not data.get("locality"):
        return fallback
    parts = [data.get("locality"), data.get("principalSubdivision"), data.get("countryName")]
    address = ", ".join(str(p) for p in parts if p)
    return GeoPoint(lat=lat, lng=lng, address=address)


class LocationCache:
    """The user's last known GeoPoint plus the first-visit consent flag."""

    def __init__(self, store: LocalStore):
        self.store = store

    def load(self) -> Optional[GeoPoint]:
        raw = self.store.get(LOCATION_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return GeoPoint(lat=float(raw["lat"]), lng=float(raw["lng"]), address=raw.get("address"))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("discarding malformed cached location %r", raw)
            self.store.remove(LOCATION_KEY)
            return None

    def save(self, point: GeoPoint) -> None:
        self.store.set(LOCATION_KEY, {"lat": point.lat, "lng": point.lng, "address": point.address})

    def clear(self) -> None:
        self.store.remove(LOCATION_KEY)

    def prompt_shown(self) -> bool:
        return bool(self.store.get(PROMPT_SHOWN_KEY, False))

    def mark_prompt_shown(self) -> None:
        self.store.set(PROMPT_SHOWN_KEY, True)
