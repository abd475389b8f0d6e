from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional

from ruralink.config import SETTINGS
from ruralink.core.types import JobPosting, RankedJob

LOGGER = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def distance_km(a: Any, b: Any) -> float:
    """Great-circle distance between two points with ``lat``/``lng`` attributes (haversine)."""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    h = min(1.0, h)  # rounding near antipodes
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _sort_key(ranked: RankedJob) -> tuple[int, float]:
    if ranked.distance is None:
        return (1, 0.0)
    return (0, ranked.distance)


def filter_and_rank(
    jobs: Iterable[JobPosting],
    origin: Any,
    radius_km: Optional[float] = None,
) -> list[RankedJob]:
    """Keep jobs within ``radius_km`` of ``origin``, nearest first.

    Jobs without a coordinate are always kept with ``distance=None`` and placed
    after every located job, in their input order.
    """
    radius = SETTINGS.search_radius_km if radius_km is None else radius_km
    ranked: list[RankedJob] = []
    dropped = 0
    for job in jobs:
        if not job.has_coordinate:
            ranked.append(RankedJob(job=job, distance=None))
            continue
        dist = distance_km(origin, job)
        if dist <= radius:
            ranked.append(RankedJob(job=job, distance=dist))
        else:
            dropped += 1

    # sorted() is stable, so unlocated jobs keep their relative order
    result = sorted(ranked, key=_sort_key)
    if LOGGER.isEnabledFor(logging.DEBUG):
        LOGGER.debug("geo-filter radius=%s kept=%s dropped=%s", radius, len(result), dropped)
    return result
