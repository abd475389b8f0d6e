from .geo import distance_km, filter_and_rank, EARTH_RADIUS_KM
from .search import search_jobs, matches_query

__all__ = [
    "distance_km",
    "filter_and_rank",
    "EARTH_RADIUS_KM",
    "search_jobs",
    "matches_query",
]
