"""Static geographic reference data: city distances and transport bands."""
from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

from itinerary_engine.schemas import Coordinates, TransportMode

EARTH_RADIUS_KM = 6371.0
DEFAULT_DISTANCE_KM = 500.0
MIN_TRANSPORT_COST = 50000.0
COST_PER_KM = 1000.0

_CITY_DISTANCES_KM: Dict[Tuple[str, str], float] = {
    ("jakarta", "bali"): 1000.0,
    ("jakarta", "yogyakarta"): 450.0,
    ("jakarta", "bandung"): 150.0,
    ("jakarta", "surabaya"): 780.0,
    ("bali", "yogyakarta"): 800.0,
    ("bali", "bandung"): 900.0,
    ("bali", "surabaya"): 420.0,
    ("yogyakarta", "bandung"): 300.0,
    ("yogyakarta", "surabaya"): 325.0,
    ("surabaya", "malang"): 90.0,
    ("malang", "batu"): 20.0,
    ("surabaya", "batu"): 100.0,
}


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class DistanceTable:
    """Symmetric city-to-city distance lookup with a fixed fallback."""

    def __init__(
        self,
        distances: Optional[Dict[Tuple[str, str], float]] = None,
        *,
        default_km: float = DEFAULT_DISTANCE_KM,
    ):
        source = _CITY_DISTANCES_KM if distances is None else distances
        self._distances = {
            tuple(sorted((a.strip().lower(), b.strip().lower()))): float(km) for (a, b), km in source.items()
        }
        self.default_km = default_km

    def distance_km(self, from_city: str, to_city: str) -> float:
        a, b = from_city.strip().lower(), to_city.strip().lower()
        if a == b:
            return 0.0
        return self._distances.get(tuple(sorted((a, b))), self.default_km)


def transport_for_distance(distance_km: float) -> Tuple[TransportMode, int, float]:
    """Return ``(mode, duration_minutes, cost)`` for the distance band."""
    cost = max(MIN_TRANSPORT_COST, distance_km * COST_PER_KM)
    if distance_km < 100:
        return "car/taxi", 120, cost
    if distance_km < 500:
        return "bus/train", 360, cost
    return "flight", 480, cost
