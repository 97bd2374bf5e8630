"""Travel-time / distance capability consumed by the insertion engine."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Sequence

from ...config import settings
from ...models.domain import Coordinates
from .models import MatrixEntry

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def great_circle_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points."""

    lat_a, lat_b = math.radians(a.lat), math.radians(b.lat)
    half_chord = (
        math.sin((lat_b - lat_a) / 2) ** 2
        + math.cos(lat_a) * math.cos(lat_b) * math.sin(math.radians(b.lng - a.lng) / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(half_chord)))


class MatrixProvider(ABC):
    """One-to-many distance/duration lookups.

    Implementations may block on network I/O; the engine calls them from worker
    threads and must not rely on any particular transport.
    """

    name = "matrix"
    retries_internally = False

    @abstractmethod
    def query(self, origin: Coordinates, destinations: Sequence[Coordinates]) -> list[MatrixEntry]:
        """Return one entry per destination, in order."""

    def query_reverse(self, origins: Sequence[Coordinates], destination: Coordinates) -> list[MatrixEntry]:
        """Return one entry per origin (origin -> destination), in order."""

        entries: list[MatrixEntry] = []
        for origin in origins:
            entries.extend(self.query(origin, [destination]))
        return entries


class HaversineMatrixProvider(MatrixProvider):
    """Straight-line estimate scaled by a road coefficient at a constant speed."""

    name = "haversine"

    def __init__(
        self,
        road_coefficient: float | None = None,
        average_speed_kmh: float | None = None,
    ) -> None:
        self.road_coefficient = road_coefficient if road_coefficient is not None else settings.haversine_road_coefficient
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.haversine_speed_kmh

    def _entry(self, origin: Coordinates, destination: Coordinates) -> MatrixEntry:
        distance_km = great_circle_km(origin, destination) * self.road_coefficient
        return MatrixEntry(distance_km=distance_km, duration_min=distance_km / self.average_speed_kmh * 60.0)

    def query(self, origin: Coordinates, destinations: Sequence[Coordinates]) -> list[MatrixEntry]:
        return [self._entry(origin, destination) for destination in destinations]

    def query_reverse(self, origins: Sequence[Coordinates], destination: Coordinates) -> list[MatrixEntry]:
        return [self._entry(origin, destination) for origin in origins]


def get_matrix_provider() -> MatrixProvider:
    """OSRM when a base URL is configured, otherwise the haversine estimate."""

    if settings.osrm_base_url:
        from .osrm_client import OSRMMatrixProvider

        return OSRMMatrixProvider()
    logger.warning("OSRM base URL is not configured. Using haversine travel estimates.")
    return HaversineMatrixProvider()
