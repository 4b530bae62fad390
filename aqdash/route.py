"""Summary statistics for the route travelled by a mobile device."""
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from aqdash.aqi import pollutant_status
from aqdash.errors import MalformedCoordinate
from aqdash.models import Coordinate, SensorReading
from aqdash.parsing import parse_coordinate

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class RoutePoint:
    coordinate: Coordinate
    reading: SensorReading

    def value(self, pollutant: str) -> float:
        return self.reading.pollutant(pollutant) or 0.0


@dataclass
class RouteSummary:
    pollutant: str
    points: List[RoutePoint] = field(default_factory=list)
    distance_km: float = 0.0
    average: Optional[float] = None
    peak: Optional[float] = None
    hotspots: List[RoutePoint] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.points) < 2


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    lat1, lon1, lat2, lon2 = map(math.radians, (a.lat, a.lon, b.lat, b.lon))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def route_points(history: Iterable[SensorReading]) -> List[RoutePoint]:
    """Readings with a valid GPS fix, oldest first."""
    points = []
    for reading in sorted(history, key=lambda r: r.timestamp_utc):
        if not reading.raw_coordinate:
            continue
        try:
            points.append(RoutePoint(parse_coordinate(reading.raw_coordinate), reading))
        except MalformedCoordinate as e:
            logger.debug("Skipping route point of %s: %s", reading.device_id, e)
    return points


def summarize_route(history: Iterable[SensorReading], pollutant: str = "pm25") -> RouteSummary:
    """
    Distance, exposure and hotspots along a route.

    Fewer than two located readings produce an empty summary. Missing
    pollutant values count as 0 for average and peak.
    """
    points = route_points(history)
    summary = RouteSummary(pollutant=pollutant, points=points)
    if summary.is_empty:
        return summary

    summary.distance_km = sum(
        haversine_km(prev.coordinate, cur.coordinate) for prev, cur in zip(points, points[1:])
    )
    values = [p.value(pollutant) for p in points]
    summary.average = sum(values) / len(values)
    summary.peak = max(values)
    summary.hotspots = [p for p in points if pollutant_status(pollutant, p.value(pollutant)) == "Unhealthy"]
    return summary
