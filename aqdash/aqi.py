"""
AQI (Air Quality Index) calculation and source selection.

Per-pollutant indices use US EPA breakpoints and piecewise linear
interpolation. Units follow the sensor API: PM in ug/m3, O3 and CO in ppb.
"""
import logging
import math
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from aqdash.config import ResolverConfig
from aqdash.models import (
    POLLUTANTS,
    AQICategory,
    AQIResult,
    DataSource,
    DeviceMode,
    HourlyAggregate,
    SensorReading,
)

logger = logging.getLogger(__name__)

AQI_CEILING = 500

Breakpoint = Tuple[float, float, int, int]

# (c_low, c_high, i_low, i_high)
PM25_BREAKPOINTS: List[Breakpoint] = [
    (0.0, 12.0, 0, 50),
    (12.1, 35.4, 51, 100),
    (35.5, 55.4, 101, 150),
    (55.5, 150.4, 151, 200),
    (150.5, 250.4, 201, 300),
    (250.5, 500.4, 301, 500),
]

PM10_BREAKPOINTS: List[Breakpoint] = [
    (0, 54, 0, 50),
    (55, 154, 51, 100),
    (155, 254, 101, 150),
    (255, 354, 151, 200),
    (355, 424, 201, 300),
    (425, 604, 301, 500),
]

# 8-hour ozone, ppb. Nothing above 200: higher readings clamp to the ceiling.
O3_BREAKPOINTS: List[Breakpoint] = [
    (0, 54, 0, 50),
    (55, 70, 51, 100),
    (71, 85, 101, 150),
    (86, 105, 151, 200),
    (106, 200, 201, 300),
]

# 8-hour CO, ppb
CO_BREAKPOINTS: List[Breakpoint] = [
    (0, 4400, 0, 50),
    (4500, 9400, 51, 100),
    (9500, 12400, 101, 150),
    (12500, 15400, 151, 200),
    (15500, 30400, 201, 300),
    (30500, 50400, 301, 500),
]

BREAKPOINTS: Dict[str, List[Breakpoint]] = {
    "pm25": PM25_BREAKPOINTS,
    "pm10": PM10_BREAKPOINTS,
    "o3": O3_BREAKPOINTS,
    "co": CO_BREAKPOINTS,
}

# Dashboard badge thresholds: (good, moderate), both inclusive
STATUS_THRESHOLDS: Dict[str, Tuple[float, float]] = {
    "pm25": (12, 35.4),
    "pm10": (54, 154),
    "o3": (54, 70),
    "co": (4400, 9400),
}

# (device_id, covering_hour_start) -> aggregate or None
HourlyLookup = Callable[[str, int], Optional[HourlyAggregate]]


def interpolate(concentration: float, table: List[Breakpoint]) -> int:
    """
    Convert a concentration to an index via piecewise linear interpolation.

    The published tables leave small gaps between ranges (12.0 / 12.1);
    a value inside a gap maps to the low index of the next range. Values
    beyond the last range return the ceiling. Halves round up (12.5 -> 13).
    """
    c = max(0.0, float(concentration))
    for c_lo, c_hi, i_lo, i_hi in table:
        if c > c_hi:
            continue
        if c < c_lo:
            return i_lo
        aqi = (i_hi - i_lo) * (c - c_lo) / (c_hi - c_lo) + i_lo
        return int(math.floor(aqi + 0.5))
    return AQI_CEILING


def pollutant_index(pollutant: str, concentration: Optional[float]) -> int:
    """Index of one pollutant; an absent value contributes 0."""
    if concentration is None:
        return 0
    return interpolate(concentration, BREAKPOINTS[pollutant])


def overall_index(pollutants: Mapping[str, Optional[float]]) -> Tuple[int, str]:
    """
    Return (aqi, dominant_pollutant) over PM2.5, PM10, O3 and CO.

    Ties go to the first pollutant in POLLUTANTS order.
    """
    best_value = -1
    best_pollutant = POLLUTANTS[0]
    for name in POLLUTANTS:
        value = pollutant_index(name, pollutants.get(name))
        if value > best_value:
            best_value, best_pollutant = value, name
    return best_value, best_pollutant


def category_for(aqi: int) -> AQICategory:
    a = int(aqi)
    if a <= 50:
        return AQICategory.GOOD
    if a <= 100:
        return AQICategory.MODERATE
    if a <= 150:
        return AQICategory.UNHEALTHY_FOR_SENSITIVE
    if a <= 200:
        return AQICategory.UNHEALTHY
    if a <= 300:
        return AQICategory.VERY_UNHEALTHY
    return AQICategory.HAZARDOUS


def compute_realtime(reading: SensorReading) -> AQIResult:
    value, dominant = overall_index(reading.pollutants)
    return AQIResult(
        value=value,
        category=category_for(value),
        dominant_pollutant=dominant,
        source=DataSource.REALTIME,
    )


def pollutant_status(pollutant: str, value: Optional[float]) -> str:
    """Simplified Good / Moderate / Unhealthy badge for a single pollutant."""
    good, moderate = STATUS_THRESHOLDS.get(pollutant, STATUS_THRESHOLDS["pm25"])
    v = value or 0.0
    if v <= good:
        return "Good"
    if v <= moderate:
        return "Moderate"
    return "Unhealthy"


def covering_hour(timestamp_utc: int) -> int:
    """Start of the clock hour containing ``timestamp_utc``."""
    return int(timestamp_utc) - int(timestamp_utc) % 3600


class AQIResolver:
    """
    Chooses between the realtime reading and the hourly aggregate.

    MOBILE readings always use the reading itself. FIXED readings use the
    aggregate's pre-computed AQI when its quality is sufficient, otherwise
    the reading. A failing lookup counts as "no aggregate".
    """

    def __init__(self, config: ResolverConfig):
        self.config = config

    def is_trusted(self, aggregate: HourlyAggregate) -> bool:
        return (
            aggregate.quality_score >= self.config.min_quality_score
            or aggregate.data_completeness_pct >= self.config.min_completeness_pct
        )

    def resolve(
        self,
        reading: SensorReading,
        hourly_lookup: Optional[HourlyLookup] = None,
    ) -> AQIResult:
        """
        Compute the AQI to display for ``reading``.

        Never raises because of the lookup: any exception it throws is
        logged and treated as an unavailable aggregate.
        """
        if reading.mode is DeviceMode.MOBILE or hourly_lookup is None:
            return compute_realtime(reading)

        hour = covering_hour(reading.timestamp_utc)
        try:
            aggregate = hourly_lookup(reading.device_id, hour)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Hourly aggregate lookup failed for %s (hour %s): %s",
                reading.device_id, hour, exc,
            )
            aggregate = None

        if aggregate is None:
            logger.debug("No hourly aggregate for %s, using realtime", reading.device_id)
            return compute_realtime(reading)

        if not self.is_trusted(aggregate):
            logger.info(
                "Hourly aggregate for %s below quality (score %.1f, completeness %.1f%%), "
                "using realtime",
                reading.device_id,
                aggregate.quality_score,
                aggregate.data_completeness_pct,
            )
            return compute_realtime(reading)

        return AQIResult(
            value=int(aggregate.aqi),
            category=aggregate.aqi_category,
            dominant_pollutant=aggregate.aqi_pollutant,
            source=DataSource.HOURLY,
        )
