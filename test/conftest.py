"""Shared fixtures for the dashboard core tests."""
from typing import Dict, Optional

import pytest

from aqdash.aqi import AQIResolver
from aqdash.config import ReconcilerConfig, ResolverConfig
from aqdash.models import AQICategory, DeviceMode, HourlyAggregate, SensorReading
from aqdash.reconciler import PositionReconciler
from aqdash.store import MemoryStore

DEVICE = "SMAA_001"
COMMIT_TIME = 1_718_900_000


def make_reading(
    mode: DeviceMode = DeviceMode.FIXED,
    gps: Optional[str] = None,
    device_id: str = DEVICE,
    timestamp: int = 1_718_899_200,
    **pollutants: Optional[float],
) -> SensorReading:
    """Build a SensorReading; pollutants default to a moderate PM2.5 sample."""
    values: Dict[str, Optional[float]] = {"pm25": 20.0, "pm10": 40.0, "o3": 30.0, "co": 400.0}
    values.update(pollutants)
    return SensorReading(
        device_id=device_id,
        timestamp_utc=timestamp,
        mode=mode,
        pollutants=values,
        raw_coordinate=gps,
    )


def make_aggregate(quality_score: float, completeness: float, aqi: int = 142) -> HourlyAggregate:
    return HourlyAggregate(
        device_id=DEVICE,
        hour_start_utc=1_718_899_200,
        pollutant_averages={"pm25": 52.0, "pm10": 80.0, "o3": 40.0, "co": 500.0},
        data_completeness_pct=completeness,
        quality_score=quality_score,
        aqi=aqi,
        aqi_category=AQICategory.UNHEALTHY_FOR_SENSITIVE,
        aqi_pollutant="pm25",
    )


class CountingLookup:
    """Hourly lookup double that records every call."""

    def __init__(self, aggregate: Optional[HourlyAggregate] = None, error: Optional[Exception] = None):
        self.aggregate = aggregate
        self.error = error
        self.calls = []

    def __call__(self, device_id: str, covering_hour: int) -> Optional[HourlyAggregate]:
        self.calls.append((device_id, covering_hour))
        if self.error is not None:
            raise self.error
        return self.aggregate


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def reconciler(store: MemoryStore) -> PositionReconciler:
    return PositionReconciler(store, ReconcilerConfig(), clock=lambda: COMMIT_TIME)


@pytest.fixture
def resolver() -> AQIResolver:
    return AQIResolver(ResolverConfig())
