"""
Reading-processing pipeline shared by the polling loop and MQTT ingestion.

Each reading goes through the position reconciler first and then the AQI
resolver. Nothing here raises on bad or missing data: the result is always
a best-effort snapshot for the presentation layer.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Dict, Optional

from aqdash.aqi import AQIResolver, HourlyLookup, pollutant_status
from aqdash.errors import AggregateUnavailable, MalformedCoordinate
from aqdash.models import (
    POLLUTANTS,
    AQIResult,
    Coordinate,
    DeviceMode,
    HourlyAggregate,
    SensorReading,
    StableLocation,
)
from aqdash.parsing import parse_coordinate
from aqdash.reconciler import PositionReconciler

logger = logging.getLogger(__name__)


class BoundedAggregateLookup:
    """
    Runs the hourly-aggregate fetch on a worker thread with a deadline.

    A fetch that times out or fails raises AggregateUnavailable; the
    abandoned call is left to finish in the background.
    """

    def __init__(self, fetch: HourlyLookup, timeout: float, max_workers: int = 4):
        self._fetch = fetch
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="aggregate")

    def __call__(self, device_id: str, covering_hour: int) -> Optional[HourlyAggregate]:
        future = self._executor.submit(self._fetch, device_id, covering_hour)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as e:
            raise AggregateUnavailable(
                f"Hourly aggregate for {device_id} timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise AggregateUnavailable(f"Hourly aggregate for {device_id} failed: {e}") from e

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


@dataclass
class SessionContext:
    """Per-dashboard-session state (replaces module-level globals)."""
    current_device: str
    chart_hours: int = 24
    auto_refresh: bool = True
    last_snapshot: Optional["DashboardSnapshot"] = None


@dataclass(frozen=True)
class DashboardSnapshot:
    """Everything the presentation layer needs to render one reading."""
    reading: SensorReading
    aqi: AQIResult
    committed_location: Optional[StableLocation]
    display_coordinate: Optional[Coordinate]
    statuses: Dict[str, str] = field(default_factory=dict)

    @property
    def mode_label(self) -> str:
        return self.reading.mode.label


class DashboardCore:
    """Entry point of the core for the presentation collaborator."""

    def __init__(
        self,
        resolver: AQIResolver,
        reconciler: PositionReconciler,
        aggregate_lookup: Optional[HourlyLookup] = None,
    ):
        self.resolver = resolver
        self.reconciler = reconciler
        self.aggregate_lookup = aggregate_lookup

    # ------------------------------------------------------------------ #
    # Exposed operations
    # ------------------------------------------------------------------ #

    def resolve_aqi(self, reading: SensorReading) -> AQIResult:
        return self.resolver.resolve(reading, self.aggregate_lookup)

    def reconcile_position(self, reading: SensorReading) -> Optional[StableLocation]:
        return self.reconciler.on_reading(reading)

    def get_current_stable_location(self, device_id: str) -> Optional[StableLocation]:
        return self.reconciler.get_current_stable_location(device_id)

    def display_location(self, reading: SensorReading) -> Optional[Coordinate]:
        """Live fix of the reading when it parses, else the last committed location."""
        if reading.raw_coordinate:
            try:
                return parse_coordinate(reading.raw_coordinate)
            except MalformedCoordinate:
                pass
        stable = self.get_current_stable_location(reading.device_id)
        return stable.coordinate if stable is not None else None

    def process_reading(self, reading: SensorReading) -> DashboardSnapshot:
        """Run one reading through the reconciler and then the resolver."""
        committed = self.reconcile_position(reading)
        aqi = self.resolve_aqi(reading)

        snapshot = DashboardSnapshot(
            reading=reading,
            aqi=aqi,
            committed_location=committed,
            display_coordinate=self.display_location(reading),
            statuses={p: pollutant_status(p, reading.pollutant(p)) for p in POLLUTANTS},
        )

        if committed is not None:
            logger.info("%s committed stable location %s", reading.device_id, committed)
        if reading.mode is DeviceMode.MOBILE and snapshot.display_coordinate is None:
            logger.debug("%s is mobile without any known location", reading.device_id)

        return snapshot

    def close(self) -> None:
        close = getattr(self.aggregate_lookup, "close", None)
        if close is not None:
            close()
