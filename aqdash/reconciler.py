"""
GPS position reconciliation for mobile devices.

Noisy fixes from a MOBILE device are kept in a small sliding window per
device. A stable location is committed when the window fills up
(without clearing it) and when the device switches from MOBILE to FIXED
with enough samples (after which the window is cleared).
"""
import logging
import threading
import time
import weakref
from enum import Enum
from typing import Callable, Optional

from aqdash.config import ReconcilerConfig
from aqdash.errors import MalformedCoordinate
from aqdash.models import (
    Coordinate,
    DeviceMode,
    GpsBuffer,
    GpsSample,
    SensorReading,
    StableLocation,
)
from aqdash.parsing import parse_coordinate
from aqdash.store import KeyValueStore

logger = logging.getLogger(__name__)


class ReconcilerState(Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FULL = "full"


def average_coordinate(samples: list[Coordinate]) -> Coordinate:
    """Arithmetic mean of latitude and longitude, rounded to 6 decimals."""
    if not samples:
        raise ValueError("Cannot average an empty sample list")
    lat = sum(s.lat for s in samples) / len(samples)
    lon = sum(s.lon for s in samples) / len(samples)
    return Coordinate(round(lat, 6), round(lon, 6))


class PositionReconciler:
    """
    Per-device GPS state machine persisted through a KeyValueStore.

    The buffer and the previous mode of a device are loaded, modified and
    written back under a lock dedicated to that device, so concurrent
    readings for the same device cannot lose updates.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: ReconcilerConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self._clock = clock

        # Entries vanish once no reading of that device holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, device_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(device_id)
            if lock is None:
                lock = self._locks[device_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def on_reading(self, reading: SensorReading) -> Optional[StableLocation]:
        """
        Feed one reading through the state machine.

        Never raises: a store failure is logged and the call returns None.

        Returns:
            The StableLocation committed by this call, or None
        """
        device_id = reading.device_id
        coordinate = self._usable_coordinate(reading)

        with self._lock_for(device_id):
            try:
                return self._apply(reading, coordinate)
            except Exception:  # noqa: BLE001
                logger.exception("Store failure while reconciling %s; reading skipped", device_id)
                return None

    def _apply(self, reading: SensorReading, coordinate: Optional[Coordinate]) -> Optional[StableLocation]:
        """State transition for one reading; caller holds the device lock."""
        device_id = reading.device_id
        stored = self.store.load_buffer(device_id)
        buffer = stored if stored is not None else GpsBuffer()
        committed: Optional[StableLocation] = None

        if coordinate is not None:
            buffer.append(
                GpsSample(coordinate.lat, coordinate.lon, reading.timestamp_utc),
                self.config.buffer_size,
            )
            buffer.previous_mode = DeviceMode.MOBILE
            self.store.persist_buffer(device_id, buffer)
            logger.debug(
                "Buffered GPS for %s: %s (buffer: %d/%d)",
                device_id, coordinate, len(buffer), self.config.buffer_size,
            )

            if len(buffer) == self.config.buffer_size:
                committed = self._commit(device_id, buffer)
                logger.info("Auto-saved averaged GPS for %s: %s", device_id, committed)

        if buffer.previous_mode is DeviceMode.MOBILE and reading.mode is DeviceMode.FIXED:
            if len(buffer) >= self.config.min_samples:
                committed = self._commit(device_id, buffer)
                logger.info("Mode transition: saved averaged GPS for %s: %s", device_id, committed)
            else:
                logger.info(
                    "Mode transition for %s with only %d GPS samples, nothing committed",
                    device_id, len(buffer),
                )
            buffer.clear()
            buffer.previous_mode = DeviceMode.FIXED
            self.store.persist_buffer(device_id, buffer)

        elif reading.mode is DeviceMode.FIXED and stored is not None \
                and buffer.previous_mode is not DeviceMode.FIXED:
            buffer.previous_mode = DeviceMode.FIXED
            self.store.persist_buffer(device_id, buffer)

        return committed

    def get_current_stable_location(self, device_id: str) -> Optional[StableLocation]:
        """Last committed location of the device, if any."""
        try:
            return self.store.load_stable_location(device_id)
        except Exception:  # noqa: BLE001
            logger.exception("Could not load stable location of %s", device_id)
            return None

    def buffer_for(self, device_id: str) -> GpsBuffer:
        """Snapshot of the device's buffer (empty when none exists yet)."""
        with self._lock_for(device_id):
            buffer = self.store.load_buffer(device_id)
        return buffer if buffer is not None else GpsBuffer()

    def state(self, device_id: str) -> ReconcilerState:
        buffer = self.buffer_for(device_id)
        if buffer.previous_mode is not DeviceMode.MOBILE or not buffer.samples:
            return ReconcilerState.IDLE
        if len(buffer) >= self.config.buffer_size:
            return ReconcilerState.FULL
        return ReconcilerState.ACCUMULATING

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _usable_coordinate(reading: SensorReading) -> Optional[Coordinate]:
        """Parsed fix of a MOBILE reading; malformed strings count as absent."""
        if reading.mode is not DeviceMode.MOBILE:
            return None
        raw = reading.raw_coordinate
        if raw is None or not raw.strip():
            return None
        try:
            return parse_coordinate(raw)
        except MalformedCoordinate as e:
            logger.warning("Ignoring GPS of %s: %s", reading.device_id, e)
            return None

    def _commit(self, device_id: str, buffer: GpsBuffer) -> StableLocation:
        mean = average_coordinate(buffer.coordinates())
        location = StableLocation(lat=mean.lat, lon=mean.lon, committed_at=int(self._clock()))
        self.store.persist_stable_location(device_id, location)
        return location
