"""
Air-Quality Dashboard - Main Entry Point

Orchestrates the data flow: sensor API (polling) / MQTT (push) →
position reconciler → AQI resolver → rendered summary in the logs.
"""

import logging
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from aqdash.aqi import AQIResolver
from aqdash.api_client import SensorApiClient
from aqdash.config import AppConfig, config
from aqdash.errors import NetworkError, ParseError
from aqdash.influx_client import InfluxClient
from aqdash.models import DeviceStatus, SensorReading
from aqdash.mqtt_client import MQTTClient
from aqdash.pipeline import (
    BoundedAggregateLookup,
    DashboardCore,
    DashboardSnapshot,
    SessionContext,
)
from aqdash.reconciler import PositionReconciler
from aqdash.route import RouteSummary, summarize_route
from aqdash.store import KeyValueStore, SQLiteStore


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def local_time(timestamp_utc: int, tz_name: str) -> str:
    """Format epoch seconds in the display timezone."""
    try:
        tz = ZoneInfo(tz_name)
    except Exception:  # noqa: BLE001
        # Fallback to UTC if the timezone string is invalid
        logger.warning(f"Invalid timezone '{tz_name}', falling back to UTC")
        tz = timezone.utc
    try:
        return datetime.fromtimestamp(timestamp_utc, tz).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return str(timestamp_utc)


# ---------------------------------------------------------------------------
# Main Application
# ---------------------------------------------------------------------------

class DashboardApp:
    """
    Main application class for the dashboard.

    Responsibilities:
    - Initialize and manage the API, InfluxDB and MQTT clients.
    - Poll the latest reading of the session's device on a fixed cadence.
    - Feed every reading through the DashboardCore.
    - Track and report basic statistics.
    """

    def __init__(self, app_config: AppConfig = config, session: Optional[SessionContext] = None) -> None:
        """Initialize the application but do not connect yet."""
        self.config = app_config

        logger.info("=" * 70)
        logger.info("Air-Quality Dashboard Starting")
        logger.info("=" * 70)
        logger.info("Configuration: %s", self.config)

        self.session = session or SessionContext(
            current_device=self.config.api.default_device,
            chart_hours=self.config.api.chart_hours,
        )

        # Statistics tracking
        self.readings_received: int = 0
        self.readings_processed: int = 0
        self.fetch_failures: int = 0
        self.locations_committed: int = 0
        self.start_time: float = time.time()

        # Collaborators (created in setup)
        self.store: Optional[KeyValueStore] = None
        self.api_client: Optional[SensorApiClient] = None
        self.influx_client: Optional[InfluxClient] = None
        self.mqtt_client: Optional[MQTTClient] = None
        self.core: Optional[DashboardCore] = None
        self.devices: List[DeviceStatus] = []

        # Readings arrive from the poll loop and the MQTT thread
        self._stats_lock = threading.Lock()

        self.shutdown_requested: bool = False

    # ------------------------------------------------------------------ #
    # Setup & lifecycle
    # ------------------------------------------------------------------ #

    def setup(self) -> None:
        """
        Create the store and clients and wire the DashboardCore.

        Raises:
            ConnectionError: If the MQTT broker cannot be reached.
        """
        logger.info("Setting up collaborators...")

        self.store = SQLiteStore(self.config.store.path)
        self.api_client = SensorApiClient(self.config.api)
        self.load_devices()

        aggregate_lookup = None
        if self.config.influxdb.enabled:
            self.influx_client = InfluxClient(self.config.influxdb)
            try:
                self.influx_client.connect()
                aggregate_lookup = BoundedAggregateLookup(
                    self.influx_client.query_hourly_aggregate,
                    timeout=self.config.resolver.aggregate_timeout,
                )
            except ConnectionError as exc:
                logger.warning("Hourly aggregates unavailable: %s", exc)
                self.influx_client = None
        else:
            logger.info("InfluxDB not configured; AQI is computed from realtime readings only")

        self.core = DashboardCore(
            resolver=AQIResolver(self.config.resolver),
            reconciler=PositionReconciler(self.store, self.config.reconciler),
            aggregate_lookup=aggregate_lookup,
        )

        if self.config.mqtt.enabled:
            logger.info("Setting up MQTT client...")
            self.mqtt_client = MQTTClient(
                config=self.config.mqtt,
                on_reading_received=self._on_reading_received,
            )
            self.mqtt_client.connect()
            self.mqtt_client.start()

        logger.info("=" * 70)
        logger.info("Setup complete! Watching device %s", self.session.current_device)
        logger.info("Press Ctrl+C to stop")
        logger.info("=" * 70)

    # ------------------------------------------------------------------ #
    # Reading handling and stats
    # ------------------------------------------------------------------ #

    def poll_once(self) -> Optional[DashboardSnapshot]:
        """
        Fetch and process the latest reading of the session's device.

        Fetch failures are logged and counted; the previous snapshot stays
        on display.
        """
        if self.api_client is None:
            raise RuntimeError("Sensor API client is not initialized. Call setup() first.")

        device_id = self.session.current_device
        try:
            reading = self.api_client.fetch_latest_reading(device_id)
        except (NetworkError, ParseError) as exc:
            with self._stats_lock:
                self.fetch_failures += 1
            logger.warning("Could not fetch latest reading for %s: %s", device_id, exc)
            return None

        return self._on_reading_received(reading)

    def load_devices(self) -> List[DeviceStatus]:
        """
        Refresh the device listing from the API.

        When the listing cannot be fetched, the configured device IDs are
        used with an unknown (offline) status.
        """
        if self.api_client is None:
            raise RuntimeError("Sensor API client is not initialized. Call setup() first.")

        try:
            devices = self.api_client.fetch_devices()
        except (NetworkError, ParseError) as exc:
            with self._stats_lock:
                self.fetch_failures += 1
            logger.warning("Could not load device list, using configured devices: %s", exc)
            devices = [DeviceStatus(device_id=d, online=False) for d in self.config.api.devices]

        for device in devices:
            if device.online:
                logger.info("  %s online", device.device_id)
            else:
                logger.info("  %s offline (last seen: %s)", device.device_id, device.last_seen or "unknown")

        self.devices = devices
        return devices

    def change_device(self, device_id: str) -> Optional[DashboardSnapshot]:
        """
        Switch the session to another device and refresh immediately.

        Unknown device IDs are rejected while a device listing is loaded.
        """
        known = {d.device_id for d in self.devices}
        if known and device_id not in known:
            logger.warning("Unknown device %s; known devices: %s", device_id, ", ".join(sorted(known)))
            return None

        logger.info("Switching device %s -> %s", self.session.current_device, device_id)
        self.session.current_device = device_id
        self.session.last_snapshot = None
        return self.poll_once()

    def route_summary(self, pollutant: str = "pm25") -> Optional[RouteSummary]:
        """Summarize the session device's route over the chart window."""
        if self.api_client is None:
            raise RuntimeError("Sensor API client is not initialized. Call setup() first.")

        device_id = self.session.current_device
        try:
            history = self.api_client.fetch_history(device_id, self.session.chart_hours)
        except (NetworkError, ParseError) as exc:
            with self._stats_lock:
                self.fetch_failures += 1
            logger.warning("Could not fetch history for %s: %s", device_id, exc)
            return None

        summary = summarize_route(history, pollutant)
        if summary.is_empty:
            logger.info("No route data for %s in the last %dh", device_id, self.session.chart_hours)
        else:
            logger.info(
                "Route %s: %.2f km over %d points | %s avg %.1f peak %.1f | %d hotspots",
                device_id, summary.distance_km, len(summary.points), pollutant,
                summary.average, summary.peak, len(summary.hotspots),
            )
        return summary

    def _on_reading_received(self, reading: SensorReading) -> Optional[DashboardSnapshot]:
        """
        Process one reading from either source and log a concise summary.

        Args:
            reading: Parsed sensor reading.
        """
        with self._stats_lock:
            self.readings_received += 1
            count = self.readings_received

        if self.core is None:
            logger.error("Dashboard core not initialized; dropping reading.")
            logger.debug("Orphan reading: %s", reading)
            return None

        snapshot = self.core.process_reading(reading)

        with self._stats_lock:
            self.readings_processed += 1
            if snapshot.committed_location is not None:
                self.locations_committed += 1

        if reading.device_id == self.session.current_device:
            self.session.last_snapshot = snapshot

        coordinate = snapshot.display_coordinate
        logger.info(
            "[%d] %s @ %s | %s | %s | PM2.5: %s | GPS: %s",
            count,
            reading.device_id,
            local_time(reading.timestamp_utc, self.config.timezone),
            snapshot.mode_label,
            snapshot.aqi,
            reading.pollutant("pm25"),
            f"{coordinate.lat:.6f},{coordinate.lon:.6f}" if coordinate else "no fix",
        )

        if count % 10 == 0:
            self._show_statistics()

        return snapshot

    def _show_statistics(self) -> None:
        """Display application statistics in the logs."""
        uptime = time.time() - self.start_time
        uptime_str = time.strftime("%H:%M:%S", time.gmtime(uptime))

        logger.info("-" * 70)
        logger.info("Statistics | Uptime: %s", uptime_str)
        logger.info(
            "  Received: %d | Processed: %d | Fetch failures: %d | Locations committed: %d",
            self.readings_received,
            self.readings_processed,
            self.fetch_failures,
            self.locations_committed,
        )
        logger.info("-" * 70)

    # ------------------------------------------------------------------ #
    # Main loop and shutdown
    # ------------------------------------------------------------------ #

    def run(self) -> None:
        """
        Main application loop.

        Polls every ``poll_interval`` seconds while auto-refresh is on,
        until shutdown is requested.
        """
        next_poll = 0.0
        try:
            while not self.shutdown_requested:
                now = time.monotonic()
                if self.session.auto_refresh and now >= next_poll:
                    self.poll_once()
                    next_poll = now + self.config.api.poll_interval
                time.sleep(0.5)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            self.shutdown_requested = True
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Gracefully close all collaborators and display final statistics."""
        self.shutdown_requested = True

        logger.info("=" * 70)
        logger.info("Shutting down Air-Quality Dashboard")
        logger.info("=" * 70)

        self._show_statistics()

        if self.mqtt_client is not None:
            logger.info("Stopping MQTT client...")
            try:
                self.mqtt_client.stop()
            except Exception:  # noqa: BLE001
                logger.exception("Error while stopping MQTT client")
            self.mqtt_client = None

        if self.core is not None:
            self.core.close()

        if self.influx_client is not None:
            logger.info("Closing InfluxDB connection...")
            try:
                self.influx_client.close()
            except Exception:  # noqa: BLE001
                logger.exception("Error while closing InfluxDB client")
            self.influx_client = None

        if self.api_client is not None:
            self.api_client.close()
            self.api_client = None

        if self.store is not None:
            self.store.close()
            self.store = None

        logger.info("Shutdown complete. Goodbye!")
        logger.info("=" * 70)


# ---------------------------------------------------------------------------
# Signal handling and entrypoint
# ---------------------------------------------------------------------------

# Module-level reference for signal handler access
_APP_INSTANCE: Optional[DashboardApp] = None


def signal_handler(signum: int, frame: object | None) -> None:
    """
    Handle termination signals (SIGINT, SIGTERM).

    Triggers graceful shutdown of the application.
    """
    logger.info("Received signal %s", signum)
    if _APP_INSTANCE is not None:
        _APP_INSTANCE.shutdown_requested = True
    else:
        sys.exit(0)


def main() -> None:
    """Main entry point for the application."""
    global _APP_INSTANCE

    configure_logging(config.log_level)

    app = DashboardApp()
    _APP_INSTANCE = app

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.setup()
        app.run()

    except ConnectionError as exc:
        logger.error("Connection failed: %s", exc)
        logger.error("Make sure the MQTT broker is running or set MQTT_ENABLED=false")
        app.shutdown()
        sys.exit(1)

    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error: %s", exc)
        app.shutdown()
        sys.exit(1)


if __name__ == "__main__":
    main()
