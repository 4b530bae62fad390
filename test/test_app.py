"""
Tests for the reading pipeline and the dashboard application.

The application is wired with an in-memory store and a mocked sensor API,
so the complete flow runs without network access:
1. Poll the latest reading
2. Reconcile the position
3. Resolve the AQI
4. Expose a snapshot for rendering
"""
import logging
import sqlite3

import httpx
import pytest

from aqdash.aqi import AQIResolver
from aqdash.api_client import SensorApiClient
from aqdash.config import AppConfig, ResolverConfig
from aqdash.main import DashboardApp, local_time
from aqdash.models import Coordinate, DataSource, DeviceMode, StableLocation
from aqdash.pipeline import DashboardCore, SessionContext
from aqdash.store import MemoryStore

from conftest import COMMIT_TIME, DEVICE, CountingLookup, make_aggregate, make_reading


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Test Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def core(reconciler):
    return DashboardCore(
        resolver=AQIResolver(ResolverConfig()),
        reconciler=reconciler,
        aggregate_lookup=CountingLookup(make_aggregate(quality_score=90, completeness=90, aqi=88)),
    )


class ScriptedApi:
    """Serves a queue of reading payloads, device listings or HTTP status codes."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(dict(request.url.params))
        item = self.responses.pop(0)
        if isinstance(item, int):
            return httpx.Response(item)
        if isinstance(item, dict) and "devices" in item:
            return httpx.Response(200, json=item)
        return httpx.Response(200, json={"data": item})


def payload(mode, gps="", ts=1718900000, device=DEVICE, pm25=10.0):
    return {"deviceID": device, "timestamp": ts, "mode": mode, "gps": gps, "pm25": pm25}


@pytest.fixture
def app_factory(core):
    created = []

    def build(responses):
        app = DashboardApp(AppConfig(), session=SessionContext(current_device=DEVICE))
        api = ScriptedApi(responses)
        app.api_client = SensorApiClient(app.config.api, transport=httpx.MockTransport(api))
        app.store = core.reconciler.store
        app.core = core
        created.append(app)
        return app, api

    yield build

    for app in created:
        app.shutdown()


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def test_mobile_reading_snapshot(core):
    snapshot = core.process_reading(make_reading(DeviceMode.MOBILE, gps="25.7,-100.3", pm25=40.0))

    assert snapshot.aqi.source is DataSource.REALTIME
    assert snapshot.aqi.value == 112
    assert snapshot.display_coordinate == Coordinate(25.7, -100.3)
    assert snapshot.statuses["pm25"] == "Unhealthy"
    assert snapshot.mode_label == "Mobile"
    assert core.aggregate_lookup.calls == []


def test_fixed_reading_uses_hourly_and_stable_location(core):
    for i, gps in enumerate(["0,0", "3,0", "0,3"]):
        core.process_reading(make_reading(DeviceMode.MOBILE, gps=gps, timestamp=100 + i))

    snapshot = core.process_reading(make_reading(DeviceMode.FIXED))

    assert snapshot.committed_location == StableLocation(1.0, 1.0, COMMIT_TIME)
    assert snapshot.display_coordinate == Coordinate(1.0, 1.0)
    assert snapshot.aqi.source is DataSource.HOURLY
    assert snapshot.aqi.value == 88
    assert core.get_current_stable_location(DEVICE) == StableLocation(1.0, 1.0, COMMIT_TIME)


def test_malformed_gps_still_resolves_aqi(core):
    snapshot = core.process_reading(make_reading(DeviceMode.MOBILE, gps="not,a,coord", pm25=20.0))

    assert snapshot.display_coordinate is None
    assert snapshot.aqi.value == 68


def test_fixed_device_without_any_location(core):
    snapshot = core.process_reading(make_reading(DeviceMode.FIXED))
    assert snapshot.display_coordinate is None
    assert snapshot.committed_location is None


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def test_poll_once_processes_latest_reading(app_factory):
    app, api = app_factory([payload(1, gps="25.7,-100.3")])

    snapshot = app.poll_once()

    assert api.requests == [{"deviceID": DEVICE, "action": "latest"}]
    assert snapshot.reading.mode is DeviceMode.MOBILE
    assert app.session.last_snapshot is snapshot
    assert app.readings_received == 1
    assert app.readings_processed == 1


def test_fetch_failure_keeps_previous_snapshot(app_factory):
    app, _api = app_factory([payload(0), 503])

    first = app.poll_once()
    second = app.poll_once()

    assert second is None
    assert app.session.last_snapshot is first
    assert app.fetch_failures == 1


def test_commits_are_counted_across_polls(app_factory):
    responses = [payload(1, gps=f"{i},{i}", ts=1718900000 + i) for i in range(3)] + [payload(0)]
    app, _api = app_factory(responses)

    for _ in range(4):
        app.poll_once()

    assert app.locations_committed == 1
    assert app.session.last_snapshot.committed_location == StableLocation(1.0, 1.0, COMMIT_TIME)


def test_change_device_refreshes_immediately(app_factory):
    app, api = app_factory([payload(0, device="SMAA_002")])

    snapshot = app.change_device("SMAA_002")

    assert app.session.current_device == "SMAA_002"
    assert api.requests[0]["deviceID"] == "SMAA_002"
    assert snapshot.reading.device_id == "SMAA_002"


def test_poll_before_setup_raises():
    app = DashboardApp(AppConfig())
    with pytest.raises(RuntimeError):
        app.poll_once()


def test_setup_without_influx_or_mqtt(monkeypatch, tmp_path):
    monkeypatch.delenv("INFLUX_TOKEN", raising=False)
    monkeypatch.setenv("INFLUX_TOKEN_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setenv("AQ_STORE_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("MQTT_ENABLED", "false")
    monkeypatch.setenv("AQ_API_BASE", "http://127.0.0.1:9/getData")

    app = DashboardApp(AppConfig())
    app.setup()
    try:
        assert app.core is not None
        assert [d.device_id for d in app.devices] == app.config.api.devices
        assert app.core.aggregate_lookup is None
        assert app.influx_client is None
        assert app.mqtt_client is None
    finally:
        app.shutdown()

    assert app.store is None
    assert app.api_client is None


def test_route_summary_uses_session_window(app_factory):
    history = [
        payload(1, gps="0,0", ts=1718900000, pm25=10.0),
        payload(1, gps="0,0.01", ts=1718900060, pm25=40.0),
    ]
    app, api = app_factory([history])
    app.session.chart_hours = 6

    summary = app.route_summary()

    assert api.requests == [{"deviceID": DEVICE, "action": "history", "hours": "6", "limit": "100"}]
    assert summary.distance_km == pytest.approx(1.112, abs=0.01)
    assert summary.peak == 40.0
    assert len(summary.hotspots) == 1


def test_route_summary_fetch_failure(app_factory):
    app, _api = app_factory([500])

    assert app.route_summary() is None
    assert app.fetch_failures == 1


def test_poll_survives_store_failure(app_factory):
    class LockedStore(MemoryStore):
        def set(self, key, value):
            raise sqlite3.OperationalError("database is locked")

    app, _api = app_factory([payload(1, gps="25.7,-100.3")])
    app.core.reconciler.store = LockedStore()

    snapshot = app.poll_once()

    assert snapshot is not None
    assert snapshot.committed_location is None
    assert snapshot.display_coordinate == Coordinate(25.7, -100.3)


DEVICES = {
    "devices": [
        {"deviceID": "SMAA_001", "online": True},
        {"deviceID": "SMAA_002", "online": False, "last_seen": "3h ago"},
    ],
    "count": 2,
    "online_count": 1,
    "offline_count": 1,
}


def test_change_device_rejects_unlisted_device(app_factory):
    app, api = app_factory([DEVICES])

    app.load_devices()
    snapshot = app.change_device("SMAA_999")

    assert snapshot is None
    assert app.session.current_device == DEVICE
    assert api.requests == [{"action": "devices"}]


def test_device_list_falls_back_to_configuration(app_factory):
    app, _api = app_factory([503])

    devices = app.load_devices()

    assert [d.device_id for d in devices] == app.config.api.devices
    assert not any(d.online for d in devices)
    assert app.fetch_failures == 1


def test_local_time_uses_display_timezone():
    assert local_time(1718900000, "UTC") == "2024-06-20 16:13:20"
    assert local_time(1718900000, "America/Mexico_City") == "2024-06-20 10:13:20"
    assert local_time(1718900000, "Not/AZone") == "2024-06-20 16:13:20"
    assert local_time(10**15, "UTC") == str(10**15)
