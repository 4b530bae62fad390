"""
Tests for the sensor API client against an in-process mock transport.
"""
import httpx
import pytest

from aqdash.api_client import SensorApiClient
from aqdash.config import ApiConfig
from aqdash.errors import NetworkError, ParseError
from aqdash.models import DeviceMode


LATEST = {
    "deviceID": "SMAA_001",
    "timestamp": 1718900000,
    "mode": 0,
    "gps": "",
    "pm25": 8.2,
    "pm10": 21,
    "o3": 33,
    "co": 310,
}


def make_client(handler) -> SensorApiClient:
    config = ApiConfig()
    config.base_url = "https://sensors.example.test/getData"
    return SensorApiClient(config, transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Latest reading
# ---------------------------------------------------------------------------

def test_fetch_latest_reading_sends_expected_query():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={"data": LATEST})

    client = make_client(handler)
    reading = client.fetch_latest_reading("SMAA_001")
    client.close()

    assert seen == [{"deviceID": "SMAA_001", "action": "latest"}]
    assert reading.device_id == "SMAA_001"
    assert reading.mode is DeviceMode.FIXED
    assert reading.raw_coordinate is None
    assert reading.pollutant("pm25") == 8.2


def test_http_error_becomes_network_error():
    client = make_client(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(NetworkError):
        client.fetch_latest_reading("SMAA_001")


def test_transport_error_becomes_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(NetworkError):
        client.fetch_latest_reading("SMAA_001")


def test_invalid_json_becomes_parse_error():
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(ParseError):
        client.fetch_latest_reading("SMAA_001")


def test_empty_latest_becomes_parse_error():
    client = make_client(lambda request: httpx.Response(200, json={"data": None}))
    with pytest.raises(ParseError):
        client.fetch_latest_reading("SMAA_001")


def test_non_finite_timestamp_in_body_becomes_parse_error():
    body = '{"data": {"deviceID": "SMAA_001", "timestamp": Infinity, "mode": 0}}'
    client = make_client(lambda request: httpx.Response(200, text=body))
    with pytest.raises(ParseError):
        client.fetch_latest_reading("SMAA_001")


# ---------------------------------------------------------------------------
# History and devices
# ---------------------------------------------------------------------------

def test_fetch_history_skips_bad_rows():
    rows = [
        {**LATEST, "timestamp": 1718900000, "mode": 1, "gps": "25.7,-100.3"},
        {"timestamp": 1718900060},
        {**LATEST, "timestamp": 1718900120},
    ]
    seen = []

    def handler(request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={"data": rows})

    client = make_client(handler)
    history = client.fetch_history("SMAA_001", hours=6)

    assert seen[0]["action"] == "history"
    assert seen[0]["hours"] == "6"
    assert seen[0]["limit"] == str(client.config.history_limit)
    assert [r.timestamp_utc for r in history] == [1718900000, 1718900120]


def test_fetch_devices():
    body = {
        "devices": [
            {"deviceID": "SMAA_001", "online": True},
            {"deviceID": "SMAA_002", "online": False, "last_seen": "2h ago"},
            {"name": "broken"},
        ],
        "count": 2,
        "online_count": 1,
        "offline_count": 1,
    }
    client = make_client(lambda request: httpx.Response(200, json=body))

    devices = client.fetch_devices()

    assert [d.device_id for d in devices] == ["SMAA_001", "SMAA_002"]
    assert devices[0].online is True
    assert devices[1].last_seen == "2h ago"
