"""
Tests for payload decoding and the default-substitution policy.
"""
import pytest

from aqdash.errors import MalformedCoordinate, ParseError
from aqdash.models import Coordinate, DeviceMode
from aqdash.parsing import optional_concentration, parse_coordinate, parse_mode, parse_reading


SAMPLE_PAYLOAD = {
    "deviceID": "SMAA_002",
    "timestamp": 1718900000,
    "mode": 1,
    "gps": " 25.709111,-100.303167 ",
    "pm25": "12.4",
    "pm10": 30,
    "o3": None,
    "co": "",
    "temperature": 27.1,
    "humidity": "48",
    "noise": 55.2,
    "battery": 87,
}


def test_parse_full_reading():
    reading = parse_reading(SAMPLE_PAYLOAD)

    assert reading.device_id == "SMAA_002"
    assert reading.timestamp_utc == 1718900000
    assert reading.mode is DeviceMode.MOBILE
    assert reading.raw_coordinate == "25.709111,-100.303167"
    assert reading.pollutants == {"pm25": 12.4, "pm10": 30.0, "o3": None, "co": None}
    assert reading.humidity_pct == 48.0
    assert reading.battery_pct == 87.0


def test_string_zero_is_a_real_zero():
    reading = parse_reading({**SAMPLE_PAYLOAD, "pm25": "0"})
    assert reading.pollutant("pm25") == 0.0


@pytest.mark.parametrize("value", [None, "", "  ", "n/a", -3, "nan", float("inf"), True])
def test_invalid_concentrations_become_none(value):
    assert optional_concentration(value, "pm25") is None


def test_missing_gps_is_none():
    reading = parse_reading({**SAMPLE_PAYLOAD, "gps": "  "})
    assert reading.raw_coordinate is None


@pytest.mark.parametrize("missing", ["deviceID", "timestamp"])
def test_missing_identity_fields_raise(missing):
    payload = {k: v for k, v in SAMPLE_PAYLOAD.items() if k != missing}
    with pytest.raises(ParseError):
        parse_reading(payload)


@pytest.mark.parametrize("timestamp", [float("inf"), float("nan"), "Infinity", "-inf"])
def test_non_finite_timestamp_raises(timestamp):
    with pytest.raises(ParseError):
        parse_reading({**SAMPLE_PAYLOAD, "timestamp": timestamp})


def test_non_object_payload_raises():
    with pytest.raises(ParseError):
        parse_reading(["not", "an", "object"])


@pytest.mark.parametrize(
    "value, mode",
    [(0, DeviceMode.FIXED), ("0", DeviceMode.FIXED), (1, DeviceMode.MOBILE),
     ("1", DeviceMode.MOBILE), ("Mobile", DeviceMode.MOBILE), (1.0, DeviceMode.MOBILE)],
)
def test_parse_mode(value, mode):
    assert parse_mode(value) is mode


@pytest.mark.parametrize("value", [None, 2, "drifting", True, 1.7, float("nan"), float("inf")])
def test_invalid_mode_raises(value):
    with pytest.raises(ParseError):
        parse_mode(value)


def test_parse_coordinate():
    assert parse_coordinate("19.4326, -99.1332") == Coordinate(19.4326, -99.1332)


@pytest.mark.parametrize(
    "raw",
    ["not,a,coord", "19.4", "19.4,abc", "1,2,3", "", "nan,1", "91,0", "0,181"],
)
def test_malformed_coordinates_raise(raw):
    with pytest.raises(MalformedCoordinate):
        parse_coordinate(raw)
