"""
Decoding of sensor API payloads into the data model.

This module is the single place where the default-substitution policy lives:
a pollutant that is missing, null, blank, non-numeric, negative or not finite
becomes ``None``. Numeric strings such as ``"0"`` are accepted as numbers.
"""
import logging
import math
from typing import Any, Optional

from aqdash.errors import MalformedCoordinate, ParseError
from aqdash.models import POLLUTANTS, Coordinate, DeviceMode, SensorReading

logger = logging.getLogger(__name__)

_MODE_ALIASES = {
    "0": DeviceMode.FIXED,
    "fixed": DeviceMode.FIXED,
    "1": DeviceMode.MOBILE,
    "mobile": DeviceMode.MOBILE,
}


def parse_reading(data: dict) -> SensorReading:
    """
    Convert one API/MQTT JSON object into a SensorReading.

    Expected JSON structure:
    {
        "deviceID": "SMAA_001",
        "timestamp": 1718900000,
        "mode": 1,
        "gps": "25.709111,-100.303167",
        "pm25": 12.4, "pm10": 30, "o3": 41, "co": 380,
        "temperature": 27.1, "humidity": 48.0, "noise": 55.2, "battery": 87
    }

    Raises:
        ParseError: If the identity fields are missing or invalid
    """
    if not isinstance(data, dict):
        raise ParseError(f"Reading payload must be an object, got {type(data).__name__}")

    try:
        device_id = str(data["deviceID"]).strip()
        timestamp = int(float(data["timestamp"]))
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        raise ParseError(f"Reading is missing identity fields: {e}") from e

    if not device_id:
        raise ParseError("Reading has an empty deviceID")

    mode = parse_mode(data.get("mode"))

    pollutants = {name: optional_concentration(data.get(name), name) for name in POLLUTANTS}

    gps = data.get("gps")
    raw_coordinate = gps.strip() if isinstance(gps, str) and gps.strip() else None

    return SensorReading(
        device_id=device_id,
        timestamp_utc=timestamp,
        mode=mode,
        pollutants=pollutants,
        raw_coordinate=raw_coordinate,
        temperature_c=_get_optional_float(data, "temperature"),
        humidity_pct=_get_optional_float(data, "humidity"),
        noise_dba=_get_optional_float(data, "noise"),
        battery_pct=_get_optional_float(data, "battery"),
    )


def parse_mode(value: Any) -> DeviceMode:
    """Map the wire representation of the operating mode to DeviceMode."""
    if isinstance(value, DeviceMode):
        return value
    if isinstance(value, bool) or value is None:
        raise ParseError(f"Invalid device mode: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value != int(value):
            raise ParseError(f"Invalid device mode: {value!r}")
        value = str(int(value))
    mode = _MODE_ALIASES.get(str(value).strip().lower())
    if mode is None:
        raise ParseError(f"Invalid device mode: {value!r}")
    return mode


def parse_coordinate(raw: str) -> Coordinate:
    """
    Parse a ``"lat,lon"`` GPS string.

    Raises:
        MalformedCoordinate: Unless the string holds exactly two finite floats
            within latitude/longitude range
    """
    if not isinstance(raw, str):
        raise MalformedCoordinate(f"GPS value must be a string, got {type(raw).__name__}")

    parts = raw.split(",")
    if len(parts) != 2:
        raise MalformedCoordinate(f"Expected 'lat,lon', got {raw!r}")

    try:
        lat, lon = (float(p.strip()) for p in parts)
    except ValueError as e:
        raise MalformedCoordinate(f"Non-numeric coordinate in {raw!r}") from e

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise MalformedCoordinate(f"Non-finite coordinate in {raw!r}")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise MalformedCoordinate(f"Coordinate out of range: {raw!r}")

    return Coordinate(lat, lon)


def optional_concentration(value: Any, name: str = "value") -> Optional[float]:
    """Apply the default-substitution policy to one pollutant value."""
    number = _to_float(value)
    if number is None:
        if value not in (None, ""):
            logger.debug("Discarding non-numeric %s value %r", name, value)
        return None
    if number < 0 or not math.isfinite(number):
        logger.warning("Discarding invalid %s concentration %r", name, value)
        return None
    return number


def _get_optional_float(data: dict, key: str) -> Optional[float]:
    """Safely extract optional float value from dictionary."""
    return _to_float(data.get(key))


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
