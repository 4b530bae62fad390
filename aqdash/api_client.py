"""HTTP client for the remote sensor-data API."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from aqdash.config import ApiConfig
from aqdash.errors import NetworkError, ParseError
from aqdash.models import DeviceStatus, SensorReading
from aqdash.parsing import parse_reading

logger = logging.getLogger(__name__)


class SensorApiClient:
    """
    Thin wrapper around the getData endpoint.

    Every call makes a single attempt. Transport failures and HTTP errors
    surface as NetworkError, undecodable bodies as ParseError.
    """

    def __init__(self, config: ApiConfig, transport: httpx.BaseTransport | None = None):
        """Initialize API client.

        Args:
            config: API configuration (base URL, timeout)
            transport: Optional httpx transport, used by tests
        """
        self.config = config
        self._client = httpx.Client(timeout=config.timeout, transport=transport)
        logger.info("Initializing sensor API client for %s", config.base_url)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def _request(self, params: dict[str, Any]) -> Any:
        """GET the endpoint with query parameters and return decoded JSON.

        Raises:
            NetworkError: Transport failure, timeout or HTTP status >= 400
            ParseError: Body is not JSON
        """
        try:
            response = self._client.get(self.config.base_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"HTTP {e.response.status_code} for action={params.get('action')}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Sensor API request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Sensor API returned invalid JSON: {e}") from e

    # Readings
    def fetch_latest_reading(self, device_id: str) -> SensorReading:
        """Fetch the most recent reading of a device.

        Raises:
            NetworkError: If the API cannot be reached
            ParseError: If the response has no usable reading
        """
        body = self._request({"deviceID": device_id, "action": "latest"})
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            raise ParseError(f"No latest reading for {device_id}")
        return parse_reading(data)

    def fetch_history(self, device_id: str, hours: int, limit: int | None = None) -> list[SensorReading]:
        """Fetch historical readings; rows that fail to decode are skipped.

        Args:
            device_id: Device identifier
            hours: Look-back window in hours
            limit: Maximum number of rows (defaults to the configured limit)
        """
        params = {
            "deviceID": device_id,
            "action": "history",
            "hours": hours,
            "limit": limit if limit is not None else self.config.history_limit,
        }
        body = self._request(params)
        rows = (body.get("data") if isinstance(body, dict) else None) or []
        if not isinstance(rows, list):
            raise ParseError("History response 'data' is not a list")

        readings = []
        for row in rows:
            try:
                readings.append(parse_reading(row))
            except (ParseError, ValueError) as e:
                logger.warning("Skipping history row for %s: %s", device_id, e)
        logger.debug("Fetched %d history rows for %s", len(readings), device_id)
        return readings

    # Devices
    def fetch_devices(self) -> list[DeviceStatus]:
        """List devices known to the API with their online flag."""
        body = self._request({"action": "devices"})
        if not isinstance(body, dict):
            raise ParseError("Devices response is not an object")

        devices = []
        for item in body.get("devices") or []:
            try:
                devices.append(
                    DeviceStatus(
                        device_id=str(item["deviceID"]),
                        online=bool(item.get("online", False)),
                        last_seen=item.get("last_seen"),
                    )
                )
            except (KeyError, TypeError) as e:
                logger.warning("Skipping malformed device entry %r: %s", item, e)

        logger.info(
            "Devices: %s total, %s online, %s offline",
            body.get("count", len(devices)),
            body.get("online_count", sum(d.online for d in devices)),
            body.get("offline_count", sum(not d.online for d in devices)),
        )
        return devices
