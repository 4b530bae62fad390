"""
InfluxDB 3 Core client for reading hourly air-quality aggregates.
The upstream aggregator writes one row per device and clock hour; this
client only reads them back.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
from influxdb_client_3 import InfluxDBClient3

from aqdash.config import InfluxDBConfig
from aqdash.errors import NetworkError, ParseError
from aqdash.models import POLLUTANTS, AQICategory, HourlyAggregate

logger = logging.getLogger(__name__)


class InfluxClient:
    """
    Thin wrapper around InfluxDB 3 Core client for the hourly rollups.
    Handles connection, queries and row decoding.
    """

    def __init__(self, config: InfluxDBConfig):
        """
        Initialize the InfluxDB client.

        Args:
            config: InfluxDB connection configuration
        """
        self.config = config
        self._client: Optional[InfluxDBClient3] = None

        logger.info(f"Initializing InfluxDB client for {config.url}")

    def connect(self) -> None:
        """
        Establish connection to InfluxDB 3 Core.

        Raises:
            ConnectionError: If connection fails
        """
        try:
            self._client = InfluxDBClient3(
                host=self.config.url,
                token=self.config.token,
                database=self.config.database,
                org=self.config.org,
            )

            logger.info(
                f"Connected to InfluxDB at {self.config.url} "
                f"(database: {self.config.database})"
            )

        except Exception as e:
            logger.error(f"Failed to connect to InfluxDB: {e}")
            raise ConnectionError(f"InfluxDB connection failed: {e}") from e

    def close(self) -> None:
        """Close the InfluxDB client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("InfluxDB connection closed")

    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._client is not None

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    def query_hourly_aggregate(self, device_id: str, covering_hour: int) -> Optional[HourlyAggregate]:
        """
        Fetch the most recent rollup of a device at or before ``covering_hour``.

        Args:
            device_id: Device identifier (tag ``device_id``)
            covering_hour: Hour-aligned epoch seconds

        Returns:
            The aggregate, or None if the device has no rollup for the
            covering hour or the hour before it

        Raises:
            RuntimeError: If client is not connected
            NetworkError: If the query fails
            ParseError: If the stored row cannot be decoded
        """
        if not self._client:
            raise RuntimeError("InfluxDB client is not connected. Call connect() first.")

        earliest = covering_hour - 3600
        hour_iso = datetime.fromtimestamp(covering_hour, tz=timezone.utc).isoformat()
        earliest_iso = datetime.fromtimestamp(earliest, tz=timezone.utc).isoformat()
        device = device_id.replace("'", "''")

        query = f"""
            SELECT *
            FROM "{self.config.measurement}"
            WHERE device_id = '{device}' AND time >= '{earliest_iso}' AND time <= '{hour_iso}'
            ORDER BY time DESC
            LIMIT 1
        """

        try:
            result = self._client.query(query=query)
        except Exception as e:
            logger.error(f"Hourly aggregate query failed: {e}")
            raise NetworkError(f"InfluxDB query failed: {e}") from e

        rows = self._pyarrow_to_list(result)
        if not rows:
            logger.debug(f"No hourly aggregate for {device_id} at or before {hour_iso}")
            return None

        aggregate = self._row_to_aggregate(device_id, rows[0])
        if aggregate.hour_start_utc < earliest:
            logger.debug(f"Ignoring stale hourly aggregate for {device_id} from {aggregate.hour_start_utc}")
            return None
        return aggregate

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_aggregate(device_id: str, row: dict) -> HourlyAggregate:
        """
        Convert one query row into an HourlyAggregate.

        Structure:
        - Tags: device_id
        - Fields: pm25, pm10, o3, co, data_completeness_pct, quality_score,
          aqi, aqi_category, aqi_pollutant
        - Timestamp: hour start
        """
        try:
            ts = pd.Timestamp(row["time"])
            if ts.tzinfo is None:
                ts = ts.tz_localize("UTC")

            averages = {}
            for name in POLLUTANTS:
                value = row.get(name)
                averages[name] = None if value is None or pd.isna(value) else float(value)

            return HourlyAggregate(
                device_id=device_id,
                hour_start_utc=int(ts.timestamp()),
                pollutant_averages=averages,
                data_completeness_pct=float(row["data_completeness_pct"]),
                quality_score=float(row["quality_score"]),
                aqi=int(row["aqi"]),
                aqi_category=AQICategory.from_label(str(row["aqi_category"])),
                aqi_pollutant=str(row["aqi_pollutant"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Invalid hourly aggregate row for {device_id}: {e}") from e

    @staticmethod
    def _pyarrow_to_list(table) -> List[dict]:
        """
        Convert PyArrow Table/RecordBatch to list of dictionaries.

        The influxdb3-python client returns PyArrow tables, which need
        to be converted to native Python types for easier consumption.

        Args:
            table: PyArrow Table or RecordBatch from query result

        Returns:
            List of dictionaries, one per row
        """
        try:
            df = table.to_pandas()
            return df.to_dict('records')

        except Exception as e:
            logger.error(f"Failed to convert PyArrow table: {e}")

            # Fallback: manual conversion
            try:
                columns = table.column_names if hasattr(table, 'column_names') else table.schema.names

                result = []
                for i in range(len(table)):
                    result.append({col: table[col][i].as_py() for col in columns})
                return result

            except Exception as e2:
                logger.error(f"Fallback conversion also failed: {e2}")
                raise ParseError(f"Cannot decode InfluxDB result: {e2}") from e2
