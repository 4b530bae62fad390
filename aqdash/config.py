"""
Configuration management for the air-quality dashboard.
Loads settings from environment variables with sensible defaults.
"""
import os
import json
import logging
from typing import List, Optional
from pathlib import Path

logger = logging.getLogger(__name__)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class ApiConfig:
    """Remote sensor API (polling) configuration."""

    def __init__(self):
        self.base_url: str = os.getenv(
            "AQ_API_BASE",
            "https://jciiy1ok97.execute-api.us-east-1.amazonaws.com/default/getData",
        )
        self.timeout: float = float(os.getenv("AQ_API_TIMEOUT", "10"))

        # Devices shown in the selector
        self.devices: List[str] = _split_list(os.getenv("AQ_DEVICES", "SMAA_001,SMAA_002"))
        self.default_device: str = os.getenv("AQ_DEFAULT_DEVICE", "SMAA_001")

        # Refresh cadence and history window
        self.poll_interval: float = float(os.getenv("AQ_POLL_INTERVAL", "20"))
        self.history_limit: int = int(os.getenv("AQ_HISTORY_LIMIT", "100"))
        self.chart_hours: int = int(os.getenv("AQ_CHART_HOURS", "24"))

    def __repr__(self) -> str:
        return (
            f"ApiConfig(base_url='{self.base_url}', timeout={self.timeout}, "
            f"devices={self.devices}, poll_interval={self.poll_interval})"
        )


class ResolverConfig:
    """Source-selection policy of the AQI resolver."""

    def __init__(self):
        self.min_quality_score: float = float(os.getenv("AQ_MIN_QUALITY_SCORE", "70"))
        self.min_completeness_pct: float = float(os.getenv("AQ_MIN_COMPLETENESS_PCT", "75"))

        # Upper bound for the hourly-aggregate fetch, in seconds
        self.aggregate_timeout: float = float(os.getenv("AQ_AGGREGATE_TIMEOUT", "5"))

    def __repr__(self) -> str:
        return (
            f"ResolverConfig(min_quality_score={self.min_quality_score}, "
            f"min_completeness_pct={self.min_completeness_pct}, "
            f"aggregate_timeout={self.aggregate_timeout})"
        )


class ReconcilerConfig:
    """GPS buffering parameters."""

    def __init__(self):
        self.buffer_size: int = int(os.getenv("AQ_GPS_BUFFER_SIZE", "5"))
        self.min_samples: int = int(os.getenv("AQ_GPS_MIN_SAMPLES", "3"))

    def __repr__(self) -> str:
        return f"ReconcilerConfig(buffer_size={self.buffer_size}, min_samples={self.min_samples})"


class StoreConfig:
    """Key-value persistence for GPS buffers and stable locations."""

    def __init__(self):
        self.path: str = os.getenv("AQ_STORE_PATH", "aqdash_state.db")

    def __repr__(self) -> str:
        return f"StoreConfig(path='{self.path}')"


class MQTTConfig:
    """MQTT broker connection configuration (optional live readings)."""

    def __init__(self):
        self.enabled: bool = os.getenv("MQTT_ENABLED", "false").lower() in ("1", "true", "yes")
        self.host: str = os.getenv("MQTT_HOST", "localhost")
        self.port: int = int(os.getenv("MQTT_PORT", "1883"))
        self.topic: str = os.getenv("MQTT_TOPIC", "smaa/+/telemetry")

        # Authentication (optional)
        self.username: str | None = os.getenv("MQTT_USERNAME")
        self.password: str | None = os.getenv("MQTT_PASSWORD")

        # Connection settings
        self.keepalive: int = int(os.getenv("MQTT_KEEPALIVE", "60"))
        self.client_id: str = os.getenv("MQTT_CLIENT_ID", "aqdash_dashboard")

        self.qos: int = int(os.getenv("MQTT_QOS", "1"))  # 0=at most once, 1=at least once, 2=exactly once

    def __repr__(self) -> str:
        """String representation (hides password)."""
        return (
            f"MQTTConfig(enabled={self.enabled}, host='{self.host}', port={self.port}, "
            f"topic='{self.topic}', client_id='{self.client_id}')"
        )


class InfluxDBConfig:
    """InfluxDB 3 Core configuration for the hourly-aggregate source."""

    def __init__(self):
        self.host: str = os.getenv("INFLUX_HOST", "localhost")
        self.port: int = int(os.getenv("INFLUX_PORT", "8181"))

        # Database and organization
        self.database: str = os.getenv("INFLUX_DATABASE", "air_quality")
        self.org: str = os.getenv("INFLUX_ORG", "smaa")

        # Measurement (table) written by the upstream aggregator
        self.measurement: str = os.getenv("INFLUX_AGGREGATE_MEASUREMENT", "hourly_aggregates")

        # Token handling: try env var first, then fall back to token.json
        self.token: Optional[str] = self._load_token()

        # Connection URL
        self.url: str = f"http://{self.host}:{self.port}"

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    def _load_token(self) -> Optional[str]:
        """
        Load InfluxDB token from environment variable or token.json file.

        Returns:
            The authentication token, or None when no token is configured
            (the hourly-aggregate source is then disabled)

        Raises:
            ValueError: If token.json exists but cannot be used
        """
        token = os.getenv("INFLUX_TOKEN")
        if token:
            logger.info("Using InfluxDB token from environment variable")
            return token

        token_file = Path(os.getenv("INFLUX_TOKEN_FILE", "config/influxdb3/token.json"))

        if token_file.exists():
            try:
                with open(token_file, 'r') as f:
                    token_data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {token_file}: {e}") from e
            except OSError as e:
                raise ValueError(f"Failed to read token file: {e}") from e

            token = token_data.get("token")
            if not token:
                raise ValueError("Token field not found in token.json")

            logger.info(f"Loaded InfluxDB token from {token_file}")
            return token

        logger.warning(
            "InfluxDB token not found (INFLUX_TOKEN or %s); "
            "hourly aggregates disabled", token_file
        )
        return None

    def __repr__(self) -> str:
        """String representation (hides token)."""
        token_preview = f"{self.token[:10]}..." if self.token else "None"
        return (
            f"InfluxDBConfig(url='{self.url}', database='{self.database}', "
            f"org='{self.org}', measurement='{self.measurement}', "
            f"token='{token_preview}')"
        )


class AppConfig:
    """Application-wide configuration."""

    def __init__(self):
        self.api = ApiConfig()
        self.resolver = ResolverConfig()
        self.reconciler = ReconcilerConfig()
        self.store = StoreConfig()
        self.mqtt = MQTTConfig()
        self.influxdb = InfluxDBConfig()
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")

        # Timezone for displayed timestamps
        self.timezone: str = os.getenv("TZ", "America/Mexico_City")

    def __repr__(self) -> str:
        return (
            f"AppConfig(api={self.api}, resolver={self.resolver}, "
            f"reconciler={self.reconciler}, store={self.store}, "
            f"mqtt={self.mqtt}, influxdb={self.influxdb}, log_level='{self.log_level}')"
        )


# Global config instance (loaded on import)
config = AppConfig()
