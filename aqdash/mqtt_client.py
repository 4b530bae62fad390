"""
MQTT client for live sensor readings.
Subscribes to the device telemetry topic, validates JSON payloads, and
forwards parsed SensorReading objects via callback. This is the push
counterpart of polling the sensor API.
"""
import json
import logging
from typing import Callable

import paho.mqtt.client as mqtt

from aqdash.config import MQTTConfig
from aqdash.errors import ParseError
from aqdash.models import SensorReading
from aqdash.parsing import parse_reading


logger = logging.getLogger(__name__)


class MQTTClient:
    """
    MQTT client that subscribes to device telemetry, parses JSON payloads,
    and invokes a callback with validated SensorReading objects.
    """

    def __init__(
        self,
        config: MQTTConfig,
        on_reading_received: Callable[[SensorReading], None],
    ):
        """
        Initialize the MQTT client.

        Args:
            config: MQTT connection configuration
            on_reading_received: Callback invoked with each parsed SensorReading
        """
        self.config = config
        self.on_reading_received = on_reading_received

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        # Optional authentication
        if config.username and config.password:
            self.client.username_pw_set(config.username, config.password)
            logger.info("MQTT authentication configured")

        self._is_connected = False

    def connect(self) -> None:
        """
        Connect to the MQTT broker.

        Raises:
            ConnectionError: If connection fails
        """
        try:
            logger.info(f"Connecting to MQTT broker at {self.config.host}:{self.config.port}")
            self.client.connect(
                host=self.config.host,
                port=self.config.port,
                keepalive=self.config.keepalive,
            )
            logger.info("MQTT connection initiated")
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            raise ConnectionError(f"MQTT connection failed: {e}") from e

    def start(self) -> None:
        """
        Start the MQTT client loop in a background thread.
        Non-blocking call.
        """
        logger.info("Starting MQTT client loop")
        self.client.loop_start()

    def stop(self) -> None:
        """
        Stop the MQTT client loop and disconnect gracefully.
        """
        logger.info("Stopping MQTT client")
        self.client.loop_stop()
        self.client.disconnect()
        self._is_connected = False
        logger.info("MQTT client stopped")

    def is_connected(self) -> bool:
        """Check if the client is currently connected to the broker."""
        return self._is_connected

    # -------------------------------------------------------------------------
    # Paho MQTT Callbacks
    # -------------------------------------------------------------------------

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties) -> None:
        """
        Callback invoked when the client connects to the broker.
        Subscribes to the telemetry topic on success.
        """
        if reason_code.is_failure:
            logger.error(f"MQTT connection failed: {reason_code}")
            self._is_connected = False
            return

        logger.info("Connected to MQTT broker successfully")
        self._is_connected = True

        result, _mid = client.subscribe(self.config.topic, qos=self.config.qos)
        if result == mqtt.MQTT_ERR_SUCCESS:
            logger.info(f"Subscribed to topic: {self.config.topic} (QoS={self.config.qos})")
        else:
            logger.error(f"Failed to subscribe to topic: {self.config.topic}")

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties) -> None:
        """Callback invoked when the client disconnects from the broker."""
        self._is_connected = False

        if reason_code.is_failure:
            logger.warning(f"Unexpected disconnection from MQTT broker ({reason_code})")
        else:
            logger.info("Disconnected from MQTT broker cleanly")

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage) -> None:
        """
        Callback invoked when a message is received on a subscribed topic.
        Parses the JSON payload and forwards it to the registered callback.
        """
        try:
            logger.debug(f"Received message on topic {msg.topic}")

            payload = self._parse_json(msg.payload)
            reading = parse_reading(payload)

            self.on_reading_received(reading)

            logger.debug(f"Successfully processed message: {reading}")

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in MQTT message: {e}")
            logger.debug(f"Raw payload: {msg.payload}")

        except (ParseError, TypeError, ValueError) as e:
            logger.error(f"Failed to parse sensor reading: {e}")
            logger.debug(f"Payload: {msg.payload}")

        except Exception as e:
            logger.exception(f"Unexpected error processing MQTT message: {e}")

    # -------------------------------------------------------------------------
    # JSON Parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_json(payload: bytes) -> dict:
        """
        Parse JSON payload from MQTT message.

        Raises:
            json.JSONDecodeError: If payload is not valid JSON
        """
        return json.loads(payload.decode("utf-8"))
