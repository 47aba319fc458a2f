import json
import logging
import threading
import ssl
from pathlib import Path
from typing import Optional, Dict
import paho.mqtt.client as mqtt
from libtrack.config import settings
from libtrack.utils.timezone import now_utc

logger = logging.getLogger(__name__)


class MQTTNotifier:
    """Publishes reservation/book change events over MQTT so dashboards can refresh.
    Best-effort: events are dropped while the broker is unreachable."""

    def __init__(self):
        self.client: Optional[mqtt.Client] = None
        self.is_connected = False
        self._lock = threading.Lock()
        self.published = 0
        self.dropped = 0

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when MQTT client connects to broker."""
        if not reason_code.is_failure:
            self.is_connected = True
            logger.info(f"MQTT client connected to {settings.mqtt_broker}:{settings.mqtt_port}")
        else:
            logger.error(f"MQTT connection failed: {reason_code}")
            self.is_connected = False

    def on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback when MQTT client disconnects from broker."""
        self.is_connected = False
        if reason_code.is_failure:
            logger.warning(f"MQTT client disconnected unexpectedly ({reason_code})")
        else:
            logger.info("MQTT client disconnected")

    def publish(self, event: str, payload: Dict):
        """Publish a change event as JSON on the events topic."""
        if not (self.client and self.is_connected):
            self.dropped += 1
            logger.debug(f"MQTT not connected, dropping {event} event")
            return

        message = json.dumps({
            "event": event,
            "data": payload,
            "timestamp": now_utc().isoformat(),
        }, default=str)
        result = self.client.publish(settings.mqtt_events_topic, message, qos=1)
        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            self.published += 1
            logger.debug(f"Published {event} to {settings.mqtt_events_topic}")
        else:
            self.dropped += 1
            logger.warning(f"Failed to publish {event} to {settings.mqtt_events_topic}: rc={result.rc}")

    def _setup_tls(self):
        """Configure TLS/SSL for MQTT client."""
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

        if settings.mqtt_ca_cert:
            ca_cert_path = Path(settings.mqtt_ca_cert)
            if not ca_cert_path.exists():
                raise FileNotFoundError(f"CA certificate file not found: {ca_cert_path}")
            context.load_verify_locations(cafile=str(ca_cert_path))
            logger.info(f"Loaded CA certificate from {ca_cert_path}")
        else:
            context.load_default_certs()

        # Mutual TLS
        if settings.mqtt_client_cert and settings.mqtt_client_key:
            client_cert_path = Path(settings.mqtt_client_cert)
            client_key_path = Path(settings.mqtt_client_key)
            for path in (client_cert_path, client_key_path):
                if not path.exists():
                    raise FileNotFoundError(f"Client certificate/key file not found: {path}")
            context.load_cert_chain(certfile=str(client_cert_path), keyfile=str(client_key_path))

        if settings.mqtt_tls_insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            logger.warning("TLS insecure mode enabled - certificate verification disabled")

        self.client.tls_set_context(context)

    def connect(self):
        """Connect to MQTT broker in the background. No-op unless mqtt_enabled."""
        if not settings.mqtt_enabled:
            logger.info("MQTT notifications disabled")
            return

        try:
            with self._lock:
                if self.client and self.is_connected:
                    return

                client_id = f"libtrack-{threading.current_thread().ident}"
                self.client = mqtt.Client(
                    mqtt.CallbackAPIVersion.VERSION2,
                    client_id=client_id,
                    clean_session=True
                )
                self.client.on_connect = self.on_connect
                self.client.on_disconnect = self.on_disconnect

                if settings.mqtt_use_tls:
                    self._setup_tls()

                if settings.mqtt_username and settings.mqtt_password:
                    self.client.username_pw_set(settings.mqtt_username, settings.mqtt_password)

                protocol = "TLS" if settings.mqtt_use_tls else "TCP"
                logger.info(f"Connecting to MQTT broker at {settings.mqtt_broker}:{settings.mqtt_port} over {protocol}")
                try:
                    self.client.connect(settings.mqtt_broker, settings.mqtt_port, keepalive=60)
                except OSError as conn_error:
                    logger.warning(f"Initial MQTT connection failed: {conn_error}. Retrying in the background.")
                # Network loop runs in its own thread and reconnects automatically
                self.client.loop_start()

        except Exception as e:
            logger.error(f"Error setting up MQTT client: {e}", exc_info=True)
            self.is_connected = False

    def disconnect(self):
        with self._lock:
            if self.client:
                self.client.loop_stop()
                self.client.disconnect()
                self.is_connected = False
                self.client = None

    def is_running(self) -> bool:
        """Check if the notifier is connected."""
        return self.is_connected and self.client is not None

    def status(self) -> Dict:
        return {
            "enabled": settings.mqtt_enabled,
            "connected": self.is_connected,
            "running": self.is_running(),
            "topic": settings.mqtt_events_topic,
            "published": self.published,
            "dropped": self.dropped,
        }


notifier = MQTTNotifier()
