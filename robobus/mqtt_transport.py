"""MQTT relay transport: bus frames tunnelled through an MQTT broker."""
from __future__ import annotations

import logging
import ssl
from typing import Any
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from .state import ConnectionState, ConnectionStatus
from .transport import BaseTransport, Frame

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {'mqtt': 1883, 'mqtts': 8883}


class MqttTransport(BaseTransport):
    """Concrete transport wrapping paho.mqtt.client.Client.

    Outbound frames are published to request_topic; frames arriving on
    response_topic are delivered as inbound frames. paho's automatic
    reconnect is disabled so a dropped connection ends in ERRORED.
    """

    def __init__(
        self,
        request_topic: str = 'robobus/request',
        response_topic: str = 'robobus/response',
        client_id: str = '',
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        qos: int = 0,
        tls_verify: bool = True,
    ) -> None:
        super().__init__()
        self.request_topic = request_topic
        self.response_topic = response_topic
        self.client_id = client_id
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.qos = qos
        self.tls_verify = tls_verify
        self._client: mqtt.Client | None = None

    def _create_client(self, use_tls: bool) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
            reconnect_on_failure=False,
        )

        if self.username:
            client.username_pw_set(self.username, self.password)

        if use_tls:
            if self.tls_verify:
                client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
                client.tls_insecure_set(False)
            else:
                logger.warning(f"[mqtt] TLS verification disabled for {self.endpoint}")
                client.tls_set(cert_reqs=ssl.CERT_NONE)
                client.tls_insecure_set(True)

        client.on_connect = self.on_mqtt_connect
        client.on_connect_fail = self.on_mqtt_connect_fail
        client.on_disconnect = self.on_mqtt_disconnect
        client.on_message = self.on_mqtt_message
        return client

    def _open(self) -> None:
        url = urlsplit(self.endpoint)
        host = url.hostname
        if not host:
            raise ValueError(f"No host in endpoint {self.endpoint}")
        port = url.port or DEFAULT_PORTS.get(url.scheme, 1883)
        use_tls = url.scheme == 'mqtts'

        self._client = self._create_client(use_tls)
        logger.info(f"[mqtt] Connecting to {host}:{port} (tls={use_tls}, keepalive={self.keepalive}s)")
        self._client.connect_async(host, port, keepalive=self.keepalive)
        self._client.loop_start()

    # ------------------------------------------------------------------
    # MQTT callbacks
    # ------------------------------------------------------------------

    def on_mqtt_connect(self, client: Any, userdata: Any, flags: Any, rc: Any, properties: Any = None) -> None:
        if rc == 0:
            result = client.subscribe(self.response_topic, qos=self.qos)
            if result[0] != mqtt.MQTT_ERR_SUCCESS:
                self._fail(f"subscribe to {self.response_topic} failed: {mqtt.error_string(result[0])}")
                client.loop_stop()
                return
            logger.info(f"[mqtt] Connected to {self.endpoint}, relaying via {self.request_topic} / {self.response_topic}")
            self._set_status(ConnectionStatus(ConnectionState.CONNECTED))
        else:
            self._fail(f"connection refused: {rc}")
            client.loop_stop()

    def on_mqtt_connect_fail(self, client: Any, userdata: Any) -> None:
        self._fail("connect failed")
        client.loop_stop()

    def on_mqtt_disconnect(self, client: Any, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any = None) -> None:
        if self.closing:
            logger.debug(f"[mqtt] Disconnected from {self.endpoint} (shutdown)")
            return
        self._fail(f"disconnected (code: {reason_code})")

    def on_mqtt_message(self, client: Any, userdata: Any, msg: Any) -> None:
        if msg.topic != self.response_topic:
            logger.debug(f"[mqtt] Ignoring message on {msg.topic}")
            return
        try:
            frame = msg.payload.decode('utf-8')
        except UnicodeDecodeError as e:
            logger.warning(f"[mqtt] Dropping undecodable frame on {msg.topic}: {e}")
            return
        self._deliver(frame)

    # ------------------------------------------------------------------
    # Transport hooks
    # ------------------------------------------------------------------

    def _send_frame(self, frame: Frame) -> None:
        client = self._client
        if client is None:
            raise OSError("client not started")
        result = client.publish(self.request_topic, frame, qos=self.qos)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            raise OSError(f"publish failed: {mqtt.error_string(result.rc)}")

    def _release(self) -> None:
        client = self._client
        if client is None:
            return
        client.disconnect()
        # paho skips the join when called from its own loop thread
        client.loop_stop()
