"""Typed view of the TOML configuration used to start a session."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from .errors import ConfigError
from .topics import resolve_topic_template, validate_topic

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ('ws', 'wss', 'mqtt', 'mqtts')


class OutboundPolicy(enum.Enum):
    """What publish() does while the connection is not CONNECTED."""

    REJECT = 'reject'
    DROP = 'drop'
    BUFFER = 'buffer'


@dataclass
class MqttSettings:
    request_topic: str = 'robobus/request'
    response_topic: str = 'robobus/response'
    client_id: str = ''
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    qos: int = 0
    tls_verify: bool = True


@dataclass
class CommandSettings:
    """Slider-to-actuator mapping for the motion command publisher."""

    actuator_id: int = 13
    scale_factor: float = 10.0
    duration_ms: int = 1000
    min_value: float = 0.0
    max_value: float = 100.0
    topic: str = 'motion/command'
    message_type: str = 'ainex_interfaces/MotionCommand'


@dataclass
class SessionConfig:
    endpoint: str
    connect_timeout: float = 10.0
    close_timeout: float = 5.0
    outbound_policy: OutboundPolicy = OutboundPolicy.REJECT
    max_buffered: int = 100
    namespace: str = ''
    log_level: str = 'INFO'
    stats_interval: int = 300
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    command: CommandSettings = field(default_factory=CommandSettings)
    subscriptions: list[tuple[str, str]] = field(default_factory=list)

    @property
    def scheme(self) -> str:
        return urlsplit(self.endpoint).scheme.lower()

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> SessionConfig:
        """Build settings from a merged TOML config dict."""
        general = config.get('general', {})
        conn = config.get('connection', {})
        mqtt_cfg = conn.get('mqtt', {})
        command_cfg = config.get('command', {})
        namespace = config.get('topics', {}).get('namespace', '')

        endpoint = conn.get('endpoint', '')
        validate_endpoint(endpoint)

        policy_name = str(conn.get('outbound_policy', 'reject')).lower()
        try:
            policy = OutboundPolicy(policy_name)
        except ValueError:
            raise ConfigError(f"Unknown outbound_policy: {policy_name!r}") from None

        max_buffered = _positive_int(conn.get('max_buffered', 100), 'connection.max_buffered')

        command = CommandSettings(
            actuator_id=int(command_cfg.get('actuator_id', 13)),
            scale_factor=float(command_cfg.get('scale_factor', 10.0)),
            duration_ms=int(command_cfg.get('duration_ms', 1000)),
            min_value=float(command_cfg.get('min_value', 0.0)),
            max_value=float(command_cfg.get('max_value', 100.0)),
            topic=_topic(command_cfg.get('topic', 'motion/command'), namespace),
            message_type=command_cfg.get('message_type', 'ainex_interfaces/MotionCommand'),
        )
        if command.min_value > command.max_value:
            raise ConfigError(f"command.min_value {command.min_value} exceeds max_value {command.max_value}")
        if command.duration_ms < 0:
            raise ConfigError(f"command.duration_ms must not be negative: {command.duration_ms}")

        mqtt = MqttSettings(
            request_topic=mqtt_cfg.get('request_topic', 'robobus/request'),
            response_topic=mqtt_cfg.get('response_topic', 'robobus/response'),
            client_id=mqtt_cfg.get('client_id', ''),
            username=mqtt_cfg.get('username') or None,
            password=mqtt_cfg.get('password') or None,
            keepalive=_positive_int(mqtt_cfg.get('keepalive', 60), 'connection.mqtt.keepalive'),
            qos=int(mqtt_cfg.get('qos', 0)),
            tls_verify=bool(mqtt_cfg.get('tls_verify', True)),
        )

        subscriptions: list[tuple[str, str]] = []
        for entry in config.get('subscription', []):
            if not entry.get('enabled', True):
                logger.debug(f"Subscription {entry.get('topic')} disabled, skipping")
                continue
            topic = _topic(entry.get('topic', ''), namespace)
            subscriptions.append((topic, entry.get('type', 'std_msgs/String')))

        return cls(
            endpoint=endpoint,
            connect_timeout=float(conn.get('connect_timeout', 10.0)),
            close_timeout=float(conn.get('close_timeout', 5.0)),
            outbound_policy=policy,
            max_buffered=max_buffered,
            namespace=namespace,
            log_level=str(general.get('log_level', 'INFO')).upper(),
            stats_interval=_positive_int(general.get('stats_interval', 300), 'general.stats_interval'),
            mqtt=mqtt,
            command=command,
            subscriptions=subscriptions,
        )


def validate_endpoint(endpoint: str) -> str:
    """Check that endpoint is a ws/wss/mqtt/mqtts URL with a host."""
    if not endpoint:
        raise ConfigError("No connection endpoint configured")
    url = urlsplit(endpoint)
    if url.scheme.lower() not in SUPPORTED_SCHEMES:
        raise ConfigError(f"Unsupported endpoint scheme {url.scheme!r} in {endpoint} (expected one of {', '.join(SUPPORTED_SCHEMES)})")
    if not url.hostname:
        raise ConfigError(f"No host in endpoint {endpoint}")
    return endpoint


def _topic(template: str, namespace: str) -> str:
    try:
        return validate_topic(resolve_topic_template(template, namespace))
    except ValueError as e:
        raise ConfigError(str(e)) from None


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number
