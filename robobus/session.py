"""Session facade: one connection plus its topic registry behind a single entry point."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from .codec import FrameCodec, RosbridgeCodec
from .commands import CommandEncoder, OutboundCommand
from .errors import BusError, SessionStopped
from .mqtt_transport import MqttTransport
from .registry import Publisher, ServiceCallback, Sink, Subscription, TopicRegistry
from .settings import SessionConfig, validate_endpoint
from .state import DISCONNECTED, ConnectionState, ConnectionStatus, SessionPhase, phase_for
from .topics import sanitize_client_id
from .transport import Transport
from .ws_transport import WebSocketTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SessionConfig], Transport]
StatusListener = Callable[[ConnectionStatus], None]

TOPICS_SERVICE = '/rosapi/topics'


def create_transport(config: SessionConfig) -> Transport:
    """Pick a transport implementation from the endpoint scheme."""
    validate_endpoint(config.endpoint)
    if config.scheme in ('ws', 'wss'):
        return WebSocketTransport(open_timeout=config.connect_timeout, close_timeout=config.close_timeout)

    mqtt = config.mqtt
    client_id = mqtt.client_id or sanitize_client_id(f"{int(time.time())}")
    return MqttTransport(
        request_topic=mqtt.request_topic,
        response_topic=mqtt.response_topic,
        client_id=client_id,
        username=mqtt.username,
        password=mqtt.password,
        keepalive=mqtt.keepalive,
        qos=mqtt.qos,
        tls_verify=mqtt.tls_verify,
    )


class Session:
    """The surface handed to consumers.

    Consumers read connection_state(), subscribe and unsubscribe whenever
    their own lifecycle dictates, and publish once connected. The session
    never reconnects on its own: after an error it stays DEGRADED until
    restart() or shutdown().
    """

    def __init__(
        self,
        config: SessionConfig,
        codec: FrameCodec | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.config = config
        self.codec = codec or RosbridgeCodec()
        self.registry = TopicRegistry(
            self.codec,
            outbound_policy=config.outbound_policy,
            max_buffered=config.max_buffered,
        )
        self.commands = CommandEncoder(config.command)
        self.start_time = time.time()
        self._transport_factory = transport_factory or create_transport
        self._transport: Transport | None = None
        self._phase = SessionPhase.IDLE
        self._lifecycle_lock = threading.RLock()
        # Guards _phase and _transport against transport callbacks; never held while calling out
        self._phase_lock = threading.Lock()
        self._listeners: list[StatusListener] = []
        self._listeners_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin(self, transport: Transport | None = None) -> Session:
        """Issue the first connect. Returns immediately in STARTING."""
        with self._lifecycle_lock:
            if self._phase is not SessionPhase.IDLE:
                raise BusError(f"Session already started ({self._phase.value})")
            self._connect(transport)
        return self

    def _connect(self, transport: Transport | None = None) -> None:
        transport = transport or self._transport_factory(self.config)
        with self._phase_lock:
            self._transport = transport
            self._phase = SessionPhase.STARTING
        # Registry listens first so deferred subscribes are on the wire before consumers hear LIVE
        self.registry.attach(transport)
        transport.on_state_change(lambda status: self._on_transport_state(transport, status))
        logger.info(f"[session] Connecting to {self.config.endpoint}")
        transport.connect(self.config.endpoint)

    def restart(self) -> Session:
        """Replace the connection with a fresh one, keeping every live subscription."""
        with self._lifecycle_lock:
            with self._phase_lock:
                if self._phase is SessionPhase.STOPPED:
                    raise SessionStopped("Cannot restart a stopped session")
                old = self._transport
                self._transport = None
            if old is not None:
                logger.info(f"[session] Restarting connection to {self.config.endpoint} (was {old.status})")
                old.close()
            self._connect()
        return self

    def shutdown(self) -> bool:
        """Cancel every subscription and close the connection.

        Waits for in-progress routing before closing. A second call does
        nothing and returns False.
        """
        with self._lifecycle_lock:
            with self._phase_lock:
                if self._phase is SessionPhase.STOPPED:
                    return False
                self._phase = SessionPhase.STOPPED
                transport = self._transport
            self.registry.close()
            if transport is not None:
                transport.close()
        logger.info("[session] Shut down")
        self._notify(transport.status if transport is not None else ConnectionStatus(ConnectionState.CLOSED))
        return True

    def _on_transport_state(self, transport: Transport, status: ConnectionStatus) -> None:
        with self._phase_lock:
            if transport is not self._transport or self._phase is SessionPhase.STOPPED:
                return
            previous = self._phase
            self._phase = phase = phase_for(status)

        if status.state is ConnectionState.CONNECTED:
            logger.info(f"[session] Connected to {self.config.endpoint}")
        elif status.state is ConnectionState.ERRORED:
            logger.error(f"[session] Connection errored: {status.detail}")
        elif status.state is ConnectionState.CLOSED:
            logger.warning(f"[session] Connection closed: {status.detail or 'no detail'}")

        if previous is not phase:
            logger.debug(f"[session] {previous.value} -> {phase.value}")
        self._notify(status)

    def _notify(self, status: ConnectionStatus) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("[session] State listener failed")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def transport(self) -> Transport | None:
        return self._transport

    def connection_status(self) -> ConnectionStatus:
        transport = self._transport
        if transport is None:
            if self._phase is SessionPhase.STOPPED:
                return ConnectionStatus(ConnectionState.CLOSED)
            return DISCONNECTED
        return transport.status

    def connection_state(self) -> ConnectionState:
        return self.connection_status().state

    def on_state_change(self, listener: StatusListener) -> Callable[[], None]:
        """Register listener for connection status changes; returns a remover."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return remove

    @property
    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = dict(self.registry.stats)
        stats['start_time'] = self.start_time
        stats['subscriptions'] = len(self.registry.live_subscriptions())
        stats['connection'] = str(self.connection_status())
        return stats

    # ------------------------------------------------------------------
    # Topic operations
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, message_type: str, sink: Sink) -> Subscription:
        return self.registry.subscribe(topic, message_type, sink)

    def unsubscribe(self, handle: Subscription) -> bool:
        """Cancel handle. Handles from other or stopped sessions are ignored."""
        return self.registry.unsubscribe(handle)

    def publisher(self, topic: str, message_type: str) -> Publisher:
        return self.registry.publisher(topic, message_type)

    def publish(self, topic: str, message_type: str, payload: Any) -> bool:
        """Publish now; raises NotConnected unless CONNECTED (default policy)."""
        return self.registry.publish(topic, message_type, payload)

    def publish_command(self, command: OutboundCommand, topic: str | None = None,
                        message_type: str | None = None) -> bool:
        return self.registry.publish(
            topic or self.commands.topic,
            message_type or self.commands.message_type,
            command.to_payload(),
        )

    def publish_slider(self, raw_value: float) -> OutboundCommand:
        """Encode a slider position with the configured mapping and publish it."""
        command = self.commands.encode(raw_value)
        self.publish_command(command)
        logger.debug(f"[session] Published motion command: {command.to_payload()}")
        return command

    def call_service(
        self,
        service: str,
        args: dict[str, Any] | None = None,
        callback: ServiceCallback | None = None,
        errback: ServiceCallback | None = None,
    ) -> str:
        return self.registry.call_service(service, args, callback or (lambda values: None), errback)

    def get_topics(
        self,
        callback: Callable[[list[str], list[str]], None],
        errback: ServiceCallback | None = None,
    ) -> str:
        """Ask the broker for its topic list; callback gets (topics, types)."""
        def on_values(values: Any) -> None:
            values = values or {}
            callback(list(values.get('topics', [])), list(values.get('types', [])))

        return self.call_service(TOPICS_SERVICE, {}, on_values, errback)


def start(
    config: SessionConfig | dict[str, Any],
    transport: Transport | None = None,
    codec: FrameCodec | None = None,
    transport_factory: TransportFactory | None = None,
) -> Session:
    """Create a session and begin connecting. Returns immediately.

    transport is used for the first connection; transport_factory (default:
    chosen by endpoint scheme) builds the connections made by restart().
    """
    if isinstance(config, dict):
        config = SessionConfig.from_dict(config)
    session = Session(config, codec=codec, transport_factory=transport_factory)
    return session.begin(transport)
