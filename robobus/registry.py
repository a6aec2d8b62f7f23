"""Topic registry: subscriptions, publishers and inbound routing for one session."""
from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from typing import Any, Callable, NamedTuple

from . import codec as ops
from .codec import DecodedFrame, FrameCodec
from .errors import CodecError, NotConnected, SessionStopped
from .settings import OutboundPolicy
from .state import ConnectionState, ConnectionStatus
from .topics import validate_topic
from .transport import Frame, Transport

logger = logging.getLogger(__name__)


class InboundMessage(NamedTuple):
    topic: str
    message_type: str
    data: Any


Sink = Callable[[InboundMessage], None]
ServiceCallback = Callable[[Any], None]


class Subscription:
    """A consumer's interest in one topic.

    Returned by TopicRegistry.subscribe(); the consumer owns it and ends it
    with unsubscribe(). Once unsubscribed the sink is never called again.
    """

    def __init__(self, sub_id: int, topic: str, message_type: str, sink: Sink,
                 registry: TopicRegistry) -> None:
        self.id = sub_id
        self.topic = topic
        self.message_type = message_type
        self.sink = sink
        self._registry = registry
        self._live = True

    @property
    def live(self) -> bool:
        return self._live

    def unsubscribe(self) -> bool:
        return self._registry.unsubscribe(self)

    def __repr__(self) -> str:
        state = 'live' if self._live else 'cancelled'
        return f"<Subscription #{self.id} {self.topic} ({self.message_type}) {state}>"


class Publisher:
    """Publishing capability bound to one topic; holds no buffered state."""

    def __init__(self, registry: TopicRegistry, topic: str, message_type: str) -> None:
        self._registry = registry
        self.topic = topic
        self.message_type = message_type

    def publish(self, payload: Any) -> bool:
        return self._registry.publish(self.topic, self.message_type, payload)

    def __repr__(self) -> str:
        return f"<Publisher {self.topic} ({self.message_type})>"


class PendingCall(NamedTuple):
    service: str
    callback: ServiceCallback
    errback: ServiceCallback | None


class TopicRegistry:
    """Tracks subscriptions and publishers by topic and routes inbound frames.

    One re-entrant lock serializes subscribe, unsubscribe, publish, routing
    and the replay of deferred subscribes. Sinks run while that lock is held,
    which is what guarantees no delivery after unsubscribe() returns; a sink
    may itself subscribe, unsubscribe or publish. The transport's own send
    lock is always taken inside this one, never the other way round.
    """

    def __init__(
        self,
        codec: FrameCodec,
        outbound_policy: OutboundPolicy = OutboundPolicy.REJECT,
        max_buffered: int = 100,
    ) -> None:
        self.codec = codec
        self.outbound_policy = outbound_policy
        self._lock = threading.RLock()
        self._transport: Transport | None = None
        self._detach: list[Callable[[], None]] = []
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._wire_ids: dict[str, str] = {}
        self._advertised: dict[str, str] = {}
        self._pending_calls: dict[str, PendingCall] = {}
        self._outbox: deque[tuple[str, str, Any]] = deque(maxlen=max_buffered)
        self._ids = itertools.count(1)
        self._closed = False

        self.stats: dict[str, int] = {
            'frames_rx': 0,
            'frames_tx': 0,
            'messages_delivered': 0,
            'dropped_frames': 0,
            'sink_errors': 0,
            'publish_failures': 0,
            'buffered': 0,
        }

    # ------------------------------------------------------------------
    # Connection binding
    # ------------------------------------------------------------------

    def attach(self, transport: Transport) -> None:
        """Route through transport from now on, replacing any previous one."""
        with self._lock:
            if self._closed:
                raise SessionStopped("Registry is shut down")
            for detach in self._detach:
                detach()
            self._transport = transport
            self._wire_ids.clear()
            self._advertised.clear()
            self._detach = [
                transport.on_state_change(lambda status: self._on_state_change(transport, status)),
                transport.on_message(lambda frame: self._on_frame(transport, frame)),
            ]
            status = transport.status
        if status.is_connected:
            self._on_state_change(transport, status)

    def _connected_transport(self) -> Transport | None:
        transport = self._transport
        if transport is not None and transport.state is ConnectionState.CONNECTED:
            return transport
        return None

    def _on_state_change(self, transport: Transport, status: ConnectionStatus) -> None:
        with self._lock:
            if self._closed or transport is not self._transport:
                return
            if status.is_connected:
                self._replay_subscriptions(transport)
                self._flush_outbox(transport)
                return

            if self._wire_ids:
                logger.debug(f"[registry] Connection {status}; {len(self._wire_ids)} topic(s) await resubscribe")
            self._wire_ids.clear()
            self._advertised.clear()
            if status.state in (ConnectionState.ERRORED, ConnectionState.CLOSED):
                self._fail_pending_calls("connection lost")

    def _replay_subscriptions(self, transport: Transport) -> None:
        for topic, subs in list(self._subscriptions.items()):
            if subs and topic not in self._wire_ids:
                if not self._send_subscribe(transport, topic, subs[0].message_type):
                    return
                logger.info(f"[registry] Subscribed to {topic} ({len(subs)} sink(s))")

    def _send_subscribe(self, transport: Transport, topic: str, message_type: str) -> bool:
        wire_id = f"subscribe:{topic}:{next(self._ids)}"
        try:
            transport.send(self.codec.encode_subscribe(topic, message_type, wire_id))
        except NotConnected as e:
            logger.debug(f"[registry] Deferring subscribe to {topic}: {e}")
            return False
        self._wire_ids[topic] = wire_id
        self.stats['frames_tx'] += 1
        return True

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, topic: str, message_type: str, sink: Sink) -> Subscription:
        """Register sink for topic.

        Allowed in any connection state: the wire-level subscribe is sent now
        if connected, otherwise when the connection next becomes CONNECTED.
        """
        validate_topic(topic)
        if not callable(sink):
            raise TypeError(f"sink must be callable, got {type(sink).__name__}")

        with self._lock:
            if self._closed:
                raise SessionStopped(f"Cannot subscribe to {topic}: registry is shut down")
            sub = Subscription(next(self._ids), topic, message_type, sink, self)
            subs = self._subscriptions.setdefault(topic, [])
            if subs and subs[0].message_type != message_type:
                logger.warning(
                    f"[registry] {topic} subscribed as {message_type} but already active as "
                    f"{subs[0].message_type}; keeping {subs[0].message_type}"
                )
            subs.append(sub)
            logger.debug(f"[registry] Added {sub}")

            transport = self._connected_transport()
            if transport is not None and topic not in self._wire_ids:
                self._send_subscribe(transport, topic, subs[0].message_type)
        return sub

    def unsubscribe(self, handle: Subscription) -> bool:
        """Cancel a subscription. Unknown or already cancelled handles are a no-op.

        Returns True only when this call cancelled the subscription.
        """
        if not isinstance(handle, Subscription):
            return False

        with self._lock:
            subs = self._subscriptions.get(handle.topic)
            if not handle._live or subs is None or not any(s is handle for s in subs):
                return False
            handle._live = False
            subs.remove(handle)
            logger.debug(f"[registry] Removed {handle}")

            if not subs:
                del self._subscriptions[handle.topic]
                wire_id = self._wire_ids.pop(handle.topic, None)
                transport = self._connected_transport()
                if wire_id and transport is not None:
                    try:
                        transport.send(self.codec.encode_unsubscribe(handle.topic, wire_id))
                        self.stats['frames_tx'] += 1
                        logger.info(f"[registry] Unsubscribed from {handle.topic}")
                    except NotConnected as e:
                        logger.debug(f"[registry] Unsubscribe from {handle.topic} not sent: {e}")
        return True

    def live_subscriptions(self, topic: str | None = None) -> list[Subscription]:
        with self._lock:
            if topic is not None:
                return list(self._subscriptions.get(topic, []))
            return [s for subs in self._subscriptions.values() for s in subs]

    @property
    def active_topics(self) -> set[str]:
        """Topics with a broker-side subscription on the current connection."""
        with self._lock:
            return set(self._wire_ids)

    # ------------------------------------------------------------------
    # Inbound routing
    # ------------------------------------------------------------------

    def _on_frame(self, transport: Transport, frame: Frame) -> None:
        if transport is self._transport:
            self.route_inbound(frame)

    def route_inbound(self, frame: Frame) -> None:
        """Decode one frame and deliver it synchronously to every live sink."""
        with self._lock:
            if self._closed:
                return
            self.stats['frames_rx'] += 1
            try:
                decoded = self.codec.decode(frame)
            except CodecError as e:
                self.stats['dropped_frames'] += 1
                logger.warning(f"[registry] Dropping malformed frame: {e}")
                return

            if decoded.op == ops.OP_PUBLISH:
                self._fan_out(decoded)
            elif decoded.op == ops.OP_SERVICE_RESPONSE:
                self._complete_call(decoded)
            elif decoded.op == ops.OP_STATUS:
                payload = decoded.payload or {}
                logger.info(f"[registry] Broker status ({payload.get('level')}): {payload.get('msg')}")
            else:
                logger.debug(f"[registry] Ignoring {decoded.op} frame")

    def _fan_out(self, decoded: DecodedFrame) -> None:
        subs = self._subscriptions.get(decoded.topic)
        if not subs:
            logger.debug(f"[registry] No subscribers for {decoded.topic}")
            return

        message = InboundMessage(decoded.topic, decoded.message_type or subs[0].message_type, decoded.payload)
        # Snapshot: a sink may unsubscribe itself or others mid fan-out
        for sub in list(subs):
            if not sub._live:
                continue
            try:
                sub.sink(message)
                self.stats['messages_delivered'] += 1
            except Exception:
                self.stats['sink_errors'] += 1
                logger.exception(f"[registry] Sink for {sub} failed")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publisher(self, topic: str, message_type: str) -> Publisher:
        validate_topic(topic)
        return Publisher(self, topic, message_type)

    def publish(self, topic: str, message_type: str, payload: Any) -> bool:
        """Send payload on topic now.

        Not connected: REJECT raises NotConnected, DROP returns False, BUFFER
        queues the payload for the next CONNECTED transition and returns False.
        """
        validate_topic(topic)
        with self._lock:
            if self._closed:
                raise SessionStopped(f"Cannot publish to {topic}: registry is shut down")
            frame = self.codec.encode_publish(topic, message_type, payload)
            transport = self._connected_transport()
            if transport is None:
                return self._publish_not_connected(topic, message_type, payload)
            try:
                self._ensure_advertised(transport, topic, message_type)
                transport.send(frame)
            except NotConnected:
                return self._publish_not_connected(topic, message_type, payload)
            self.stats['frames_tx'] += 1
            logger.debug(f"[registry] Published to {topic}")
            return True

    def _ensure_advertised(self, transport: Transport, topic: str, message_type: str) -> None:
        """Send an advertise frame before the first publish on topic (caller holds the lock)."""
        if topic in self._advertised:
            return
        transport.send(self.codec.encode_advertise(topic, message_type, f"advertise:{topic}"))
        self._advertised[topic] = message_type
        self.stats['frames_tx'] += 1
        logger.debug(f"[registry] Advertised {topic} ({message_type})")

    def _publish_not_connected(self, topic: str, message_type: str, payload: Any) -> bool:
        transport = self._transport
        state = transport.state if transport is not None else ConnectionState.DISCONNECTED

        if self.outbound_policy is OutboundPolicy.BUFFER:
            if len(self._outbox) == self._outbox.maxlen:
                dropped = self._outbox[0]
                self.stats['publish_failures'] += 1
                logger.warning(f"[registry] Outbound buffer full, dropping oldest message for {dropped[0]}")
            self._outbox.append((topic, message_type, payload))
            self.stats['buffered'] += 1
            logger.debug(f"[registry] Buffered publish to {topic} ({len(self._outbox)} queued)")
            return False

        self.stats['publish_failures'] += 1
        if self.outbound_policy is OutboundPolicy.DROP:
            logger.warning(f"Not connected - skipping publish to {topic}")
            return False
        raise NotConnected(f"Cannot publish to {topic}: connection is {state.value}", state)

    def _flush_outbox(self, transport: Transport) -> None:
        with self._lock:
            if not self._outbox:
                return
            sent = 0
            while self._outbox:
                topic, message_type, payload = self._outbox[0]
                try:
                    self._ensure_advertised(transport, topic, message_type)
                    transport.send(self.codec.encode_publish(topic, message_type, payload))
                except NotConnected as e:
                    logger.warning(f"[registry] Outbound flush interrupted, {len(self._outbox)} message(s) kept: {e}")
                    break
                except CodecError as e:
                    logger.error(f"[registry] Discarding unencodable buffered message for {topic}: {e}")
                    self.stats['publish_failures'] += 1
                else:
                    self.stats['frames_tx'] += 1
                    sent += 1
                self._outbox.popleft()
            logger.info(f"[registry] Flushed {sent} buffered message(s)")

    @property
    def buffered_count(self) -> int:
        return len(self._outbox)

    # ------------------------------------------------------------------
    # Service calls
    # ------------------------------------------------------------------

    def call_service(
        self,
        service: str,
        args: dict[str, Any] | None,
        callback: ServiceCallback,
        errback: ServiceCallback | None = None,
    ) -> str:
        """Send a service request; callback gets the response values.

        Service calls are never buffered: NotConnected is raised when the
        connection is not CONNECTED, whatever the outbound policy.
        """
        with self._lock:
            if self._closed:
                raise SessionStopped(f"Cannot call {service}: registry is shut down")
            transport = self._connected_transport()
            if transport is None:
                state = self._transport.state if self._transport else ConnectionState.DISCONNECTED
                raise NotConnected(f"Cannot call {service}: connection is {state.value}", state)
            call_id = f"call_service:{service}:{next(self._ids)}"
            self._pending_calls[call_id] = PendingCall(service, callback, errback)
            try:
                transport.send(self.codec.encode_call_service(service, args or {}, call_id))
            except (NotConnected, CodecError):
                del self._pending_calls[call_id]
                raise
            self.stats['frames_tx'] += 1
            logger.debug(f"[registry] Called {service} ({call_id})")
            return call_id

    def _complete_call(self, decoded: DecodedFrame) -> None:
        call = self._pending_calls.pop(decoded.id, None)
        if call is None:
            logger.debug(f"[registry] Response for unknown call {decoded.id}")
            return
        try:
            if decoded.result is False:
                if call.errback is not None:
                    call.errback(decoded.payload)
                else:
                    logger.warning(f"[registry] Service {call.service} failed: {decoded.payload}")
            else:
                call.callback(decoded.payload)
        except Exception:
            logger.exception(f"[registry] Callback for {call.service} failed")

    def _fail_pending_calls(self, reason: str) -> None:
        pending = list(self._pending_calls.values())
        self._pending_calls.clear()
        for call in pending:
            if call.errback is None:
                logger.warning(f"[registry] Service call {call.service} abandoned: {reason}")
                continue
            try:
                call.errback(reason)
            except Exception:
                logger.exception(f"[registry] Errback for {call.service} failed")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> bool:
        """Cancel every subscription and detach from the transport.

        Waits for any in-progress routing to finish. Sends unsubscribe and
        unadvertise frames first if the connection is still up. Returns False
        if already closed.
        """
        with self._lock:
            if self._closed:
                return False
            transport = self._connected_transport()
            self._closed = True

            cancelled = 0
            for subs in self._subscriptions.values():
                for sub in subs:
                    sub._live = False
                    cancelled += 1
            self._subscriptions.clear()
            wire_ids = dict(self._wire_ids)
            self._wire_ids.clear()

            advertised = list(self._advertised)
            self._advertised.clear()
            if self._outbox:
                logger.warning(f"[registry] Discarding {len(self._outbox)} buffered message(s)")
                self._outbox.clear()

            if transport is not None:
                try:
                    for topic, wire_id in wire_ids.items():
                        transport.send(self.codec.encode_unsubscribe(topic, wire_id))
                    for topic in advertised:
                        transport.send(self.codec.encode_unadvertise(topic, f"advertise:{topic}"))
                except NotConnected as e:
                    logger.debug(f"[registry] Skipping remaining teardown frames: {e}")

            self._fail_pending_calls("session shut down")
            for detach in self._detach:
                detach()
            self._detach = []
            self._transport = None

        logger.debug(f"[registry] Closed ({cancelled} subscription(s) cancelled)")
        return True
