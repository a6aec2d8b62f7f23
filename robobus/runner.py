"""Command-line run loop: connect, listen and publish until signalled."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from . import background
from .errors import BusError, OutOfRange
from .registry import InboundMessage
from .session import Session, TransportFactory
from .settings import SessionConfig
from .state import ConnectionState, ConnectionStatus

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    listen: list[tuple[str, str]] = field(default_factory=list)
    slider: float | None = None
    send_test_topic: str | None = None
    list_topics: bool = False
    once: bool = False


class RunnerState:
    """Mutable state shared between the run loop, callbacks and signal handlers."""

    def __init__(self) -> None:
        self.stop_event = threading.Event()
        self.connected = threading.Event()
        self.failed = False
        self.messages: dict[str, int] = {}


def handle_signal(state: RunnerState, signum: int, frame: Any) -> None:
    """Signal handler to trigger graceful shutdown."""
    logger.info(f"Received signal {signum}, shutting down...")
    state.stop_event.set()


def make_printer(state: RunnerState):
    def on_message(message: InboundMessage) -> None:
        state.messages[message.topic] = state.messages.get(message.topic, 0) + 1
        data = message.data.get('data', message.data) if isinstance(message.data, dict) else message.data
        logger.info(f"[{message.topic}] #{state.messages[message.topic]}: {data}")
    return on_message


def perform_actions(session: Session, options: RunOptions, state: RunnerState, timeout: float = 10.0) -> None:
    """One-shot publishes and queries made once the connection is up."""
    if options.slider is not None:
        try:
            command = session.publish_slider(options.slider)
            logger.info(f"Published motion command: {command.to_payload()}")
        except OutOfRange as e:
            logger.error(f"Slider value rejected: {e}")
            state.failed = True
        except BusError as e:
            logger.error(f"Failed to publish motion command: {e}")
            state.failed = True

    if options.send_test_topic:
        payload = {'data': f"Test message {int(time.time() * 1000)}"}
        try:
            session.publish(options.send_test_topic, 'std_msgs/String', payload)
            logger.info(f"Published test message to {options.send_test_topic}")
        except BusError as e:
            logger.error(f"Failed to publish test message: {e}")
            state.failed = True

    if options.list_topics:
        done = threading.Event()

        def on_topics(topics: list[str], types: list[str]) -> None:
            logger.info(f"Available topics ({len(topics)}):")
            for topic, message_type in zip(topics, types):
                logger.info(f"  {topic} ({message_type})")
            done.set()

        def on_error(error: Any) -> None:
            logger.error(f"Error getting topics: {error}")
            state.failed = True
            done.set()

        try:
            session.get_topics(on_topics, on_error)
        except BusError as e:
            on_error(e)
        if not done.wait(timeout):
            logger.warning(f"No topic list received within {timeout}s")


def run(
    config: SessionConfig,
    options: RunOptions,
    state: RunnerState | None = None,
    transport_factory: TransportFactory | None = None,
) -> int:
    """Connect, subscribe, act, then idle until stopped. Returns an exit code."""
    state = state or RunnerState()
    session = Session(config, transport_factory=transport_factory)

    def on_status(status: ConnectionStatus) -> None:
        logger.info(f"Bus connection: {status}")
        if status.is_connected:
            state.connected.set()
        elif status.state in (ConnectionState.ERRORED, ConnectionState.CLOSED) and not state.stop_event.is_set():
            # No automatic reconnect: leave it to the service manager
            state.failed = True
            state.stop_event.set()

    session.on_state_change(on_status)

    printer = make_printer(state)
    for topic, message_type in list(config.subscriptions) + list(options.listen):
        session.subscribe(topic, message_type, printer)
        logger.info(f"Listening to {topic} ({message_type})")

    session.begin()

    stats_thread = threading.Thread(
        target=background.stats_logging_loop,
        args=(session, state.stop_event, config.stats_interval),
        daemon=True,
        name="Stats-Logger",
    )
    stats_thread.start()

    actions_done = False
    try:
        while not state.stop_event.is_set():
            if state.connected.is_set() and not actions_done:
                actions_done = True
                perform_actions(session, options, state, timeout=config.connect_timeout)
                if options.once:
                    break
            state.stop_event.wait(0.1)
    except KeyboardInterrupt:
        logger.info("Exiting...")
    finally:
        _cleanup(session, state, stats_thread)

    return 1 if state.failed else 0


def _cleanup(session: Session, state: RunnerState, stats_thread: threading.Thread) -> None:
    logger.info("Cleaning up...")
    state.stop_event.set()
    session.shutdown()
    if stats_thread.is_alive():
        stats_thread.join(timeout=5)
    for topic, count in sorted(state.messages.items()):
        logger.info(f"Messages received on {topic}: {count}")
