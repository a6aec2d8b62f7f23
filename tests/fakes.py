"""Shared fake implementations for robobus tests."""
from __future__ import annotations

import json
from typing import Any

from robobus.session import Session
from robobus.settings import SessionConfig
from robobus.state import ConnectionState, ConnectionStatus
from robobus.transport import BaseTransport, Frame


class FakeTransport(BaseTransport):
    """In-memory transport driven by the test.

    Records every frame sent. The test moves it through the connection
    states with accept(), fail() and remote_close(), and injects inbound
    frames with feed().
    """

    def __init__(self, *, auto_connect: bool = False, open_error: Exception | None = None) -> None:
        super().__init__()
        self.sent: list[Frame] = []
        self.auto_connect = auto_connect
        self.open_error = open_error
        self.fail_sends: Exception | None = None
        self.released = 0

    def _open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        if self.auto_connect:
            self.accept()

    def _send_frame(self, frame: Frame) -> None:
        if self.fail_sends is not None:
            raise self.fail_sends
        self.sent.append(frame)

    def _release(self) -> None:
        self.released += 1

    # Test controls

    def accept(self) -> None:
        self._set_status(ConnectionStatus(ConnectionState.CONNECTED))

    def fail(self, detail: str = "boom") -> None:
        self._fail(detail)

    def remote_close(self, detail: str = "closed by server") -> None:
        self._set_status(ConnectionStatus(ConnectionState.CLOSED, detail))

    def feed(self, frame: Frame | dict[str, Any]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._deliver(frame)

    def sent_messages(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def sent_ops(self, op: str) -> list[dict[str, Any]]:
        return [m for m in self.sent_messages() if m.get('op') == op]


def publish_frame(topic: str, msg: Any) -> dict[str, Any]:
    return {'op': 'publish', 'topic': topic, 'msg': msg}


def make_config(**overrides: Any) -> dict[str, Any]:
    """Factory for minimal valid TOML config dict."""
    config: dict[str, Any] = {
        'general': {'log_level': 'INFO', 'stats_interval': 300},
        'connection': {
            'endpoint': 'ws://localhost:9090',
            'connect_timeout': 10,
            'close_timeout': 5,
            'outbound_policy': 'reject',
            'max_buffered': 100,
        },
        'command': {
            'actuator_id': 13,
            'scale_factor': 10.0,
            'duration_ms': 1000,
            'topic': 'motion/command',
            'message_type': 'ainex_interfaces/MotionCommand',
        },
        'topics': {'namespace': ''},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and key in config and isinstance(config[key], dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def make_test_session(
    *,
    config: dict[str, Any] | None = None,
    transports: list[FakeTransport] | None = None,
    **overrides: Any,
) -> tuple[Session, list[FakeTransport]]:
    """Session whose transport factory hands out FakeTransports.

    Returns the session and the list of transports created so far; restart()
    appends to it. Pre-built transports in transports are handed out first.
    """
    settings = SessionConfig.from_dict(config or make_config(**overrides))
    queued = list(transports or [])
    created: list[FakeTransport] = []

    def factory(_config: SessionConfig) -> FakeTransport:
        transport = queued.pop(0) if queued else FakeTransport()
        created.append(transport)
        return transport

    return Session(settings, transport_factory=factory), created
