"""Tests for WebSocketTransport with a stubbed websockets connector."""
from __future__ import annotations

import queue
import threading

import pytest
from websockets.exceptions import ConnectionClosedError, InvalidURI

from robobus.state import ConnectionState
from robobus.ws_transport import WebSocketTransport

pytestmark = pytest.mark.slow

WAIT = 2.0


class StubSocket:
    """Stands in for websockets.sync.client.ClientConnection."""

    def __init__(self) -> None:
        self.sent: list = []
        self.closed = threading.Event()
        self._inbox: queue.Queue = queue.Queue()

    def push(self, frame) -> None:
        self._inbox.put(frame)

    def end(self, error: Exception | None = None) -> None:
        self._inbox.put(error or StopIteration())

    def __iter__(self):
        while True:
            item = self._inbox.get()
            if isinstance(item, StopIteration):
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def send(self, frame) -> None:
        self.sent.append(frame)

    def close(self) -> None:
        self.closed.set()
        self._inbox.put(StopIteration())


def wait_for_state(transport, state, timeout=WAIT):
    reached = threading.Event()

    def listener(status):
        if status.state is state:
            reached.set()

    remove = transport.on_state_change(listener)
    if transport.state is state:
        reached.set()
    ok = reached.wait(timeout)
    remove()
    return ok


def make_transport(socket=None, error=None):
    calls: list = []

    def connector(uri, **kwargs):
        calls.append((uri, kwargs))
        if error is not None:
            raise error
        return socket

    return WebSocketTransport(open_timeout=1.5, close_timeout=1.0, connector=connector), calls


class TestWebSocketTransport:
    def test_connects_and_receives(self):
        socket = StubSocket()
        transport, calls = make_transport(socket)
        received = queue.Queue()
        transport.on_message(received.put)

        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.CONNECTED)
        assert calls[0][0] == 'ws://localhost:9090'
        assert calls[0][1]['open_timeout'] == 1.5

        socket.push('{"op":"publish"}')
        assert received.get(timeout=WAIT) == '{"op":"publish"}'
        transport.close()

    def test_send(self):
        socket = StubSocket()
        transport, _ = make_transport(socket)
        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.CONNECTED)
        transport.send('frame')
        assert socket.sent == ['frame']
        transport.close()

    def test_connect_failure(self):
        transport, _ = make_transport(error=ConnectionRefusedError("refused"))
        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.ERRORED)
        assert 'refused' in transport.status.detail

    def test_invalid_uri(self):
        transport, _ = make_transport(error=InvalidURI('ws://', 'bad'))
        transport.connect('ws://')
        assert wait_for_state(transport, ConnectionState.ERRORED)

    def test_connection_lost(self):
        socket = StubSocket()
        transport, _ = make_transport(socket)
        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.CONNECTED)
        socket.end(ConnectionClosedError(None, None))
        assert wait_for_state(transport, ConnectionState.ERRORED)
        assert transport.status.detail.startswith('connection lost')

    def test_server_close(self):
        socket = StubSocket()
        transport, _ = make_transport(socket)
        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.CONNECTED)
        socket.end()
        assert wait_for_state(transport, ConnectionState.CLOSED)
        assert transport.status.detail == 'closed by server'

    def test_close_releases_socket(self):
        socket = StubSocket()
        transport, _ = make_transport(socket)
        transport.connect('ws://localhost:9090')
        assert wait_for_state(transport, ConnectionState.CONNECTED)
        transport.close()
        assert socket.closed.is_set()
        assert transport.state is ConnectionState.CLOSED
        assert transport.status.detail is None

    def test_close_during_handshake(self):
        socket = StubSocket()
        release = threading.Event()

        def slow_connector(uri, **kwargs):
            release.wait(WAIT)
            return socket

        transport = WebSocketTransport(close_timeout=1.0, connector=slow_connector)
        transport.connect('ws://localhost:9090')
        release.set()
        transport.close()
        assert socket.closed.wait(WAIT)
        assert transport.state is ConnectionState.CLOSED
