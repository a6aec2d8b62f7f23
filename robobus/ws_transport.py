"""WebSocket transport for rosbridge-style endpoints (ws:// and wss://)."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.sync.client import ClientConnection, connect as ws_connect

from .state import ConnectionState, ConnectionStatus
from .transport import BaseTransport, Frame

logger = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """Concrete transport wrapping websockets' synchronous client.

    The handshake and the receive loop both run on one daemon reader thread,
    so connect() returns immediately and frames are delivered in arrival
    order from that thread.
    """

    def __init__(
        self,
        open_timeout: float = 10.0,
        close_timeout: float = 5.0,
        connector: Callable[..., ClientConnection] = ws_connect,
        **connect_options: Any,
    ) -> None:
        super().__init__()
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self._connector = connector
        self._connect_options = connect_options
        self._ws: ClientConnection | None = None
        self._ws_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def _open(self) -> None:
        self._thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name=f"WS-Reader-{self.endpoint}",
        )
        self._thread.start()

    def _reader_loop(self) -> None:
        logger.info(f"[ws] Connecting to {self.endpoint}")
        try:
            ws = self._connector(
                self.endpoint,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                **self._connect_options,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            self._fail(f"connect failed: {e}")
            return

        with self._ws_lock:
            if self.closing:
                ws.close()
                return
            self._ws = ws

        logger.info(f"[ws] Connected to {self.endpoint}")
        self._set_status(ConnectionStatus(ConnectionState.CONNECTED))

        try:
            for message in ws:
                self._deliver(message)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            self._fail(f"connection lost: {e}")
            return
        except OSError as e:
            self._fail(f"socket error: {e}")
            return

        if not self.closing:
            logger.warning(f"[ws] Server closed connection to {self.endpoint}")
            self._set_status(ConnectionStatus(ConnectionState.CLOSED, "closed by server"))

    def _send_frame(self, frame: Frame) -> None:
        ws = self._ws
        if ws is None:
            raise OSError("socket not open")
        ws.send(frame)

    def _release(self) -> None:
        with self._ws_lock:
            ws = self._ws
            self._ws = None
        if ws is not None:
            ws.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.close_timeout)
            if thread.is_alive():
                logger.warning(f"[ws] Reader thread for {self.endpoint} did not stop within {self.close_timeout}s")
