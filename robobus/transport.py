"""Transport connection abstraction: one socket to one broker endpoint."""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Union

from .errors import BusError, ConnectionClosed, NotConnected
from .state import DISCONNECTED, ConnectionState, ConnectionStatus

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]
StateListener = Callable[[ConnectionStatus], None]
MessageListener = Callable[[Frame], None]


class Transport(ABC):
    """Abstract interface for a single broker connection.

    connect() never blocks: the state is CONNECTING when it returns and moves
    to CONNECTED or ERRORED later, reported through on_state_change listeners.
    There is no automatic reconnect; a failed transport stays ERRORED until
    it is closed and replaced.
    """

    endpoint: str | None
    created_at: float

    @abstractmethod
    def connect(self, endpoint: str) -> Transport: ...

    @abstractmethod
    def close(self) -> None:
        """Release the socket and move to CLOSED. Safe to call repeatedly."""
        ...

    @property
    @abstractmethod
    def status(self) -> ConnectionStatus: ...

    @property
    def state(self) -> ConnectionState:
        return self.status.state

    @abstractmethod
    def send(self, frame: Frame) -> None:
        """Send one raw frame. Raises NotConnected unless CONNECTED."""
        ...

    @abstractmethod
    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a callable that removes it."""
        ...

    @abstractmethod
    def on_message(self, listener: MessageListener) -> Callable[[], None]:
        """Register an inbound frame listener; returns a callable that removes it."""
        ...


class BaseTransport(Transport):
    """State machine, listener bookkeeping and send serialization.

    Subclasses implement _open() (start connecting without blocking),
    _send_frame() and _release(), and report progress with _set_status(),
    _fail() and _deliver().
    """

    def __init__(self) -> None:
        self.endpoint: str | None = None
        self.created_at = time.time()
        self._status = DISCONNECTED
        self._state_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._state_listeners: list[StateListener] = []
        self._message_listeners: list[MessageListener] = []
        self._pending: deque[ConnectionStatus] = deque()
        self._notifying = False
        self._started = False
        self._closing = False

    # ------------------------------------------------------------------
    # Transport interface
    # ------------------------------------------------------------------

    def connect(self, endpoint: str) -> Transport:
        with self._state_lock:
            if self._started:
                raise BusError(f"Transport already used for {self.endpoint}")
            self._started = True
            self.endpoint = endpoint
        self._set_status(ConnectionStatus(ConnectionState.CONNECTING))
        try:
            self._open()
        except Exception as e:
            logger.error(f"Failed to start connection to {endpoint}: {e}")
            self._fail(str(e))
        return self

    def close(self) -> None:
        with self._state_lock:
            if self._closing:
                return
            self._closing = True
        self._set_status(ConnectionStatus(ConnectionState.CLOSED))
        try:
            self._release()
        except Exception as e:
            logger.debug(f"Error releasing connection to {self.endpoint}: {e}")
        logger.debug(f"Closed connection to {self.endpoint}")

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def send(self, frame: Frame) -> None:
        with self._send_lock:
            status = self._status
            if status.state is ConnectionState.CLOSED:
                raise ConnectionClosed(f"Connection to {self.endpoint} is closed", status.state)
            if status.state is not ConnectionState.CONNECTED:
                raise NotConnected(f"Connection to {self.endpoint} is {status}", status.state)
            try:
                self._send_frame(frame)
            except Exception as e:
                error = e
            else:
                return
        # Report outside the send lock so state listeners may send
        logger.error(f"Send to {self.endpoint} failed: {error}")
        self._fail(f"send failed: {error}")
        raise NotConnected(f"Send to {self.endpoint} failed: {error}",
                           ConnectionState.ERRORED) from error

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: _discard(self._state_listeners, listener)

    def on_message(self, listener: MessageListener) -> Callable[[], None]:
        self._message_listeners.append(listener)
        return lambda: _discard(self._message_listeners, listener)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _open(self) -> None: ...

    @abstractmethod
    def _send_frame(self, frame: Frame) -> None: ...

    @abstractmethod
    def _release(self) -> None: ...

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    @property
    def closing(self) -> bool:
        return self._closing

    def _set_status(self, status: ConnectionStatus) -> bool:
        """Apply a transition and notify listeners in transition order.

        CLOSED is terminal, and ERRORED only gives way to CLOSED. Listeners
        run without any transport lock held; a transition made while another
        thread is notifying is queued and delivered by that thread.
        """
        with self._state_lock:
            current = self._status.state
            if current is ConnectionState.CLOSED:
                return False
            if current is ConnectionState.ERRORED and status.state is not ConnectionState.CLOSED:
                return False
            if status == self._status:
                return False
            self._status = status
            self._pending.append(status)
            if self._notifying:
                return True
            self._notifying = True

        while True:
            with self._state_lock:
                if not self._pending:
                    self._notifying = False
                    return True
                pending = self._pending.popleft()
            for listener in list(self._state_listeners):
                try:
                    listener(pending)
                except Exception:
                    logger.exception(f"State listener failed for {self.endpoint}")

    def _fail(self, detail: str) -> None:
        if self._closing:
            return
        if self._set_status(ConnectionStatus(ConnectionState.ERRORED, detail)):
            logger.error(f"Connection to {self.endpoint} errored: {detail}")

    def _deliver(self, frame: Frame) -> None:
        for listener in list(self._message_listeners):
            try:
                listener(frame)
            except Exception:
                logger.exception(f"Message listener failed for {self.endpoint}")


def _discard(listeners: list, listener: Callable) -> None:
    try:
        listeners.remove(listener)
    except ValueError:
        pass
