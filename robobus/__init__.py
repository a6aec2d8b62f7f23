"""Robot control bus bridge: a managed publish/subscribe session over a broker connection."""
from __future__ import annotations

from .codec import DecodedFrame, FrameCodec, RosbridgeCodec
from .commands import CommandEncoder, OutboundCommand, encode_slider_command
from .errors import (
    BusError,
    CodecError,
    ConfigError,
    ConnectionClosed,
    NotConnected,
    OutOfRange,
    SessionStopped,
)
from .registry import InboundMessage, Publisher, Subscription, TopicRegistry
from .session import Session, create_transport, start
from .settings import OutboundPolicy, SessionConfig
from .state import ConnectionState, ConnectionStatus, SessionPhase
from .transport import BaseTransport, Transport

__version__ = "0.3.0"

__all__ = [
    'BaseTransport',
    'BusError',
    'CodecError',
    'CommandEncoder',
    'ConfigError',
    'ConnectionClosed',
    'ConnectionState',
    'ConnectionStatus',
    'DecodedFrame',
    'FrameCodec',
    'InboundMessage',
    'NotConnected',
    'OutOfRange',
    'OutboundCommand',
    'OutboundPolicy',
    'Publisher',
    'RosbridgeCodec',
    'Session',
    'SessionConfig',
    'SessionPhase',
    'SessionStopped',
    'Subscription',
    'TopicRegistry',
    'Transport',
    'create_transport',
    'encode_slider_command',
    'start',
]
