"""Frame codecs: translate bus operations to and from raw wire frames."""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, NamedTuple

from .errors import CodecError

OP_PUBLISH = 'publish'
OP_SUBSCRIBE = 'subscribe'
OP_UNSUBSCRIBE = 'unsubscribe'
OP_ADVERTISE = 'advertise'
OP_UNADVERTISE = 'unadvertise'
OP_CALL_SERVICE = 'call_service'
OP_SERVICE_RESPONSE = 'service_response'
OP_STATUS = 'status'


class DecodedFrame(NamedTuple):
    """An inbound frame reduced to the fields the registry routes on."""

    op: str
    topic: str | None = None
    payload: Any = None
    id: str | None = None
    result: bool | None = None
    message_type: str | None = None


class FrameCodec(ABC):
    """Abstract interface for encoding and decoding wire frames."""

    @abstractmethod
    def encode_subscribe(self, topic: str, message_type: str, sub_id: str | None = None) -> str: ...

    @abstractmethod
    def encode_unsubscribe(self, topic: str, sub_id: str | None = None) -> str: ...

    @abstractmethod
    def encode_advertise(self, topic: str, message_type: str, adv_id: str | None = None) -> str: ...

    @abstractmethod
    def encode_unadvertise(self, topic: str, adv_id: str | None = None) -> str: ...

    @abstractmethod
    def encode_publish(self, topic: str, message_type: str, payload: Any) -> str: ...

    @abstractmethod
    def encode_call_service(self, service: str, args: dict[str, Any], call_id: str) -> str: ...

    @abstractmethod
    def decode(self, frame: str | bytes) -> DecodedFrame:
        """Decode one raw frame. Raises CodecError on malformed input."""
        ...


class RosbridgeCodec(FrameCodec):
    """JSON frames following the rosbridge v2 protocol op names."""

    def _dump(self, message: dict[str, Any]) -> str:
        try:
            return json.dumps(message, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise CodecError(f"Cannot encode {message.get('op')} frame: {e}") from e

    def encode_subscribe(self, topic: str, message_type: str, sub_id: str | None = None) -> str:
        message: dict[str, Any] = {'op': OP_SUBSCRIBE, 'topic': topic, 'type': message_type}
        if sub_id:
            message['id'] = sub_id
        return self._dump(message)

    def encode_unsubscribe(self, topic: str, sub_id: str | None = None) -> str:
        message: dict[str, Any] = {'op': OP_UNSUBSCRIBE, 'topic': topic}
        if sub_id:
            message['id'] = sub_id
        return self._dump(message)

    def encode_advertise(self, topic: str, message_type: str, adv_id: str | None = None) -> str:
        message: dict[str, Any] = {'op': OP_ADVERTISE, 'topic': topic, 'type': message_type}
        if adv_id:
            message['id'] = adv_id
        return self._dump(message)

    def encode_unadvertise(self, topic: str, adv_id: str | None = None) -> str:
        message: dict[str, Any] = {'op': OP_UNADVERTISE, 'topic': topic}
        if adv_id:
            message['id'] = adv_id
        return self._dump(message)

    def encode_publish(self, topic: str, message_type: str, payload: Any) -> str:
        # rosbridge takes the type from the advertise frame, not from publish
        return self._dump({'op': OP_PUBLISH, 'topic': topic, 'msg': payload})

    def encode_call_service(self, service: str, args: dict[str, Any], call_id: str) -> str:
        return self._dump({'op': OP_CALL_SERVICE, 'id': call_id, 'service': service, 'args': args})

    def decode(self, frame: str | bytes) -> DecodedFrame:
        if isinstance(frame, (bytes, bytearray)):
            try:
                frame = frame.decode('utf-8')
            except UnicodeDecodeError as e:
                raise CodecError(f"Frame is not UTF-8: {e}") from e

        try:
            message = json.loads(frame)
        except ValueError as e:
            raise CodecError(f"Frame is not JSON: {e}") from e

        if not isinstance(message, dict):
            raise CodecError(f"Frame is not a JSON object: {type(message).__name__}")

        op = message.get('op')
        if not isinstance(op, str):
            raise CodecError("Frame has no 'op' field")

        if op == OP_PUBLISH:
            topic = message.get('topic')
            if not isinstance(topic, str) or not topic:
                raise CodecError("publish frame has no topic")
            if 'msg' not in message:
                raise CodecError(f"publish frame for {topic} has no msg")
            return DecodedFrame(op, topic=topic, payload=message['msg'],
                                id=message.get('id'), message_type=message.get('type'))

        if op == OP_SERVICE_RESPONSE:
            call_id = message.get('id')
            if not isinstance(call_id, str):
                raise CodecError("service_response frame has no id")
            return DecodedFrame(op, topic=message.get('service'), payload=message.get('values'),
                                id=call_id, result=bool(message.get('result', True)))

        if op == OP_STATUS:
            return DecodedFrame(op, payload={'level': message.get('level'), 'msg': message.get('msg')},
                                id=message.get('id'))

        return DecodedFrame(op, topic=message.get('topic'), payload=message, id=message.get('id'))
