"""Topic name validation and template resolution."""
from __future__ import annotations

import re

TOPIC_PATTERN = re.compile(r"^[A-Za-z0-9_/~]+$")


def validate_topic(name: str) -> str:
    """Return name unchanged if it is a usable topic name, else raise ValueError."""
    if not isinstance(name, str) or not name:
        raise ValueError(f"Invalid topic name: {name!r}")
    if not TOPIC_PATTERN.match(name) or '//' in name:
        raise ValueError(f"Invalid topic name: {name!r}")
    return name


def resolve_topic_template(template: str, namespace: str = '') -> str:
    """Resolve the {NAMESPACE} placeholder; an empty namespace drops the segment."""
    if not template:
        return template

    namespace = namespace.strip('/')
    resolved = template.replace('{NAMESPACE}', namespace)
    resolved = re.sub(r'/{2,}', '/', resolved)
    if len(resolved) > 1 and resolved.endswith('/'):
        resolved = resolved[:-1]
    return resolved


def parse_topic_spec(spec: str, default_type: str = 'std_msgs/String') -> tuple[str, str]:
    """Split a 'topic:type' argument; the type part is optional."""
    topic, sep, message_type = spec.partition(':')
    topic = topic.strip()
    message_type = message_type.strip() if sep else ''
    return validate_topic(topic), message_type or default_type


def sanitize_client_id(name: str, prefix: str = "robobus_") -> str:
    """Convert a name to a valid MQTT client ID."""
    client_id = prefix + name.replace(" ", "_")
    client_id = re.sub(r"[^a-zA-Z0-9_-]", "", client_id)
    return client_id[:23]
