"""Configuration loading: TOML files layered into one dict for SessionConfig.from_dict()."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = '/etc/robobus/config.toml'
DEFAULT_CONFIG_DIR = '/etc/robobus/config.d'

Subscription = dict[str, Any]


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts. override values take precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def merge_subscription_lists(base_subs: list[Subscription], override_subs: list[Subscription]) -> list[Subscription]:
    """Merge [[subscription]] entries keyed by topic.

    An overlay entry for a topic already present updates that entry in place,
    so an overlay can switch a base subscription off with just
    ``topic`` and ``enabled = false``. Entries without a topic cannot be
    matched or subscribed and are dropped.
    """
    result: list[Subscription] = []
    index: dict[str, int] = {}
    for sub in list(base_subs) + list(override_subs):
        topic = str(sub.get('topic', '')).strip()
        if not topic:
            logger.warning(f"Ignoring [[subscription]] entry without a topic: {sub}")
            continue
        sub = dict(sub, topic=topic)
        if topic in index:
            result[index[topic]] = deep_merge(result[index[topic]], sub)
        else:
            index[topic] = len(result)
            result.append(sub)
    return result


def enabled_subscriptions(subs: list[Subscription]) -> list[Subscription]:
    """Drop entries switched off with ``enabled = false`` once all layers are merged."""
    kept = []
    for sub in subs:
        if sub.get('enabled', True):
            kept.append(sub)
        else:
            logger.info(f"Subscription {sub['topic']} disabled by config")
    return kept


def _apply_override(config: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    override_subs = override.pop('subscription', None)
    config_subs = config.get('subscription', [])
    config = deep_merge(config, override)
    if override_subs is not None:
        config['subscription'] = merge_subscription_lists(config_subs, override_subs)
    return config


def _load_toml(path: str | Path) -> dict[str, Any]:
    with open(path, 'rb') as f:
        return tomllib.load(f)


def _layer_paths(config_paths: list[str] | None, base_path: str, config_dir: str) -> list[Path]:
    """Files to layer, in order. Explicit --config paths replace the defaults."""
    if config_paths:
        return [Path(p) for p in config_paths]
    layers = [Path(base_path)]
    config_d = Path(config_dir)
    if config_d.is_dir():
        layers.extend(sorted(config_d.glob('*.toml')))
    return layers


def load_config(
    config_paths: list[str] | None = None,
    base_path: str = DEFAULT_CONFIG_PATH,
    config_dir: str = DEFAULT_CONFIG_DIR,
) -> dict[str, Any]:
    """Load and merge TOML configuration.

    When no --config paths are provided (default):
      1. Load base config from /etc/robobus/config.toml
      2. Overlay files from /etc/robobus/config.d/*.toml (alphabetical)

    When --config paths are provided:
      Load only those files in order, each overlaying the previous.
      Default search paths and config.d directories are skipped.

    [[subscription]] lists merge by topic across layers; disabled entries
    are removed from the result.
    """
    config: dict[str, Any] = {}
    for index, path in enumerate(_layer_paths(config_paths, base_path, config_dir)):
        if not path.exists():
            if config_paths:
                logger.error(f"Config file not found: {path}")
            elif index == 0:
                logger.warning(f"Base config not found at {path}, using defaults")
            continue
        logger.info(f"Loading config: {path}")
        config = _apply_override(config, _load_toml(path))

    if 'subscription' in config:
        config['subscription'] = enabled_subscriptions(config['subscription'])
    return config


def log_config_sources(config: dict[str, Any]) -> None:
    """Log configuration summary."""
    conn = config.get('connection', {})
    command = config.get('command', {})
    subscriptions = config.get('subscription', [])

    logger.info(f"Endpoint: {conn.get('endpoint', '(not set)')}")
    logger.info(f"Outbound policy: {conn.get('outbound_policy', 'reject')}")
    logger.info(f"Command topic: {command.get('topic', 'motion/command')} (actuator {command.get('actuator_id', 13)})")
    logger.info(f"Subscriptions configured: {len(subscriptions)}")

    for sub in subscriptions:
        logger.debug(f"  [{sub['topic']}] type={sub.get('type', 'std_msgs/String')}")
