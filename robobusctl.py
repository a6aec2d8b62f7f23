#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import signal
import sys

from config_loader import deep_merge, load_config, log_config_sources
from robobus import ConfigError, SessionConfig, __version__
from robobus import runner
from robobus.topics import parse_topic_spec

# Initialize logging (console only) - will be reconfigured after config load
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Connect to a robot control bus and listen or publish commands")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--config", action="append", default=None, help="Path to TOML config file (can be specified multiple times; overrides default config loading)")
    parser.add_argument("--endpoint", help="Broker endpoint URL (ws://, wss://, mqtt://, mqtts://); overrides the config")
    parser.add_argument("--listen", action="append", default=[], metavar="TOPIC[:TYPE]", help="Subscribe to a topic and log its messages (repeatable)")
    parser.add_argument("--slider", type=float, default=None, metavar="VALUE", help="Publish one motion command for a slider position")
    parser.add_argument("--send-test", metavar="TOPIC", default=None, help="Publish a std_msgs/String test message to TOPIC")
    parser.add_argument("--list-topics", action="store_true", help="Log the topics known to the broker")
    parser.add_argument("--once", action="store_true", help="Exit after the one-shot actions instead of listening")
    parser.add_argument("--version", action="version", version=f"robobus {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        logger.setLevel(logging.DEBUG)

    config = load_config(args.config)
    if args.endpoint:
        config = deep_merge(config, {'connection': {'endpoint': args.endpoint}})

    log_level_str = config.get('general', {}).get('log_level', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    if args.debug:
        log_level = logging.DEBUG
    logger.setLevel(log_level)
    logging.getLogger().setLevel(log_level)

    log_config_sources(config)

    try:
        settings = SessionConfig.from_dict(config)
        listen = [parse_topic_spec(spec) for spec in args.listen]
    except (ConfigError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    options = runner.RunOptions(
        listen=listen,
        slider=args.slider,
        send_test_topic=args.send_test,
        list_topics=args.list_topics,
        once=args.once,
    )
    state = runner.RunnerState()

    # Ensure signals from systemd (SIGTERM) and ctrl-c (SIGINT) are handled
    signal.signal(signal.SIGTERM, lambda signum, frame: runner.handle_signal(state, signum, frame))
    signal.signal(signal.SIGINT, lambda signum, frame: runner.handle_signal(state, signum, frame))

    return runner.run(settings, options, state)


if __name__ == "__main__":
    sys.exit(main())
