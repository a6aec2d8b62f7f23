"""Background thread loop for periodic statistics logging."""
from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def stats_logging_loop(session: Session, stop_event: threading.Event, interval: float = 300) -> None:
    """Log session statistics every interval seconds until stop_event is set."""
    last_log = time.time()
    frames_prev = session.stats['frames_rx'] + session.stats['frames_tx']

    while not stop_event.wait(interval):
        stats = session.stats
        now = time.time()
        elapsed = now - last_log
        frames = stats['frames_rx'] + stats['frames_tx']
        frames_per_min = ((frames - frames_prev) / elapsed) * 60 if elapsed > 0 else 0
        last_log = now
        frames_prev = frames

        logger.info(
            f"[STATS] Uptime: {format_uptime(now - stats['start_time'])} | "
            f"Connection: {stats['connection']} | "
            f"RX: {stats['frames_rx']} TX: {stats['frames_tx']} ({frames_per_min:.1f}/min) | "
            f"Delivered: {stats['messages_delivered']} | "
            f"Subscriptions: {stats['subscriptions']}"
        )
        if stats['publish_failures'] or stats['dropped_frames'] or stats['sink_errors']:
            logger.info(
                f"[STATS] Publish failures: {stats['publish_failures']} | "
                f"Dropped frames: {stats['dropped_frames']} | "
                f"Sink errors: {stats['sink_errors']}"
            )
