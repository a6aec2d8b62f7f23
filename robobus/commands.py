"""Slider-to-actuator command encoding. Pure functions, no I/O."""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .errors import OutOfRange
from .settings import CommandSettings

DEFAULT_RANGE = (0.0, 100.0)


@dataclass(frozen=True)
class OutboundCommand:
    actuator_id: int
    position: int
    duration_ms: int

    def to_payload(self) -> dict[str, Any]:
        """Render as a motion command message (one servo per command)."""
        return {
            'servo_id': [self.actuator_id],
            'position': [self.position],
            'duration': [self.duration_ms],
        }


def round_half_away_from_zero(value: float) -> int:
    # Decimal(float) is exact, so values just under .5 stay below it
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def encode_slider_command(
    actuator_id: int,
    raw_value: float,
    scale_factor: float,
    duration_ms: int,
    value_range: tuple[float, float] = DEFAULT_RANGE,
) -> OutboundCommand:
    """Map a continuous control value onto an actuator position.

    raw_value must lie within value_range (inclusive) or OutOfRange is
    raised. The position is raw_value * scale_factor rounded half away from
    zero, so 0.5 steps always round outward regardless of parity.
    """
    low, high = value_range
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        raise OutOfRange(raw_value, low, high) from None

    if not math.isfinite(value) or not low <= value <= high:
        raise OutOfRange(raw_value, low, high)
    if duration_ms < 0:
        raise ValueError(f"duration_ms must not be negative: {duration_ms}")

    return OutboundCommand(
        actuator_id=int(actuator_id),
        position=round_half_away_from_zero(value * scale_factor),
        duration_ms=int(duration_ms),
    )


class CommandEncoder:
    """Binds one actuator's configured mapping so callers pass only the value."""

    def __init__(self, settings: CommandSettings) -> None:
        self.settings = settings

    @property
    def topic(self) -> str:
        return self.settings.topic

    @property
    def message_type(self) -> str:
        return self.settings.message_type

    def encode(self, raw_value: float, duration_ms: int | None = None) -> OutboundCommand:
        s = self.settings
        return encode_slider_command(
            s.actuator_id,
            raw_value,
            s.scale_factor,
            s.duration_ms if duration_ms is None else duration_ms,
            value_range=(s.min_value, s.max_value),
        )
