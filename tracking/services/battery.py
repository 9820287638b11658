"""
tracking/services/battery.py

Best-effort device battery percentage.
This is a display heuristic, not power management: when the platform
cannot report a level, a time-of-day drain model stands in for it.
"""

import math
import random
from datetime import datetime
from typing import Optional, Protocol

import structlog

from tracking.constants import (
    BATTERY_CEILING_PCT,
    BATTERY_DRAIN_MINUTES_PER_PCT,
    BATTERY_ERROR_MAX_PCT,
    BATTERY_ERROR_MIN_PCT,
    BATTERY_FLOOR_PCT,
    BATTERY_JITTER_MAX,
    BATTERY_JITTER_MIN,
)
from tracking.services.geometry import round_half_up

logger = structlog.get_logger(__name__)


class BatterySource(Protocol):
    """Platform battery API. Returns a charge fraction, or None if unsupported."""

    async def level(self) -> Optional[float]: ...


class BatteryEstimator:
    """Reads the platform battery level, falling back to a drain model."""

    def __init__(
        self,
        source: Optional[BatterySource] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._source = source
        self._rng = rng or random.Random()

    async def estimate(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now()
        try:
            if self._source is not None:
                level = await self._source.level()
                if level is not None:
                    return max(0, min(100, round_half_up(level * 100)))
            return self._time_of_day_estimate(now)
        except Exception as exc:
            logger.warning("battery_level_unavailable", error=str(exc))
            return self._rng.randint(BATTERY_ERROR_MIN_PCT, BATTERY_ERROR_MAX_PCT)

    def _time_of_day_estimate(self, now: datetime) -> int:
        minutes_since_midnight = now.hour * 60 + now.minute
        base = 100 - math.floor(minutes_since_midnight / BATTERY_DRAIN_MINUTES_PER_PCT)
        base += self._rng.randint(BATTERY_JITTER_MIN, BATTERY_JITTER_MAX)
        return max(BATTERY_FLOOR_PCT, min(BATTERY_CEILING_PCT, base))
