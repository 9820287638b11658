"""
tests/fixtures.py

Shared test data and helper functions for constructing fixes, samples and
reward states. All tests must use these builders instead of hardcoding
payloads.
"""

import asyncio
import math
from datetime import datetime
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from tracking.constants import EARTH_RADIUS_M
from tracking.schemas import (
    AccuracyTier,
    MotionSample,
    PositionOptions,
    RawFix,
    SafetyRewardState,
)

BASE_LAT: float = 37.7749
BASE_LON: float = -122.4194
BASE_TS_MS: int = 1_718_458_200_000  # 2024-06-15 13:30:00 UTC


def north_of(lat: float, meters: float) -> float:
    """Latitude `meters` due north of `lat` on the haversine sphere."""
    return lat + math.degrees(meters / EARTH_RADIUS_M)


def build_fix(
    offset_ms: int = 0,
    meters_north: float = 0.0,
    accuracy_m: float = 5.0,
    reported_speed_mps: Optional[float] = None,
    heading_deg: Optional[float] = None,
    altitude_m: Optional[float] = None,
) -> RawFix:
    """Build a RawFix relative to BASE_LAT/BASE_LON/BASE_TS_MS."""
    return RawFix(
        latitude=north_of(BASE_LAT, meters_north),
        longitude=BASE_LON,
        accuracy_m=accuracy_m,
        heading_deg=heading_deg,
        altitude_m=altitude_m,
        reported_speed_mps=reported_speed_mps,
        timestamp_ms=BASE_TS_MS + offset_ms,
    )


def build_sample(
    speed_mph: int = 30,
    battery_pct: int = 80,
    is_driving: bool = True,
    tier: AccuracyTier = AccuracyTier.HIGH,
) -> MotionSample:
    """Build a MotionSample with sensible defaults for testing."""
    return MotionSample(
        latitude=BASE_LAT,
        longitude=BASE_LON,
        speed_mph=speed_mph,
        battery_pct=battery_pct,
        is_driving=is_driving,
        accuracy_m=3.0,
        heading_deg=90.0,
        altitude_m=12.0,
        observed_at=datetime(2024, 6, 15, 13, 30, 0),
        tier=tier,
    )


def build_reward_state(
    total_reward: int = 0,
    weekly_reward: int = 0,
    monthly_reward: int = 0,
    safety_score: float = 100.0,
    speed_violation_count: int = 0,
    average_speed_mph: float = 0.0,
    total_driving_minutes: float = 0.0,
    last_evaluated_at: Optional[datetime] = None,
) -> SafetyRewardState:
    """Build a SafetyRewardState; defaults match a freshly created account."""
    return SafetyRewardState(
        total_reward=total_reward,
        weekly_reward=weekly_reward,
        monthly_reward=monthly_reward,
        safety_score=safety_score,
        speed_violation_count=speed_violation_count,
        average_speed_mph=average_speed_mph,
        total_driving_minutes=total_driving_minutes,
        last_evaluated_at=last_evaluated_at or datetime(2024, 6, 15, 13, 0, 0),
    )


def build_mock_session(existing: object = None) -> AsyncMock:
    """AsyncSession stand-in whose get() returns `existing`."""
    session = AsyncMock()
    session.get = AsyncMock(return_value=existing)
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


class FakePositionSource:
    """PositionSource whose watch() yields whatever the test pushes."""

    def __init__(
        self,
        bootstrap: Optional[RawFix] = None,
        bootstrap_error: Optional[Exception] = None,
    ) -> None:
        self.bootstrap = bootstrap or build_fix(accuracy_m=4.0)
        self.bootstrap_error = bootstrap_error
        self.items: asyncio.Queue = asyncio.Queue()
        self.current_fix_calls: list[PositionOptions] = []
        self.watch_calls: list[PositionOptions] = []

    async def current_fix(self, options: PositionOptions) -> RawFix:
        self.current_fix_calls.append(options)
        if self.bootstrap_error is not None:
            raise self.bootstrap_error
        return self.bootstrap

    async def watch(self, options: PositionOptions):
        self.watch_calls.append(options)
        while True:
            yield await self.items.get()


# ── Reference timestamps ────────────────────────────────────

TEST_NOW: datetime = datetime(2024, 6, 15, 13, 30, 0)
TEST_USER_ID: str = "user_001"
