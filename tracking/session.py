"""
tracking/session.py

One location-sharing session per signed-in user.
Owns the position subscription and the inference state, and drives each fix
through: battery estimate -> motion inference -> publish -> reward guard.

Flow:
1. enable(): one-shot bootstrap fix (permission check + initial tier),
   then a PositionStream and a consumer task are started
2. The consumer handles fixes strictly in delivery order, one at a time
3. PermissionDenied disables sharing and is re-raised from wait_closed()
4. disable(): cancels the subscription and clears all in-memory history
"""

import asyncio
import random
from datetime import datetime
from typing import Callable, Optional

import structlog

from config import settings
from tracking.errors import FixFailure, PermissionDenied, failure_from_fix_error
from tracking.schemas import (
    AccuracyTier,
    FixError,
    FixErrorKind,
    MotionSample,
    RawFix,
)
from tracking.services.battery import BatteryEstimator
from tracking.services.motion import MotionInference, classify_bootstrap_accuracy
from tracking.services.position import (
    PositionSource,
    PositionStream,
    bootstrap_options,
    watch_options,
)
from tracking.services.publisher import publish_motion_sample
from tracking.services.rewards import record_observation

logger = structlog.get_logger(__name__)


class RewardRateGuard:
    """
    Spaces reward observations at least `interval_seconds` apart.

    The first sample only arms the timer. Every later sample that arrives
    after the interval yields the elapsed minutes and restarts the timer.
    """

    def __init__(self, interval_seconds: Optional[float] = None) -> None:
        self.interval_seconds = (
            settings.reward_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        self._last: Optional[datetime] = None

    def due(self, speed_mph: int, now: datetime) -> Optional[float]:
        """Return elapsed minutes if an observation should be recorded now."""
        if speed_mph < 0:
            return None
        if self._last is None:
            self._last = now
            return None
        elapsed = (now - self._last).total_seconds()
        if elapsed < self.interval_seconds:
            return None
        self._last = now
        return elapsed / 60.0

    def reset(self) -> None:
        self._last = None


class SharingSession:
    """Event loop that turns one user's fixes into published samples and rewards."""

    def __init__(
        self,
        user_id: str,
        source: PositionSource,
        battery: Optional[BatteryEstimator] = None,
        display_name: Optional[str] = None,
        profile_picture: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.user_id = user_id
        self.display_name = display_name
        self.profile_picture = profile_picture
        self._source = source
        self._clock = clock
        self._battery = battery or BatteryEstimator(
            rng=rng or random.Random(settings.random_seed)
        )
        self.inference = MotionInference()
        self.reward_guard = RewardRateGuard()
        self.tier: AccuracyTier = AccuracyTier.MEDIUM
        self.sharing: bool = False
        self.current_sample: Optional[MotionSample] = None
        self._stream: Optional[PositionStream] = None
        self._consumer: Optional[asyncio.Task] = None
        self._denied: Optional[PermissionDenied] = None

    async def enable(self) -> AccuracyTier:
        """
        Switch sharing on.

        Raises the FixFailure from the bootstrap fix if location cannot be
        obtained; sharing stays off in that case.
        """
        if self.sharing:
            return self.tier

        try:
            fix = await self._source.current_fix(bootstrap_options())
        except FixFailure as exc:
            logger.warning(
                "location_bootstrap_failed",
                user_id=self.user_id,
                kind=exc.kind.value,
                error=str(exc),
            )
            raise

        self.tier = classify_bootstrap_accuracy(fix.accuracy_m)
        self.sharing = True
        self._denied = None
        self._stream = PositionStream(self._source, watch_options())
        self._stream.start()
        self._consumer = asyncio.create_task(self._consume(self._stream))

        logger.info(
            "location_sharing_enabled",
            user_id=self.user_id,
            tier=self.tier.value,
            bootstrap_accuracy_m=fix.accuracy_m,
        )
        return self.tier

    async def disable(self) -> None:
        """Switch sharing off, cancel the subscription and forget history."""
        if not self.sharing and self._stream is None:
            return

        self.sharing = False
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.cancel()

        self.inference.reset()
        self.reward_guard.reset()
        self.tier = AccuracyTier.MEDIUM
        logger.info("location_sharing_disabled", user_id=self.user_id)

    async def toggle(self) -> Optional[AccuracyTier]:
        if self.sharing:
            await self.disable()
            return None
        return await self.enable()

    async def wait_closed(self) -> None:
        """Wait for the consumer to finish; re-raise a permission denial."""
        if self._consumer is not None:
            await self._consumer
        if self._denied is not None:
            raise self._denied

    async def _consume(self, stream: PositionStream) -> None:
        async for item in stream:
            try:
                if isinstance(item, FixError):
                    if await self.handle_fix_error(item):
                        break
                else:
                    await self.process_fix(item)
            except Exception as exc:
                logger.error(
                    "fix_processing_failed",
                    user_id=self.user_id,
                    error=str(exc),
                )

        # The device closed the watch without being asked to
        if self._stream is stream:
            logger.warning("position_watch_ended", user_id=self.user_id)
            await self.disable()

    async def handle_fix_error(self, error: FixError) -> bool:
        """Apply the error policy. Returns True if the session must stop."""
        if error.kind is FixErrorKind.PERMISSION_DENIED:
            logger.warning(
                "location_permission_denied",
                user_id=self.user_id,
                error=error.message,
            )
            self._denied = failure_from_fix_error(error)
            await self.disable()
            return True

        logger.warning(
            "location_fix_error",
            user_id=self.user_id,
            kind=error.kind.value,
            error=error.message,
        )
        return False

    async def process_fix(self, fix: RawFix) -> Optional[MotionSample]:
        """
        Run one fix through the pipeline. Returns None if it was dropped.

        A fix belongs to the subscription that was live when it arrived; if
        sharing was switched off (or off and on again) meanwhile, it is stale.
        """
        if not self.sharing:
            return None

        stream = self._stream
        now = self._clock()
        battery_pct = await self._battery.estimate(now)
        if not self.sharing or self._stream is not stream:
            logger.debug("fix_dropped_after_disable", user_id=self.user_id)
            return None

        sample = self.inference.infer(fix, battery_pct)
        self.tier = sample.tier
        self.current_sample = sample

        await publish_motion_sample(
            self.user_id,
            sample,
            display_name=self.display_name,
            profile_picture=self.profile_picture,
            now=now,
        )

        if not self.sharing or self._stream is not stream:
            return sample

        elapsed_minutes = self.reward_guard.due(sample.speed_mph, now)
        if elapsed_minutes is not None:
            await record_observation(
                self.user_id, sample.speed_mph, elapsed_minutes, now=now
            )
        return sample
