"""
tracking/services/motion.py

Movement and speed inference over a short sliding history.
- Candidate speed from the reported speed, or derived from the previous fix
- Linearly weighted moving average over the last SPEED_HISTORY_MAX_LEN candidates
- Displacement-based movement detection over the last MOVEMENT_WINDOW_MS
- Driving classification and GPS quality tier

One MotionInference instance belongs to one sharing session; fixes must be
fed in device-delivery order.
"""

import collections
from datetime import datetime
from typing import NamedTuple, Optional

import numpy as np
import structlog

from tracking.constants import (
    BOOTSTRAP_TIER_HIGH_MAX_M,
    BOOTSTRAP_TIER_MEDIUM_MAX_M,
    DRIVING_SPEED_MIN_MPH,
    MIN_DERIVED_SPEED_INTERVAL_MS,
    MOVEMENT_ACCURACY_FACTOR,
    MOVEMENT_HISTORY_MAX_LEN,
    MOVEMENT_MIN_ENTRIES,
    MOVEMENT_MIN_THRESHOLD_M,
    MOVEMENT_WINDOW_MS,
    MPS_TO_MPH,
    SPEED_HISTORY_MAX_LEN,
    TIER_HIGH_MAX_M,
    TIER_MEDIUM_MAX_M,
)
from tracking.schemas import AccuracyTier, MotionSample, RawFix
from tracking.services.geometry import (
    derived_speed_mph,
    distance_meters,
    is_implausible_speed,
    round_half_up,
)

logger = structlog.get_logger(__name__)


class MovementEntry(NamedTuple):
    timestamp_ms: int
    latitude: float
    longitude: float


def classify_accuracy(accuracy_m: float) -> AccuracyTier:
    """Steady-state quality tier for a fix's accuracy radius."""
    if accuracy_m <= TIER_HIGH_MAX_M:
        return AccuracyTier.HIGH
    if accuracy_m <= TIER_MEDIUM_MAX_M:
        return AccuracyTier.MEDIUM
    return AccuracyTier.LOW


def classify_bootstrap_accuracy(accuracy_m: float) -> AccuracyTier:
    """Quality tier for the first fix taken when sharing is switched on."""
    if accuracy_m <= BOOTSTRAP_TIER_HIGH_MAX_M:
        return AccuracyTier.HIGH
    if accuracy_m <= BOOTSTRAP_TIER_MEDIUM_MAX_M:
        return AccuracyTier.MEDIUM
    return AccuracyTier.LOW


def weighted_average_speed(speeds: collections.deque) -> int:
    """
    Linearly weighted average: the i-th oldest entry (1-indexed) weighs i.

    Favors the latest reading while damping single-sample spikes.
    """
    if not speeds:
        return 0
    weights = np.arange(1, len(speeds) + 1)
    return round_half_up(float(np.average(list(speeds), weights=weights)))


class MotionInference:
    """Owns SpeedHistory and MovementHistory for one sharing session."""

    def __init__(self) -> None:
        self.speed_history: collections.deque = collections.deque(
            maxlen=SPEED_HISTORY_MAX_LEN
        )
        self.movement_history: collections.deque = collections.deque(
            maxlen=MOVEMENT_HISTORY_MAX_LEN
        )
        self._last_fix: Optional[RawFix] = None
        self._last_smoothed_speed: int = 0

    def reset(self) -> None:
        """Forget all history. Called when sharing is switched off."""
        self.speed_history.clear()
        self.movement_history.clear()
        self._last_fix = None
        self._last_smoothed_speed = 0

    def infer(self, fix: RawFix, battery_pct: int) -> MotionSample:
        """Derive the MotionSample for `fix` and advance both histories."""
        self.movement_history.append(
            MovementEntry(fix.timestamp_ms, fix.latitude, fix.longitude)
        )

        candidate = self._candidate_speed(fix)
        self.speed_history.append(candidate)
        smoothed = weighted_average_speed(self.speed_history)

        self._last_fix = fix
        self._last_smoothed_speed = smoothed

        is_moving = self.detect_movement(fix.timestamp_ms, fix.accuracy_m)
        # Equivalent to smoothed > DRIVING_SPEED_MIN_MPH; kept as observed in the field.
        is_driving = (
            is_moving or smoothed > DRIVING_SPEED_MIN_MPH
        ) and smoothed > DRIVING_SPEED_MIN_MPH

        tier = classify_accuracy(fix.accuracy_m)

        logger.debug(
            "motion_inferred",
            candidate_mph=candidate,
            smoothed_mph=smoothed,
            is_moving=is_moving,
            is_driving=is_driving,
            tier=tier.value,
        )

        return MotionSample(
            latitude=fix.latitude,
            longitude=fix.longitude,
            speed_mph=smoothed,
            battery_pct=battery_pct,
            is_driving=is_driving,
            accuracy_m=fix.accuracy_m or 0.0,
            heading_deg=fix.heading_deg,
            altitude_m=fix.altitude_m,
            observed_at=datetime.fromtimestamp(fix.timestamp_ms / 1000),
            tier=tier,
        )

    def _candidate_speed(self, fix: RawFix) -> int:
        if fix.reported_speed_mps is not None and fix.reported_speed_mps >= 0:
            return round_half_up(fix.reported_speed_mps * MPS_TO_MPH)

        if self._last_fix is None:
            return 0

        elapsed_ms = fix.timestamp_ms - self._last_fix.timestamp_ms
        if elapsed_ms < MIN_DERIVED_SPEED_INTERVAL_MS:
            # High-rate fixes: hold the previous estimate
            return self._last_smoothed_speed

        speed = derived_speed_mph(self._last_fix, fix)
        if is_implausible_speed(speed, elapsed_ms):
            logger.debug(
                "implausible_speed_rejected",
                speed_mph=round(speed, 1),
                elapsed_ms=elapsed_ms,
            )
            return 0
        return max(0, round_half_up(speed))

    def detect_movement(self, now_ms: int, accuracy_m: float) -> bool:
        """
        True when recent displacement exceeds what GPS noise explains.

        Sums hop distances across history entries younger than
        MOVEMENT_WINDOW_MS and compares against max(5 m, 2 * accuracy).
        """
        if len(self.movement_history) < MOVEMENT_MIN_ENTRIES:
            return False

        recent = [
            entry
            for entry in self.movement_history
            if now_ms - entry.timestamp_ms < MOVEMENT_WINDOW_MS
        ]
        if len(recent) < 2:
            return False

        hops = np.array(
            [
                distance_meters(
                    prev.latitude, prev.longitude, curr.latitude, curr.longitude
                )
                for prev, curr in zip(recent, recent[1:])
            ]
        )
        threshold = max(
            MOVEMENT_MIN_THRESHOLD_M, accuracy_m * MOVEMENT_ACCURACY_FACTOR
        )
        return float(hops.sum()) > threshold
