"""
tracking/services/rewards.py

Safety-Reward Engine.
Turns rate-limited (speed, duration) observations into reward and
safety-score changes on the user's SafetyRewardState.

Speed-band rules live in an ordered table evaluated top to bottom: the last
matching rule sets the reward and score deltas, violation increments from
every matching rule accumulate. The 30-hour aggregate adjustment is applied
on top of the table result.

Uses constants from tracking/constants.py; no magic numbers allowed.
"""

import asyncio
import math
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from tracking.constants import (
    AGGREGATE_BONUS,
    AGGREGATE_MIN_DRIVING_MINUTES,
    AGGREGATE_PENALTY,
    EXERCISE_MAX_MPH,
    EXERCISE_MIN_MPH,
    REWARD_EXERCISE,
    REWARD_MILD_SPEEDING,
    REWARD_SEVERE_SPEEDING,
    REWARD_WITHIN_LIMIT,
    SAFETY_SCORE_MAX,
    SAFETY_SCORE_MIN,
    SCORE_EXERCISE,
    SCORE_MILD_SPEEDING,
    SCORE_SEVERE_SPEEDING,
    SCORE_WITHIN_LIMIT,
    SEVERE_SPEEDING_MPH,
    SPEED_LIMIT_MPH,
)
from tracking.errors import PersistenceFailure
from tracking.schemas import RewardOutcome, SafetyRewardState
from tracking.services.persistence import load_reward_state, save_reward_state

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RewardRule:
    """One row of the speed-band rule table."""

    name: str
    matches: Callable[[float], bool]
    reward_per_minute: int
    score_delta: float
    violation_increment: int = 0


REWARD_RULES: tuple[RewardRule, ...] = (
    RewardRule(
        "within_limit",
        lambda speed: speed <= SPEED_LIMIT_MPH,
        REWARD_WITHIN_LIMIT,
        SCORE_WITHIN_LIMIT,
    ),
    RewardRule(
        "mild_speeding",
        lambda speed: SPEED_LIMIT_MPH < speed <= SEVERE_SPEEDING_MPH,
        REWARD_MILD_SPEEDING,
        SCORE_MILD_SPEEDING,
    ),
    RewardRule(
        "severe_speeding",
        lambda speed: speed > SEVERE_SPEEDING_MPH,
        REWARD_SEVERE_SPEEDING,
        SCORE_SEVERE_SPEEDING,
        violation_increment=1,
    ),
    # Walking/running overrides whatever band matched above
    RewardRule(
        "exercise",
        lambda speed: EXERCISE_MIN_MPH <= speed <= EXERCISE_MAX_MPH,
        REWARD_EXERCISE,
        SCORE_EXERCISE,
    ),
)

# Serializes read-modify-write of the reward state per user_id.
# Entries vanish once no in-flight call holds the lock.
_user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def evaluate_rules(
    speed_mph: float,
    duration_minutes: float,
    rules: tuple[RewardRule, ...] = REWARD_RULES,
) -> RewardOutcome:
    """
    Run the ordered rule table for one observation.

    Rewards are granted per whole minute, so observations shorter than a
    minute move the score but not the reward.
    """
    whole_minutes = math.floor(duration_minutes)
    reward_delta = 0
    score_delta = 0.0
    violations = 0
    matched: list[str] = []

    for rule in rules:
        if not rule.matches(speed_mph):
            continue
        reward_delta = rule.reward_per_minute * whole_minutes
        score_delta = rule.score_delta
        violations += rule.violation_increment
        matched.append(rule.name)

    return RewardOutcome(
        reward_delta=reward_delta,
        score_delta=score_delta,
        violation_increment=violations,
        matched_rules=matched,
    )


def aggregate_adjustment(total_minutes: float, average_speed_mph: float) -> int:
    """Bonus or penalty once the user has logged AGGREGATE_MIN_DRIVING_MINUTES."""
    if total_minutes < AGGREGATE_MIN_DRIVING_MINUTES:
        return 0
    if average_speed_mph <= SPEED_LIMIT_MPH:
        return AGGREGATE_BONUS
    if average_speed_mph > SEVERE_SPEEDING_MPH:
        return AGGREGATE_PENALTY
    return 0


def _crossed_month(last: datetime, now: datetime) -> bool:
    return (last.year, last.month) != (now.year, now.month)


def apply_observation(
    state: SafetyRewardState,
    speed_mph: float,
    duration_minutes: float,
    now: datetime,
) -> tuple[SafetyRewardState, RewardOutcome]:
    """Pure state transition for one observation. `state` is not modified."""
    monthly_reward = state.monthly_reward
    violation_count = state.speed_violation_count
    if _crossed_month(state.last_evaluated_at, now):
        monthly_reward = 0
        violation_count = 0

    total_minutes = state.total_driving_minutes + duration_minutes
    if total_minutes > 0:
        average_speed = (
            state.average_speed_mph * state.total_driving_minutes
            + speed_mph * duration_minutes
        ) / total_minutes
    else:
        average_speed = speed_mph

    outcome = evaluate_rules(speed_mph, duration_minutes)
    adjustment = aggregate_adjustment(total_minutes, average_speed)
    if adjustment:
        outcome.reward_delta += adjustment
        outcome.matched_rules.append(
            "aggregate_bonus" if adjustment > 0 else "aggregate_penalty"
        )

    gained = max(0, outcome.reward_delta)
    updated = SafetyRewardState(
        total_reward=max(0, state.total_reward + outcome.reward_delta),
        weekly_reward=state.weekly_reward + gained,
        monthly_reward=monthly_reward + gained,
        safety_score=min(
            SAFETY_SCORE_MAX,
            max(SAFETY_SCORE_MIN, state.safety_score + outcome.score_delta),
        ),
        speed_violation_count=violation_count + outcome.violation_increment,
        average_speed_mph=average_speed,
        total_driving_minutes=total_minutes,
        last_evaluated_at=now,
    )
    return updated, outcome


async def record_observation(
    user_id: str,
    speed_mph: float,
    duration_minutes: float,
    now: Optional[datetime] = None,
) -> Optional[SafetyRewardState]:
    """
    Apply one observation to the user's stored reward state and persist it.

    Callers must space calls at least settings.reward_interval_seconds apart
    per user. Returns the new state, or None if the observation was dropped.
    """
    if speed_mph < 0 or duration_minutes < 0:
        logger.warning(
            "reward_observation_rejected",
            user_id=user_id,
            speed_mph=speed_mph,
            duration_minutes=duration_minutes,
        )
        return None

    now = now or datetime.now()
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock

    async with lock:
        try:
            state = await load_reward_state(user_id, now)
            updated, outcome = apply_observation(
                state, speed_mph, duration_minutes, now
            )
            await save_reward_state(user_id, updated)
        except PersistenceFailure as exc:
            logger.error(
                "reward_observation_dropped",
                user_id=user_id,
                error=str(exc),
            )
            return None

    logger.info(
        "reward_observation_recorded",
        user_id=user_id,
        speed_mph=speed_mph,
        duration_minutes=round(duration_minutes, 2),
        reward_delta=outcome.reward_delta,
        score_delta=outcome.score_delta,
        rules=outcome.matched_rules,
        total_reward=updated.total_reward,
        safety_score=round(updated.safety_score, 1),
    )
    return updated
