"""
tracking/schemas.py

Pydantic data models for the tracking core.
- RawFix / FixError: items emitted by the position source
- MotionSample: inferred motion state published as the current location
- SafetyRewardState: the per-user reward ledger and safety score
- RewardOutcome: the deltas one observation produced
- MemberPresence: display status of a circle member
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from tracking.constants import SAFETY_SCORE_DEFAULT


class AccuracyTier(str, Enum):
    """GPS quality tier derived from a fix's reported accuracy."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FixErrorKind(str, Enum):
    """Failure categories reported by the position source."""

    PERMISSION_DENIED = "permission-denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class PositionOptions(BaseModel):
    """Subscription options handed to the position source."""

    high_accuracy: bool = True
    max_fix_age_ms: int = Field(ge=0)
    deadline_ms: int = Field(gt=0)


class RawFix(BaseModel):
    """One raw device position report. Never persisted directly."""

    latitude: float
    longitude: float
    accuracy_m: float = Field(ge=0)
    heading_deg: Optional[float] = None
    altitude_m: Optional[float] = None
    reported_speed_mps: Optional[float] = None
    timestamp_ms: int  # epoch milliseconds


class FixError(BaseModel):
    """Structured error emitted by the position source in place of a fix."""

    kind: FixErrorKind
    message: str = ""


class MotionSample(BaseModel):
    """Smoothed, classified motion state derived from a single RawFix."""

    latitude: float
    longitude: float
    speed_mph: int = Field(ge=0)
    battery_pct: int = Field(ge=0, le=100)
    is_driving: bool
    accuracy_m: float
    heading_deg: Optional[float] = None
    altitude_m: Optional[float] = None
    observed_at: datetime
    tier: AccuracyTier


class SafetyRewardState(BaseModel):
    """Cumulative reward ledger and safety score for one user."""

    total_reward: int = Field(default=0, ge=0)
    weekly_reward: int = 0
    monthly_reward: int = 0
    safety_score: float = Field(default=SAFETY_SCORE_DEFAULT, ge=0, le=100)
    speed_violation_count: int = Field(default=0, ge=0)
    average_speed_mph: float = 0.0
    total_driving_minutes: float = Field(default=0.0, ge=0)
    last_evaluated_at: datetime

    @classmethod
    def initial(cls, now: datetime) -> "SafetyRewardState":
        """Defaults assigned at account creation."""
        return cls(last_evaluated_at=now)


class RewardOutcome(BaseModel):
    """Deltas produced by evaluating one (speed, duration) observation."""

    reward_delta: int
    score_delta: float
    violation_increment: int
    matched_rules: list[str]


class MemberPresence(BaseModel):
    """Display status of a circle member built from their stored records."""

    member_id: str
    display_name: str
    profile_picture: str = ""
    latitude: float
    longitude: float
    speed_mph: int
    battery_pct: int
    is_driving: bool
    accuracy_m: float
    last_updated: Optional[datetime] = None
    last_seen: str
    is_online: bool
    safety_score: float
    total_reward: int
