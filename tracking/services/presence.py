"""
tracking/services/presence.py

Builds the status a circle member is shown with, from their stored
current-location and reward records. Missing or unreadable records fall
back to neutral defaults so one bad member never hides the rest.
"""

from datetime import datetime
from typing import Any, Optional

import structlog

from tracking.constants import (
    ONLINE_WINDOW_S,
    PRESENCE_DEFAULT_ACCURACY_M,
    PRESENCE_DEFAULT_BATTERY_PCT,
    PRESENCE_DRIVING_SPEED_MPH,
    SAFETY_SCORE_DEFAULT,
)
from tracking.errors import PersistenceFailure
from tracking.schemas import MemberPresence, SafetyRewardState
from tracking.services.persistence import load_current_location, load_reward_state

logger = structlog.get_logger(__name__)


def describe_last_seen(last_updated: Optional[datetime], now: datetime) -> str:
    """Human-readable age of the member's last published sample."""
    if last_updated is None:
        return "Never"
    seconds = max(0.0, (now - last_updated).total_seconds())
    if seconds < 60:
        return "now"
    if seconds < 3600:
        return f"{int(seconds // 60)} min ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)} hr ago"
    return f"{int(seconds // 86400)} days ago"


def is_online(last_updated: Optional[datetime], now: datetime) -> bool:
    if last_updated is None:
        return False
    return (now - last_updated).total_seconds() < ONLINE_WINDOW_S


def build_member_presence(
    member_id: str,
    display_name: str,
    location: Optional[dict[str, Any]],
    reward_state: Optional[SafetyRewardState],
    now: datetime,
) -> MemberPresence:
    location = location or {}
    speed = location.get("speed_mph") or 0
    last_updated = location.get("last_updated")

    return MemberPresence(
        member_id=member_id,
        display_name=display_name or location.get("user_name") or "User",
        profile_picture=location.get("profile_picture") or "",
        latitude=location.get("latitude") or 0.0,
        longitude=location.get("longitude") or 0.0,
        speed_mph=speed,
        battery_pct=location.get("battery_pct") or PRESENCE_DEFAULT_BATTERY_PCT,
        # Stored is_driving is ignored; members are shown driving above 3 mph
        is_driving=speed > PRESENCE_DRIVING_SPEED_MPH,
        accuracy_m=location.get("accuracy_m") or PRESENCE_DEFAULT_ACCURACY_M,
        last_updated=last_updated,
        last_seen=describe_last_seen(last_updated, now),
        is_online=is_online(last_updated, now),
        safety_score=(
            reward_state.safety_score if reward_state else SAFETY_SCORE_DEFAULT
        ),
        total_reward=reward_state.total_reward if reward_state else 0,
    )


async def load_member_presence(
    member_id: str,
    display_name: str,
    now: Optional[datetime] = None,
) -> MemberPresence:
    """Read both records for `member_id` and build its presence."""
    now = now or datetime.now()
    location: Optional[dict[str, Any]] = None
    reward_state: Optional[SafetyRewardState] = None

    try:
        location = await load_current_location(member_id)
        reward_state = await load_reward_state(member_id, now)
    except PersistenceFailure as exc:
        logger.warning(
            "member_presence_defaulted",
            member_id=member_id,
            error=str(exc),
        )

    return build_member_presence(
        member_id, display_name, location, reward_state, now
    )
