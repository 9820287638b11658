"""
tracking/services/persistence.py

Durable store access for the current-location and reward-state records.
Uses SQLAlchemy 2.0 async sessions. Every database error is re-raised as
PersistenceFailure so callers can drop the cycle without knowing the driver.
"""

from datetime import datetime
from typing import Any, Optional

import structlog

from db.models import AsyncSessionLocal, UserLocation, UserRewardState
from tracking.errors import PersistenceFailure
from tracking.schemas import SafetyRewardState

logger = structlog.get_logger(__name__)

_LOCATION_COLUMNS: frozenset[str] = frozenset(
    UserLocation.__table__.columns.keys()
) - {"user_id"}

_REWARD_FIELDS: tuple[str, ...] = tuple(SafetyRewardState.model_fields)


async def upsert_current_location(user_id: str, fields: dict[str, Any]) -> None:
    """
    Merge `fields` into the user's current-location row, creating it if needed.

    Columns not named in `fields` keep their stored values.
    """
    unknown = set(fields) - _LOCATION_COLUMNS
    if unknown:
        logger.warning(
            "location_fields_ignored",
            user_id=user_id,
            fields=sorted(unknown),
        )
    try:
        async with AsyncSessionLocal() as session:
            row = await session.get(UserLocation, user_id)
            if row is None:
                row = UserLocation(user_id=user_id)
                session.add(row)
            for key, value in fields.items():
                if key in _LOCATION_COLUMNS:
                    setattr(row, key, value)
            await session.commit()
    except Exception as exc:
        raise PersistenceFailure(f"location upsert failed: {exc}") from exc


async def load_current_location(user_id: str) -> Optional[dict[str, Any]]:
    """Return the stored current-location fields, or None if never published."""
    try:
        async with AsyncSessionLocal() as session:
            row = await session.get(UserLocation, user_id)
    except Exception as exc:
        raise PersistenceFailure(f"location load failed: {exc}") from exc
    if row is None:
        return None
    return {column: getattr(row, column) for column in _LOCATION_COLUMNS}


def _state_from_row(row: UserRewardState) -> SafetyRewardState:
    return SafetyRewardState(
        **{field: getattr(row, field) for field in _REWARD_FIELDS}
    )


async def create_reward_state(user_id: str, now: datetime) -> SafetyRewardState:
    """Insert the account-creation defaults unless a row already exists."""
    try:
        async with AsyncSessionLocal() as session:
            row = await session.get(UserRewardState, user_id)
            if row is not None:
                return _state_from_row(row)
            state = SafetyRewardState.initial(now)
            session.add(UserRewardState(user_id=user_id, **state.model_dump()))
            await session.commit()
    except Exception as exc:
        raise PersistenceFailure(f"reward state create failed: {exc}") from exc

    logger.info("reward_state_created", user_id=user_id)
    return state


async def load_reward_state(user_id: str, now: datetime) -> SafetyRewardState:
    """Read the user's reward state; a missing row yields creation defaults."""
    try:
        async with AsyncSessionLocal() as session:
            row = await session.get(UserRewardState, user_id)
    except Exception as exc:
        raise PersistenceFailure(f"reward state load failed: {exc}") from exc

    if row is None:
        logger.warning("reward_state_missing_defaulted", user_id=user_id)
        return SafetyRewardState.initial(now)
    return _state_from_row(row)


async def save_reward_state(user_id: str, state: SafetyRewardState) -> None:
    """Write every reward-state field for the user."""
    try:
        async with AsyncSessionLocal() as session:
            row = await session.get(UserRewardState, user_id)
            if row is None:
                row = UserRewardState(user_id=user_id)
                session.add(row)
            for field, value in state.model_dump().items():
                setattr(row, field, value)
            await session.commit()
    except Exception as exc:
        raise PersistenceFailure(f"reward state save failed: {exc}") from exc
