"""
tracking/services/publisher.py

Publishes the latest MotionSample into the user's current-location record.
Best-effort telemetry: a failed write is logged and dropped, the next
sample supersedes it.
"""

from datetime import datetime
from typing import Optional

import structlog

from tracking.errors import PersistenceFailure
from tracking.schemas import MotionSample
from tracking.services.persistence import upsert_current_location

logger = structlog.get_logger(__name__)

_DEFAULT_DISPLAY_NAME: str = "User"


async def publish_motion_sample(
    user_id: str,
    sample: MotionSample,
    display_name: Optional[str] = None,
    profile_picture: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Merge-upsert `sample` plus identity metadata for `user_id`.

    Returns True if the write landed, False if it was dropped.
    """
    fields = sample.model_dump()
    fields["tier"] = sample.tier.value
    fields["user_name"] = display_name or _DEFAULT_DISPLAY_NAME
    fields["profile_picture"] = profile_picture or ""
    fields["last_updated"] = now or datetime.now()

    try:
        await upsert_current_location(user_id, fields)
    except PersistenceFailure as exc:
        logger.error(
            "motion_sample_publish_failed",
            user_id=user_id,
            error=str(exc),
        )
        return False

    logger.info(
        "motion_sample_published",
        user_id=user_id,
        speed_mph=sample.speed_mph,
        is_driving=sample.is_driving,
        tier=sample.tier.value,
    )
    return True
