from __future__ import annotations

import logging
from typing import Literal

from sqlalchemy.orm import Session

from soc_scheduler.models import ActivityLogEntry, User

logger = logging.getLogger(__name__)

ActivityType = Literal["SHIFT_UPDATE", "AVAILABILITY_CHANGE", "SWAP_REQUEST", "LEAVE_REQUEST", "PROFILE_UPDATE", "OTHER"]


def log_activity(
    db: Session,
    user: User,
    action: str,
    details: str | None = None,
    type: ActivityType = "OTHER",
) -> ActivityLogEntry:
    """Append an activity entry; it commits with the caller's transaction."""
    entry = ActivityLogEntry(user_id=user.id, user_name=user.name, action=action, details=details, type=type)
    db.add(entry)
    logger.debug("activity %s by %s: %s", type, user.id, action)
    return entry
