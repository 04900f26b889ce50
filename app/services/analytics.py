"""Analytics event logging.

Events are written in the caller's transaction. A failure to record one is
logged and never fails the request that produced it.
"""

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.system import AnalyticsEvent

logger = logging.getLogger(__name__)


async def log_event(
    db: AsyncSession,
    event_type: str,
    event_data: dict[str, Any],
    advisor_id: uuid.UUID | None = None,
) -> None:
    """Log an analytics event.

    Args:
        db: Database session
        event_type: Type of event (e.g., "chat_message", "document_processed")
        event_data: Additional event data
        advisor_id: Sim the event belongs to, if any
    """
    try:
        async with db.begin_nested():
            db.add(AnalyticsEvent(
                advisor_id=advisor_id,
                event_type=event_type,
                event_data=event_data,
            ))
        logger.debug(f"Logged event: {event_type}")
    except Exception as e:
        logger.warning(f"Failed to log analytics event: {e}")
