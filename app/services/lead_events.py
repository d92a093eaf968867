import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.lead import LeadEvent

logger = logging.getLogger(__name__)


def record_lead_event(db: Session, lead_id: int, event_type: str, actor_id: int = None, metadata: dict = None):
    """
    Appends an audit event in its own commit, after the primary write has
    been committed. Audit failures are logged and never raised.
    """
    try:
        event = LeadEvent(
            lead_id=lead_id,
            actor_id=actor_id,
            type=event_type,
            metadata_json=metadata or {},
            created_at=datetime.utcnow(),
        )
        db.add(event)
        db.commit()
        return event
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to record '{event_type}' event for lead {lead_id}: {e}")
        return None
