from sqlalchemy import Column, Integer, String, Text, Float, Numeric, TIMESTAMP, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class LeadStatus:
    AVAILABLE = "AVAILABLE"
    LOCKED = "LOCKED"
    PURCHASED = "PURCHASED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"

    TERMINAL = (COMPLETED, ARCHIVED)
    # LOCKED or later: locked_by_id must be set
    CLAIMED = (LOCKED, PURCHASED, IN_PROGRESS, COMPLETED)
    SOLD = (PURCHASED, IN_PROGRESS, COMPLETED)


# Fields that must never leave the server on a public listing
PRIVATE_LEAD_FIELDS = (
    "homeowner_id",
    "contractor_id",
    "scan_id",
    "fingerprint",
    "stripe_payment_intent_id",
    "locked_by_id",
    "last_stripe_webhook_event_id",
)


# ---------------------------------------------------------
# 1. LEADS (The Marketplace Listing)
# ---------------------------------------------------------
class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)

    # Ownership (immutable after creation)
    homeowner_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    # Purchaser, set once the purchase completes
    contractor_id = Column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)

    # sha256 of the lead's source, one lead per scan (or title+location)
    fingerprint = Column(String(64), unique=True, nullable=False)

    # Listing
    title = Column(String, nullable=False)
    location = Column(String, nullable=False)
    scope = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    tags = Column(JSON, default=list)
    scope_tags = Column(JSON, default=list)
    price = Column(Numeric(10, 2), default=50)
    project_value = Column(Numeric(12, 2), nullable=True)
    estimated_value = Column(Numeric(12, 2), nullable=True)
    preview_image = Column(String, nullable=True)
    accessibility_score = Column(Float, nullable=True)

    # Provenance
    scan_id = Column(Integer, ForeignKey("scan_sessions.id"), nullable=True)
    assessment_id = Column(Integer, ForeignKey("ar_assessments.id"), nullable=True)
    # At most one lead per project; NULLs do not collide
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, unique=True, index=True)

    # Status Flow: AVAILABLE -> LOCKED -> PURCHASED -> IN_PROGRESS -> COMPLETED (ARCHIVED from any non-terminal)
    status = Column(String, default=LeadStatus.AVAILABLE, nullable=False, index=True)

    # Lock bookkeeping
    locked_by_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    locked_at = Column(TIMESTAMP, nullable=True)
    lock_idempotency_key = Column(String, nullable=True)

    # Payment references
    stripe_payment_intent_id = Column(String, nullable=True)
    last_stripe_webhook_event_id = Column(String, nullable=True)

    # Progress
    view_count = Column(Integer, default=0)
    current_stage = Column(String, nullable=True)
    progress = Column(Integer, default=0)  # 0-100

    purchased_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    events = relationship("LeadEvent", back_populates="lead")


# ---------------------------------------------------------
# 2. LEAD EVENTS (Append-only Audit Log)
# ---------------------------------------------------------
class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(Integer, primary_key=True, index=True)

    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)

    # Event Types: 'created', 'locked', 'purchased', 'lock_released', 'lock_expired', 'status_changed', 'viewed'
    type = Column(String, nullable=False)

    # 'metadata' is reserved on declarative classes
    metadata_json = Column("metadata", JSON, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    # Relationships
    lead = relationship("Lead", back_populates="events")
