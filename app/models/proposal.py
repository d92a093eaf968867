from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class ProposalStatus:
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"

    # Awaiting a homeowner response
    OPEN = (SENT, VIEWED)


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(Integer, primary_key=True, index=True)

    match_id = Column(Integer, ForeignKey("project_matches.id"), nullable=False, index=True)
    contractor_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)

    # [{"description", "quantity", "unit_price", "total", "from_recommendation"}], amounts in cents
    line_items = Column(JSON, default=list)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    estimated_duration = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Status Flow: 'draft' -> 'sent' -> 'viewed' -> 'accepted' | 'rejected' (| 'expired' after valid_until)
    status = Column(String, default=ProposalStatus.DRAFT)
    valid_until = Column(TIMESTAMP, nullable=True)

    sent_at = Column(TIMESTAMP, nullable=True)
    viewed_at = Column(TIMESTAMP, nullable=True)
    responded_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    # Relationships
    match = relationship("ProjectMatch", back_populates="proposals")
