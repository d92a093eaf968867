from sqlalchemy import Column, Integer, String, Float, Numeric, TIMESTAMP, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class ProjectStatus:
    DRAFT = "draft"
    OPEN_FOR_BIDS = "open_for_bids"
    MATCHING_COMPLETE = "matching_complete"
    PROPOSALS_RECEIVED = "proposals_received"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    # Matching may (re)run only before a contractor is chosen
    MATCHABLE = (DRAFT, OPEN_FOR_BIDS, MATCHING_COMPLETE)


class MatchStatus:
    MATCHED = "matched"
    LEAD_PURCHASED = "lead_purchased"
    PROPOSAL_SENT = "proposal_sent"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    DECLINED = "declined"

    # Matches a contractor can still send a proposal on
    OPEN = (MATCHED, LEAD_PURCHASED)


# ---------------------------------------------------------
# 1. PROJECTS (The Homeowner's Undertaking)
# ---------------------------------------------------------
class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)

    homeowner_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String)

    # {"street", "city", "state", "zip"} as submitted
    address = Column(JSON, nullable=True)
    # PostGIS EWKT, e.g. "SRID=4326;POINT(-97.74 30.26)"
    location = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    urgency = Column(String, nullable=True)
    budget_range = Column(String, nullable=True)

    status = Column(String, default=ProjectStatus.DRAFT)
    selected_contractor_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    assessments = relationship("Assessment", back_populates="project")
    matches = relationship("ProjectMatch", back_populates="project")


# ---------------------------------------------------------
# 2. PROJECT MATCHES (Project x Contractor candidate)
# ---------------------------------------------------------
class ProjectMatch(Base):
    __tablename__ = "project_matches"

    id = Column(Integer, primary_key=True, index=True)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    contractor_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)

    match_score = Column(Float, default=0)
    distance_miles = Column(Float, nullable=True)

    # Status Flow: 'matched' -> 'lead_purchased' -> 'proposal_sent' -> 'proposal_accepted' | 'proposal_rejected' | 'declined'
    status = Column(String, default=MatchStatus.MATCHED)

    # Mirrors of the latest proposal, for display
    proposed_cost = Column(Numeric(10, 2), nullable=True)
    proposal_details = Column(JSON, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="matches")
    contractor = relationship("Profile", foreign_keys=[contractor_id])
    proposals = relationship("Proposal", back_populates="match")
