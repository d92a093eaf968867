from sqlalchemy import Column, Integer, String, Float, TIMESTAMP, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base


class Assessment(Base):
    """
    Output of the AI hazard analysis. Written asynchronously by the analysis
    pipeline; the marketplace only reads `recommendations`.
    """
    __tablename__ = "ar_assessments"

    id = Column(Integer, primary_key=True, index=True)

    project_id = Column(Integer, ForeignKey("projects.id"), index=True)
    homeowner_id = Column(Integer, ForeignKey("profiles.id"))

    status = Column(String, default="pending")  # 'pending', 'processing', 'completed', 'failed'
    accessibility_score = Column(Float, nullable=True)

    # [{"hazard", "details", "area", "severity"}]
    identified_hazards = Column(JSON, default=list)
    # [{"recommendation", "details", "priority"}]
    recommendations = Column(JSON, default=list)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)

    project = relationship("Project", back_populates="assessments")
