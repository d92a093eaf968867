from sqlalchemy import Column, Integer, String, TIMESTAMP, ForeignKey
from datetime import datetime
from app.core.database import Base


class ScanSession(Base):
    __tablename__ = "scan_sessions"

    id = Column(Integer, primary_key=True, index=True)

    homeowner_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)

    original_image_url = Column(String, nullable=True)
    generated_image_url = Column(String, nullable=True)
    room_type = Column(String, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow)
