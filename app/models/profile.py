from sqlalchemy import Column, Integer, String, Boolean, Float, TIMESTAMP, JSON
from datetime import datetime
from app.core.database import Base


class Role:
    HOMEOWNER = "homeowner"
    CONTRACTOR = "contractor"
    ADMIN = "admin"


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    phone = Column(String, nullable=True)

    role = Column(String, default=Role.HOMEOWNER)  # 'homeowner', 'contractor', 'admin'

    # Contractor-only fields
    company_name = Column(String, nullable=True)
    is_caps_certified = Column(Boolean, default=False)
    years_experience = Column(Integer, nullable=True)
    specialties = Column(JSON, default=list)  # e.g. ["Grab Bars", "Wheelchair Ramps"]
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    service_area_radius = Column(Float, nullable=True)  # miles

    created_at = Column(TIMESTAMP, default=datetime.utcnow)
