import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PAYMENTS_MOCK_MODE"] = "true"
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["JWT_SECRET"] = "test-secret"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db, get_session_factory
from app.core.security import create_access_token
from app.main import app
from app.models import Assessment, Profile, Project, ProjectMatch, Role, ScanSession


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------
# DATA HELPERS
# ---------------------------------------------------------
def make_profile(db, role: str, **fields) -> Profile:
    profile = Profile(role=role, **fields)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def make_contractor(db, name: str, lat: float = 30.2672, lng: float = -97.7431,
                    specialties=None, radius: float = 25) -> Profile:
    return make_profile(
        db,
        Role.CONTRACTOR,
        email=f"{name.lower()}@example.com",
        full_name=name,
        latitude=lat,
        longitude=lng,
        specialties=specialties or [],
        service_area_radius=radius,
    )


def make_project(db, homeowner: Profile, recommendations=None, **fields) -> Project:
    project = Project(homeowner_id=homeowner.id, title="Bathroom safety upgrade", **fields)
    db.add(project)
    db.commit()
    if recommendations is not None:
        db.add(Assessment(
            project_id=project.id,
            homeowner_id=homeowner.id,
            status="completed",
            accessibility_score=62,
            recommendations=recommendations,
        ))
        db.commit()
    db.refresh(project)
    return project


def make_scan(db, homeowner: Profile, **fields) -> ScanSession:
    scan = ScanSession(
        homeowner_id=homeowner.id,
        original_image_url="https://cdn.example.com/scans/original.jpg",
        created_at=datetime(2026, 3, 1, 12, 0, 0),
        **fields,
    )
    db.add(scan)
    db.commit()
    db.refresh(scan)
    return scan


def make_match(db, project: Project, contractor: Profile, status: str = "matched", score: float = 80) -> ProjectMatch:
    match = ProjectMatch(project_id=project.id, contractor_id=contractor.id, status=status, match_score=score)
    db.add(match)
    db.commit()
    db.refresh(match)
    return match


def auth_headers(user: Profile) -> dict:
    token = create_access_token({"sub": str(user.id), "id": user.id, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def homeowner(db) -> Profile:
    return make_profile(db, Role.HOMEOWNER, email="hannah@example.com", full_name="Hannah Homeowner")


@pytest.fixture
def contractor(db) -> Profile:
    return make_contractor(db, "Xavier", specialties=["Grab Bars", "Bathroom Safety"])


@pytest.fixture
def other_contractor(db) -> Profile:
    return make_contractor(db, "Yolanda", specialties=["Wheelchair Ramps"])
