import logging
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Forbidden, NotFound, Unauthorized
from app.models.profile import Profile, Role
from app.models.project import Project, ProjectMatch, ProjectStatus
from app.schemas.assessment import Recommendation, parse_recommendations
from app.services.contractor_matcher import ContractorMatcher
from app.services.geocoding_service import GeocodingService, to_postgis_point

logger = logging.getLogger(__name__)

# Recommendation keyword -> contractor skill tags
SKILL_KEYWORDS = {
    "grab bar": ["Grab Bars", "Bathroom Safety"],
    "shower": ["Walk-in Shower", "Bathroom Modifications"],
    "ramp": ["Wheelchair Ramps", "Ramp Installation"],
    "stairlift": ["Stair Lifts", "Mobility Equipment"],
    "widening": ["Door Widening", "Doorway Modifications"],
    "handrail": ["Handrails", "Stairway Safety"],
    "lighting": ["Lighting Improvements", "Electrical"],
    "flooring": ["Non-slip Flooring", "Floor Modifications"],
    "bathroom": ["Bathroom Modifications", "Bathroom Safety"],
    "kitchen": ["Kitchen Modifications", "Counter Height Adjustment"],
    "accessibility": ["General Accessibility", "ADA Compliance"],
}

SEARCHING_MESSAGE = "Lead submitted! We're searching for contractors in your area."


def derive_required_skills(recommendations: List[Recommendation]) -> List[str]:
    """Skill tags for every keyword found in the recommendations, de-duplicated in first-seen order."""
    skills = []
    for rec in recommendations:
        text = rec.text.lower()
        for keyword, tags in SKILL_KEYWORDS.items():
            if keyword in text:
                skills.extend(tags)
    return list(dict.fromkeys(skills))


class MatchingService:
    def __init__(self, db: Session, geocoder: GeocodingService = None, matcher=None):
        self.db = db
        self.geocoder = geocoder or GeocodingService()
        self.matcher = matcher or ContractorMatcher(db)

    def _owned_project(self, user, project_id: int) -> Project:
        if user is None:
            raise Unauthorized()
        project = self.db.get(Project, project_id)
        if not project:
            raise NotFound("Project not found", "PROJECT_NOT_FOUND")
        if project.homeowner_id != user.id and user.role != Role.ADMIN:
            raise Forbidden("Project does not belong to this user")
        return project

    # ---------------------------------------------------------
    # 1. RUN MATCHING
    # ---------------------------------------------------------
    def run(self, user, project_id: int, address, urgency: str = None, budget_range: str = None) -> dict:
        project = self._owned_project(user, project_id)

        # Opens the project for bids unless a contractor was already chosen
        rows = (
            self.db.query(Project)
            .filter(
                Project.id == project.id,
                Project.status.in_(ProjectStatus.MATCHABLE),
                Project.selected_contractor_id.is_(None),
            )
            .update(
                {
                    "address": address.model_dump() if hasattr(address, "model_dump") else dict(address),
                    "urgency": urgency or settings.DEFAULT_URGENCY,
                    "budget_range": budget_range or settings.DEFAULT_BUDGET_RANGE,
                    "status": ProjectStatus.OPEN_FOR_BIDS,
                    "updated_at": datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        if not rows:
            self.db.rollback()
            self.db.refresh(project)
            raise Conflict(f"Matching is closed for a project that is {project.status}", "PROJECT_NOT_MATCHABLE")
        self.db.commit()
        self.db.refresh(project)

        coords = self.geocoder.resolve(address)
        if coords is None:
            # Still live in the marketplace, just without matches
            logger.warning(f"Project {project_id}: address could not be geocoded, skipping matching")
            return {
                "success": True,
                "message": "Lead submitted! We couldn't pinpoint your address, so no contractors were matched yet.",
                "matchCount": 0,
                "coordinates": None,
            }

        project.location = to_postgis_point(coords.lat, coords.lng)
        project.latitude = coords.lat
        project.longitude = coords.lng
        self.db.commit()

        recommendations = []
        for assessment in project.assessments:
            recommendations.extend(parse_recommendations(assessment.recommendations))
        skills = derive_required_skills(recommendations)

        coordinates = {"lat": coords.lat, "lng": coords.lng}
        try:
            matches = self.matcher.find_matches(project_id, skills or None)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Matching error for project {project_id}: {e}")
            return {"success": True, "message": SEARCHING_MESSAGE, "matchCount": 0, "coordinates": coordinates}

        match_count = len(matches or [])
        if match_count > 0:
            (
                self.db.query(Project)
                .filter(Project.id == project.id, Project.status == ProjectStatus.OPEN_FOR_BIDS)
                .update({"status": ProjectStatus.MATCHING_COMPLETE}, synchronize_session=False)
            )
            self.db.commit()

        if match_count > 0:
            message = f"Found {match_count} qualified contractor{'' if match_count == 1 else 's'} in your area!"
        else:
            message = SEARCHING_MESSAGE

        return {"success": True, "message": message, "matchCount": match_count, "coordinates": coordinates}

    # ---------------------------------------------------------
    # 2. LIST MATCHES
    # ---------------------------------------------------------
    def list_matches(self, user, project_id: int) -> list[dict]:
        self._owned_project(user, project_id)

        rows = (
            self.db.query(ProjectMatch, Profile)
            .outerjoin(Profile, ProjectMatch.contractor_id == Profile.id)
            .filter(ProjectMatch.project_id == project_id)
            .order_by(ProjectMatch.match_score.desc(), ProjectMatch.id)
            .all()
        )

        data = []
        for match, profile in rows:
            data.append({
                "id": match.id,
                "project_id": match.project_id,
                "contractor_id": match.contractor_id,
                "match_score": match.match_score or 0,
                "distance_miles": match.distance_miles,
                "status": match.status,
                "proposed_cost": float(match.proposed_cost) if match.proposed_cost is not None else None,
                "proposal_details": match.proposal_details,
                "created_at": match.created_at,
                "profiles": _contractor_summary(profile),
            })
        return data


def _contractor_summary(profile: Profile):
    if profile is None:
        return None
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "email": profile.email,
        "phone": profile.phone,
        "company_name": profile.company_name,
        "is_caps_certified": bool(profile.is_caps_certified),
        "years_experience": profile.years_experience,
        "service_area_radius": profile.service_area_radius,
    }
