"""
Default contractor-matching query.

Ranks contractors whose service area covers the project by skill overlap
(70 points) and proximity (30 points), then stores the winners as
`matched` ProjectMatch rows. Any object with the same `find_matches`
signature can replace it (e.g. a PostGIS stored procedure wrapper).
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.profile import Profile, Role
from app.models.project import Project, ProjectMatch, MatchStatus
from app.services.geocoding_service import haversine_miles

logger = logging.getLogger(__name__)

SKILL_WEIGHT = 70
PROXIMITY_WEIGHT = 30


class ContractorMatcher:
    def __init__(self, db: Session, limit: int = None, default_radius_miles: float = None):
        self.db = db
        self.limit = limit or settings.MATCH_RESULT_LIMIT
        self.default_radius_miles = default_radius_miles or settings.DEFAULT_SERVICE_RADIUS_MILES

    def find_matches(self, project_id: int, required_skills: Optional[List[str]]) -> List[ProjectMatch]:
        project = self.db.get(Project, project_id)
        if project is None or project.latitude is None or project.longitude is None:
            return []

        wanted = set(required_skills or [])
        contractors = (
            self.db.query(Profile)
            .filter(
                Profile.role == Role.CONTRACTOR,
                Profile.latitude.isnot(None),
                Profile.longitude.isnot(None),
            )
            .all()
        )

        ranked = []
        for contractor in contractors:
            radius = contractor.service_area_radius or self.default_radius_miles
            distance = haversine_miles(project.latitude, project.longitude, contractor.latitude, contractor.longitude)
            if distance > radius:
                continue

            if wanted:
                overlap = len(wanted & set(contractor.specialties or []))
                if overlap == 0:
                    continue
                skill_score = overlap / len(wanted)
            else:
                skill_score = 1.0

            proximity = 1 - (distance / radius) if radius > 0 else 0
            score = round(SKILL_WEIGHT * skill_score + PROXIMITY_WEIGHT * proximity, 2)
            ranked.append((score, distance, contractor))

        ranked.sort(key=lambda r: (-r[0], r[1], r[2].id))
        ranked = ranked[: self.limit]

        existing = {
            m.contractor_id: m
            for m in self.db.query(ProjectMatch).filter(ProjectMatch.project_id == project_id).all()
        }

        matches = []
        for score, distance, contractor in ranked:
            match = existing.get(contractor.id)
            if match is None:
                match = ProjectMatch(
                    project_id=project_id,
                    contractor_id=contractor.id,
                    status=MatchStatus.MATCHED,
                )
                self.db.add(match)
            match.match_score = score
            match.distance_miles = round(distance, 2)
            matches.append(match)

        self.db.commit()
        logger.info(f"Project {project_id}: {len(matches)} contractor(s) matched for skills {sorted(wanted)}")
        return matches
