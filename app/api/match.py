from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.database import get_db
from app.models.profile import Profile
from app.schemas.match import MatchListResponse, MatchRequest, MatchResponse
from app.services.matching_service import MatchingService

router = APIRouter(prefix="/api", tags=["Contractor Matching"])


def get_matching_service(db: Session = Depends(get_db)) -> MatchingService:
    return MatchingService(db)


@router.post("/match", response_model=MatchResponse)
def run_matching(
    request: MatchRequest,
    user: Profile = Depends(get_current_user),
    service: MatchingService = Depends(get_matching_service),
):
    """Geocode the project address and find matching contractors."""
    return service.run(
        user,
        request.project_id,
        request.address,
        urgency=request.urgency,
        budget_range=request.budget_range,
    )


@router.get("/match", response_model=MatchListResponse)
def list_matches(
    project_id: int = Query(..., alias="projectId"),
    user: Profile = Depends(get_current_user),
    service: MatchingService = Depends(get_matching_service),
):
    return {"matches": service.list_matches(user, project_id)}
