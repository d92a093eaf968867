from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.core.database import get_db
from app.models.profile import Profile
from app.schemas.proposal import DraftProposalResponse, ProposalResponse, RespondRequest, SendProposalRequest
from app.services.proposal_service import ProposalService

router = APIRouter(prefix="/api/proposals", tags=["Proposals"])


@router.get("/draft", response_model=DraftProposalResponse)
def draft_proposal(
    match_id: int = Query(..., alias="matchId"),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Line items pre-priced from the assessment's recommendations."""
    items = ProposalService(db).draft_for_match(user, match_id)
    return {"match_id": match_id, "line_items": items}


@router.post("", response_model=ProposalResponse, status_code=201)
def send_proposal(
    request: SendProposalRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ProposalService(db).send(
        user,
        request.match_id,
        request.line_items,
        estimated_duration=request.estimated_duration,
        notes=request.notes,
    )


@router.get("/{proposal_id}", response_model=ProposalResponse)
def get_proposal(proposal_id: int, user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    """The homeowner's first read marks the proposal viewed."""
    return ProposalService(db).get_for_reader(user, proposal_id)


@router.post("/{proposal_id}/respond", response_model=ProposalResponse)
def respond_to_proposal(
    proposal_id: int,
    request: RespondRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ProposalService(db).respond(user, proposal_id, request.accept)
