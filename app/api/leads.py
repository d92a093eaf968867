from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.api.auth import get_current_user, get_optional_user
from app.core.database import get_db, get_session_factory
from app.models.profile import Profile
from app.schemas.lead import (
    CreateLeadRequest,
    LeadResponse,
    LockResponse,
    PublicLead,
    PurchaseResponse,
    StatusUpdateRequest,
    ViewResponse,
)
from app.services.lead_service import LeadService, lead_to_dict, scrub_lead_pii, track_lead_view
from app.services.purchase_service import PurchaseService

router = APIRouter(prefix="/api", tags=["Lead Marketplace"])


# =========================================================
# 1. MARKETPLACE FEED
# =========================================================

@router.get("/leads", response_model=List[PublicLead])
def list_leads(db: Session = Depends(get_db)):
    """Public feed: AVAILABLE leads only, without homeowner or payment identifiers."""
    return LeadService(db).list_public()


@router.post("/leads", response_model=LeadResponse, status_code=201)
def create_lead(
    request: CreateLeadRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    lead = LeadService(db).create(user, request)
    return lead_to_dict(lead)


@router.get("/me/leads")
def my_leads(user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    """Homeowner: leads they created. Contractor: leads they purchased."""
    return LeadService(db).list_for_user(user)


# =========================================================
# 2. LOCK / PURCHASE
# =========================================================

@router.post("/leads/{lead_id}/lock", response_model=LockResponse)
def lock_lead(
    lead_id: int,
    idempotency_key: Optional[str] = Header(None),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = PurchaseService(db).lock(user, lead_id, idempotency_key)
    # The lock holder has not paid yet, so they get the marketplace view
    return {
        "lead": scrub_lead_pii(lead_to_dict(result.lead)),
        "clientSecret": result.client_secret,
        "message": result.message,
    }


@router.delete("/leads/{lead_id}/lock", response_model=PublicLead)
def release_lead_lock(lead_id: int, user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    return scrub_lead_pii(lead_to_dict(PurchaseService(db).release(user, lead_id)))


@router.post("/leads/{lead_id}/purchase", response_model=PurchaseResponse)
def purchase_lead(lead_id: int, user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    result = PurchaseService(db).purchase(user, lead_id)
    return {"status": result.lead.status, "lead": lead_to_dict(result.lead), "message": result.message}


@router.post("/leads/{lead_id}/lock-and-purchase")
def lock_and_purchase_lead(
    lead_id: int,
    idempotency_key: Optional[str] = Header(None),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = PurchaseService(db).lock_and_purchase(user, lead_id, idempotency_key)
    body = {
        "success": outcome.success,
        "lead": lead_to_dict(outcome.lead) if outcome.lead else None,
        "error": outcome.error,
        "errorCode": outcome.error_code,
    }
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(body))


# =========================================================
# 3. PROGRESS
# =========================================================

@router.post("/leads/{lead_id}/status", response_model=LeadResponse)
def update_lead_status(
    lead_id: int,
    request: StatusUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    lead = LeadService(db).update_progress(
        user,
        lead_id,
        from_status=request.from_status,
        to_status=request.to_status,
        current_stage=request.current_stage,
        progress=request.progress,
    )
    return lead_to_dict(lead)


# =========================================================
# 4. VIEW TRACKING
# =========================================================

@router.post("/leads/{lead_id}/view", response_model=ViewResponse)
def track_view(
    lead_id: int,
    background_tasks: BackgroundTasks,
    user: Optional[Profile] = Depends(get_optional_user),
    session_factory=Depends(get_session_factory),
):
    """Fire-and-forget: the count is bumped after the response is sent."""
    background_tasks.add_task(track_lead_view, session_factory, lead_id, user.id if user else None)
    return {"success": True, "view_count": None}


@router.get("/leads/{lead_id}/view", response_model=ViewResponse)
def get_view_count(lead_id: int, db: Session = Depends(get_db)):
    return {"success": True, "view_count": LeadService(db).get_view_count(lead_id)}
