from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


# --- 1. LEAD CREATION ---
class CreateLeadRequest(BaseModel):
    # Required, but checked by LeadService so the error carries VALIDATION_FAILED
    title: Optional[str] = None
    location: Optional[str] = None

    scope: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)
    scope_tags: List[str] = Field(default_factory=list, alias="scopeTags")
    project_value: Optional[float] = Field(None, alias="projectValue")
    scan_id: Optional[int] = Field(None, alias="scanId")
    assessment_id: Optional[int] = Field(None, alias="assessmentId")
    project_id: Optional[int] = Field(None, alias="projectId")
    preview_image: Optional[str] = Field(None, alias="previewImage")

    class Config:
        populate_by_name = True


# --- 2. LEAD RESPONSES ---
class PublicLead(BaseModel):
    """Marketplace view. Carries no homeowner or payment identifiers."""
    id: int
    title: str
    location: str
    scope: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = []
    scope_tags: List[str] = []
    price: float
    project_value: Optional[float] = None
    estimated_value: Optional[float] = None
    preview_image: Optional[str] = None
    accessibility_score: Optional[float] = None
    assessment_id: Optional[int] = None
    project_id: Optional[int] = None
    status: str
    view_count: int = 0
    current_stage: Optional[str] = None
    progress: int = 0
    locked_at: Optional[datetime] = None
    purchased_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LeadResponse(PublicLead):
    """Full view, only for the owning homeowner or the purchasing contractor."""
    homeowner_id: int
    contractor_id: Optional[int] = None
    scan_id: Optional[int] = None
    fingerprint: Optional[str] = None
    locked_by_id: Optional[int] = None
    stripe_payment_intent_id: Optional[str] = None
    last_stripe_webhook_event_id: Optional[str] = None


# --- 3. LOCK / PURCHASE ---
class LockResponse(BaseModel):
    lead: PublicLead
    clientSecret: Optional[str] = None
    message: str


class PurchaseResponse(BaseModel):
    status: str
    lead: LeadResponse
    message: str


class LockAndPurchaseResponse(BaseModel):
    success: bool
    lead: Optional[LeadResponse] = None
    error: Optional[str] = None
    errorCode: Optional[str] = None


# --- 4. PROGRESS ---
class StatusUpdateRequest(BaseModel):
    from_status: str = Field(..., alias="fromStatus")
    to_status: str = Field(..., alias="toStatus")
    current_stage: Optional[str] = Field(None, alias="currentStage")
    progress: Optional[int] = Field(None, ge=0, le=100)

    class Config:
        populate_by_name = True


class ViewResponse(BaseModel):
    success: bool = True
    view_count: Optional[int] = None
