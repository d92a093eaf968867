from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class AddressIn(BaseModel):
    street: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: Optional[str] = None


class MatchRequest(BaseModel):
    project_id: int = Field(..., alias="projectId")
    address: AddressIn
    urgency: Optional[str] = None
    budget_range: Optional[str] = Field(None, alias="budgetRange")

    class Config:
        populate_by_name = True


class Coordinates(BaseModel):
    lat: float
    lng: float


class MatchResponse(BaseModel):
    success: bool
    message: str
    matchCount: int
    coordinates: Optional[Coordinates] = None


# --- MATCH LISTING ---
class ContractorSummary(BaseModel):
    id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    is_caps_certified: bool = False
    years_experience: Optional[int] = None
    service_area_radius: Optional[float] = None

    class Config:
        from_attributes = True


class MatchItem(BaseModel):
    id: int
    project_id: int
    contractor_id: int
    match_score: float
    distance_miles: Optional[float] = None
    status: str
    proposed_cost: Optional[float] = None
    proposal_details: Optional[list] = None
    created_at: Optional[datetime] = None
    profiles: Optional[ContractorSummary] = None


class MatchListResponse(BaseModel):
    matches: List[MatchItem]
