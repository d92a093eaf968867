from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class LineItemIn(BaseModel):
    """A draft line item as the contractor edits it. Prices in dollars."""
    id: Optional[str] = None
    description: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(..., ge=0, alias="price")
    from_recommendation: bool = False
    included: bool = True

    class Config:
        populate_by_name = True


class DraftProposalResponse(BaseModel):
    match_id: int
    line_items: List[LineItemIn]


class SendProposalRequest(BaseModel):
    match_id: int = Field(..., alias="matchId")
    line_items: List[LineItemIn] = Field(..., alias="lineItems")
    estimated_duration: Optional[str] = Field("2-4 weeks", alias="estimatedDuration")
    notes: Optional[str] = None

    class Config:
        populate_by_name = True


class RespondRequest(BaseModel):
    accept: bool


class LineItemOut(BaseModel):
    description: str
    quantity: int
    unit_price: int  # cents
    total: int  # cents
    from_recommendation: bool


class ProposalResponse(BaseModel):
    id: int
    match_id: int
    contractor_id: int
    line_items: List[LineItemOut]
    total_amount_cents: int
    estimated_duration: Optional[str] = None
    notes: Optional[str] = None
    status: str
    valid_until: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
