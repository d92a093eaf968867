"""
app/services/purchase_service.py

Two-phase claim on a lead: lock, then purchase.

Both phases are a single conditional UPDATE, so two contractors racing for
the same lead cannot both win. Every call is safe to retry: a lock or
purchase the caller already holds is returned instead of failing. A client
that lost a response should re-fetch the lead rather than assume failure.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Forbidden, MarketplaceError, NotFound, Unauthorized, ValidationFailed
from app.models.lead import Lead, LeadStatus
from app.models.profile import Role
from app.models.project import MatchStatus, ProjectMatch
from app.services.lead_events import record_lead_event
from app.services.lead_service import LOCK_FIELDS_CLEARED

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "This lead has already been purchased or is no longer available."


@dataclass
class LockResult:
    lead: Lead
    replayed: bool = False
    client_secret: Optional[str] = None

    @property
    def message(self) -> str:
        return "Lead already locked by you" if self.replayed else "Lead locked successfully"


@dataclass
class PurchaseResult:
    lead: Lead
    replayed: bool = False

    @property
    def message(self) -> str:
        return "Lead already purchased by you" if self.replayed else "Lead purchased successfully"


@dataclass
class CheckoutOutcome:
    success: bool
    lead: Optional[Lead] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: int = 200


class PurchaseService:
    def __init__(self, db: Session, lock_duration: timedelta = None, mock_mode: bool = None):
        self.db = db
        self.lock_duration = lock_duration or timedelta(minutes=settings.LOCK_DURATION_MINUTES)
        self.mock_mode = settings.PAYMENTS_MOCK_MODE if mock_mode is None else mock_mode

    def _require_contractor(self, user, action: str):
        if user is None:
            raise Unauthorized()
        if user.role != Role.CONTRACTOR:
            raise Forbidden(f"Only contractors can {action} leads")

    def _load(self, lead_id: int) -> Lead:
        lead = self.db.get(Lead, lead_id)
        if not lead:
            raise NotFound("Lead not found", "LEAD_NOT_FOUND")
        self.db.refresh(lead)
        return lead

    # ---------------------------------------------------------
    # 1. LOCK
    # ---------------------------------------------------------
    def lock(self, user, lead_id: int, idempotency_key: str) -> LockResult:
        if user is None:
            raise Unauthorized()
        if not idempotency_key:
            raise ValidationFailed("Idempotency-Key header is required", "MISSING_IDEMPOTENCY_KEY")
        self._require_contractor(user, "lock")

        now = datetime.utcnow()
        stale_before = now - self.lock_duration

        # AVAILABLE, or LOCKED by anyone whose lock has run out
        claimable = or_(
            Lead.status == LeadStatus.AVAILABLE,
            and_(Lead.status == LeadStatus.LOCKED, Lead.locked_at < stale_before),
        )
        rows = (
            self.db.query(Lead)
            .filter(Lead.id == lead_id, claimable)
            .update(
                {
                    "status": LeadStatus.LOCKED,
                    "locked_by_id": user.id,
                    "locked_at": now,
                    "lock_idempotency_key": idempotency_key,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if rows:
            lead = self._load(lead_id)
            logger.info(f"🔒 Lead {lead_id} locked by contractor {user.id}")
            record_lead_event(self.db, lead_id, "locked", user.id, {"idempotency_key": idempotency_key})
            return LockResult(lead=lead, client_secret=self._client_secret(lead_id))

        lead = self._load(lead_id)

        if lead.status == LeadStatus.LOCKED and lead.locked_by_id == user.id:
            return LockResult(lead=lead, replayed=True)
        if lead.status == LeadStatus.LOCKED:
            raise Conflict("This lead is currently locked by another user", "LEAD_LOCKED")
        if lead.status in LeadStatus.SOLD:
            raise Conflict("This lead has already been purchased", "LEAD_ALREADY_PURCHASED")
        raise Conflict("This lead is no longer available", "LEAD_UNAVAILABLE")

    def release(self, user, lead_id: int) -> Lead:
        """Lock holder gives the lead back (e.g. abandoned checkout)."""
        self._require_contractor(user, "release")

        values = dict(LOCK_FIELDS_CLEARED)
        values.update({"status": LeadStatus.AVAILABLE, "updated_at": datetime.utcnow()})
        rows = (
            self.db.query(Lead)
            .filter(Lead.id == lead_id, Lead.status == LeadStatus.LOCKED, Lead.locked_by_id == user.id)
            .update(values, synchronize_session=False)
        )
        self.db.commit()

        lead = self._load(lead_id)
        if not rows:
            raise Conflict("You do not hold a lock on this lead", "LOCK_NOT_HELD")

        record_lead_event(self.db, lead_id, "lock_released", user.id)
        return lead

    # ---------------------------------------------------------
    # 2. PURCHASE
    # ---------------------------------------------------------
    def purchase(self, user, lead_id: int) -> PurchaseResult:
        self._require_contractor(user, "purchase")

        # Live payments complete through the processor's webhook, not this call
        if not self.mock_mode:
            raise Conflict("Purchases are finalized by the payment processor in live mode.", "PAYMENTS_LIVE_MODE")

        now = datetime.utcnow()
        stale_before = now - self.lock_duration

        rows = (
            self.db.query(Lead)
            .filter(
                Lead.id == lead_id,
                Lead.status == LeadStatus.LOCKED,
                Lead.locked_by_id == user.id,
                Lead.locked_at >= stale_before,
            )
            .update(
                {
                    "status": LeadStatus.PURCHASED,
                    "contractor_id": user.id,
                    "purchased_at": now,
                    # locked_by_id stays as the permanent purchaser reference
                    "locked_at": None,
                    "lock_idempotency_key": None,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if rows:
            lead_project = select(Lead.project_id).where(Lead.id == lead_id).scalar_subquery()
            (
                self.db.query(ProjectMatch)
                .filter(
                    ProjectMatch.project_id == lead_project,
                    ProjectMatch.contractor_id == user.id,
                    ProjectMatch.status == MatchStatus.MATCHED,
                )
                .update({"status": MatchStatus.LEAD_PURCHASED}, synchronize_session=False)
            )
        self.db.commit()

        if rows:
            lead = self._load(lead_id)
            logger.info(f"💰 Lead {lead_id} purchased by contractor {user.id}")
            record_lead_event(
                self.db, lead_id, "purchased", user.id,
                {"mock_mode": self.mock_mode, "purchased_at": now.isoformat()},
            )
            return PurchaseResult(lead=lead)

        lead = self._load(lead_id)

        if lead.status in LeadStatus.SOLD and lead.contractor_id == user.id:
            return PurchaseResult(lead=lead, replayed=True)
        if lead.status in LeadStatus.SOLD:
            raise Conflict("This lead has already been purchased", "LEAD_ALREADY_PURCHASED")
        if lead.status == LeadStatus.LOCKED and lead.locked_by_id == user.id:
            raise Conflict("Your lock on this lead has expired", "LOCK_EXPIRED")
        raise Conflict("Lead must be locked by you before purchase", "LOCK_NOT_HELD")

    # ---------------------------------------------------------
    # 3. COMBINED FLOW
    # ---------------------------------------------------------
    def lock_and_purchase(self, user, lead_id: int, idempotency_key: str) -> CheckoutOutcome:
        """
        Lock, then purchase. A failed purchase leaves the lock in place;
        releasing it is the expiry sweep's job.
        """
        try:
            try:
                self.lock(user, lead_id, idempotency_key)
            except Conflict as e:
                # A retry after our own purchase went through; purchase() replays it
                if e.error_code != "LEAD_ALREADY_PURCHASED":
                    raise
            result = self.purchase(user, lead_id)
        except MarketplaceError as e:
            message = UNAVAILABLE_MESSAGE if isinstance(e, Conflict) and e.error_code != "PAYMENTS_LIVE_MODE" else e.message
            return CheckoutOutcome(success=False, error=message, error_code=e.error_code, status_code=e.status_code)
        return CheckoutOutcome(success=True, lead=result.lead)

    def _client_secret(self, lead_id: int) -> Optional[str]:
        # A real payment intent's client secret would be returned here in live mode
        if self.mock_mode:
            return f"mock_secret_{lead_id}_{int(time.time() * 1000)}"
        return None


# ---------------------------------------------------------
# 4. EXPIRY SWEEP (run by the scheduler)
# ---------------------------------------------------------
def release_expired_locks(db: Session, lock_duration: timedelta = None, now: datetime = None) -> int:
    """Reverts LOCKED leads whose lock ran out to AVAILABLE. Returns how many."""
    lock_duration = lock_duration or timedelta(minutes=settings.LOCK_DURATION_MINUTES)
    now = now or datetime.utcnow()
    stale_before = now - lock_duration

    stale = (
        db.query(Lead.id, Lead.locked_by_id)
        .filter(Lead.status == LeadStatus.LOCKED, Lead.locked_at < stale_before)
        .all()
    )

    released = 0
    for lead_id, holder_id in stale:
        values = dict(LOCK_FIELDS_CLEARED)
        values.update({"status": LeadStatus.AVAILABLE, "updated_at": now})
        # Re-check in the UPDATE itself: the holder may have purchased meanwhile
        rows = (
            db.query(Lead)
            .filter(Lead.id == lead_id, Lead.status == LeadStatus.LOCKED, Lead.locked_at < stale_before)
            .update(values, synchronize_session=False)
        )
        db.commit()
        if rows:
            released += 1
            record_lead_event(db, lead_id, "lock_expired", None, {"previous_holder_id": holder_id})

    if released:
        logger.info(f"🔓 Released {released} expired lead lock(s)")
    return released
