import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    DuplicateLead,
    Forbidden,
    InvalidTransition,
    LeadStatusConflict,
    NotFound,
    ProjectAlreadyHasLead,
    Unauthorized,
    ValidationFailed,
)
from app.models.assessment import Assessment
from app.models.lead import Lead, LeadStatus, PRIVATE_LEAD_FIELDS
from app.models.profile import Role
from app.models.project import Project
from app.models.scan_session import ScanSession
from app.schemas.lead import CreateLeadRequest
from app.services.fingerprint import lead_fingerprint
from app.services.lead_events import record_lead_event

logger = logging.getLogger(__name__)

# (from, to) pairs the lifecycle allows
ALLOWED_TRANSITIONS = {
    (LeadStatus.AVAILABLE, LeadStatus.LOCKED),
    (LeadStatus.LOCKED, LeadStatus.PURCHASED),
    (LeadStatus.LOCKED, LeadStatus.AVAILABLE),  # lock release / expiry
    (LeadStatus.PURCHASED, LeadStatus.IN_PROGRESS),
    (LeadStatus.IN_PROGRESS, LeadStatus.COMPLETED),
    (LeadStatus.AVAILABLE, LeadStatus.ARCHIVED),
    (LeadStatus.LOCKED, LeadStatus.ARCHIVED),
    (LeadStatus.PURCHASED, LeadStatus.ARCHIVED),
    (LeadStatus.IN_PROGRESS, LeadStatus.ARCHIVED),
}

# Targets a participant may request directly; locking and purchasing go through PurchaseService
PROGRESS_TARGETS = (LeadStatus.IN_PROGRESS, LeadStatus.COMPLETED, LeadStatus.ARCHIVED)

LOCK_FIELDS_CLEARED = {"locked_by_id": None, "locked_at": None, "lock_idempotency_key": None}


def lead_to_dict(lead: Lead) -> dict:
    data = {}
    for column in Lead.__table__.columns:
        value = getattr(lead, column.key)
        if isinstance(value, Decimal):
            value = float(value)
        data[column.key] = value
    data.pop("lock_idempotency_key", None)
    return data


def scrub_lead_pii(data: dict) -> dict:
    """Drops homeowner and payment identifiers. Mandatory for every public listing."""
    return {k: v for k, v in data.items() if k not in PRIVATE_LEAD_FIELDS}


def is_valid_transition(from_status: str, to_status: str) -> bool:
    return (from_status, to_status) in ALLOWED_TRANSITIONS


class LeadService:
    def __init__(self, db: Session):
        self.db = db

    # ---------------------------------------------------------
    # 1. CREATE
    # ---------------------------------------------------------
    def create(self, user, data: CreateLeadRequest) -> Lead:
        if user is None:
            raise Unauthorized()
        if user.role != Role.HOMEOWNER:
            raise Forbidden("Only homeowners can create leads")

        title = (data.title or "").strip()
        location = (data.location or "").strip()
        if not title or not location:
            raise ValidationFailed("Title and location are required")

        scan = None
        if data.scan_id is not None:
            scan = self.db.get(ScanSession, data.scan_id)
            if not scan:
                raise NotFound("Scan session not found", "SCAN_NOT_FOUND")
            if scan.homeowner_id != user.id:
                raise Forbidden("Scan does not belong to this user", "SCAN_NOT_OWNED")

        if data.project_id is not None:
            project = self.db.get(Project, data.project_id)
            if not project:
                raise NotFound("Project not found", "PROJECT_NOT_FOUND")
            if project.homeowner_id != user.id:
                raise Forbidden("Project does not belong to this user", "PROJECT_NOT_OWNED")

        accessibility_score = None
        if data.assessment_id is not None:
            assessment = self.db.get(Assessment, data.assessment_id)
            if not assessment:
                raise NotFound("Assessment not found", "ASSESSMENT_NOT_FOUND")
            if assessment.homeowner_id not in (None, user.id):
                raise Forbidden("Assessment does not belong to this user", "ASSESSMENT_NOT_OWNED")
            accessibility_score = assessment.accessibility_score

        fingerprint = lead_fingerprint(
            user.id,
            scan_id=scan.id if scan else None,
            scan_created_at=scan.created_at if scan else None,
            title=title,
            location=location,
        )

        preview_image = data.preview_image
        if scan:
            preview_image = scan.generated_image_url or scan.original_image_url or preview_image

        price = Decimal(str(data.price)) if data.price is not None else Decimal(settings.DEFAULT_LEAD_PRICE)

        now = datetime.utcnow()
        lead = Lead(
            homeowner_id=user.id,
            fingerprint=fingerprint,
            title=title,
            location=location,
            scope=data.scope,
            description=data.description,
            price=price,
            tags=list(data.tags or []),
            scope_tags=list(data.scope_tags or []),
            project_value=Decimal(str(data.project_value)) if data.project_value is not None else None,
            preview_image=preview_image,
            accessibility_score=accessibility_score,
            scan_id=scan.id if scan else None,
            assessment_id=data.assessment_id,
            project_id=data.project_id,
            status=LeadStatus.AVAILABLE,
            view_count=0,
            progress=0,
            created_at=now,
            updated_at=now,
        )

        # Unique constraints on fingerprint and project_id are the duplicate checks
        self.db.add(lead)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self.db.query(Lead.id).filter(Lead.fingerprint == fingerprint).first():
                logger.info(f"Duplicate lead rejected for homeowner {user.id}")
                raise DuplicateLead()
            if data.project_id is not None and self.db.query(Lead.id).filter(Lead.project_id == data.project_id).first():
                logger.info(f"Second lead for project {data.project_id} rejected")
                raise ProjectAlreadyHasLead()
            raise

        self.db.refresh(lead)
        logger.info(f"✅ Lead {lead.id} created by homeowner {user.id}")

        record_lead_event(self.db, lead.id, "created", user.id, {"source": "scan" if scan else "manual"})
        return lead

    # ---------------------------------------------------------
    # 2. LISTINGS
    # ---------------------------------------------------------
    def list_public(self) -> list[dict]:
        leads = (
            self.db.query(Lead)
            .filter(Lead.status == LeadStatus.AVAILABLE)
            .order_by(Lead.created_at.desc(), Lead.id.desc())
            .all()
        )
        return [scrub_lead_pii(lead_to_dict(lead)) for lead in leads]

    def list_for_user(self, user) -> list[dict]:
        """Homeowners see what they created, contractors what they bought."""
        if user is None:
            raise Unauthorized()

        if user.role == Role.HOMEOWNER:
            leads = (
                self.db.query(Lead)
                .filter(Lead.homeowner_id == user.id)
                .order_by(Lead.created_at.desc())
                .all()
            )
            return [lead_to_dict(lead) for lead in leads]

        if user.role == Role.CONTRACTOR:
            leads = (
                self.db.query(Lead)
                .filter(Lead.contractor_id == user.id)
                .order_by(Lead.purchased_at.desc())
                .all()
            )
            return [
                lead_to_dict(lead) if lead.status in LeadStatus.SOLD else scrub_lead_pii(lead_to_dict(lead))
                for lead in leads
            ]

        leads = (
            self.db.query(Lead)
            .filter((Lead.homeowner_id == user.id) | (Lead.contractor_id == user.id))
            .order_by(Lead.created_at.desc())
            .all()
        )
        return [
            lead_to_dict(lead)
            if lead.homeowner_id == user.id or lead.status in LeadStatus.SOLD
            else scrub_lead_pii(lead_to_dict(lead))
            for lead in leads
        ]

    def get(self, lead_id: int) -> Lead:
        lead = self.db.get(Lead, lead_id)
        if not lead:
            raise NotFound("Lead not found", "LEAD_NOT_FOUND")
        return lead

    # ---------------------------------------------------------
    # 3. STATE MACHINE
    # ---------------------------------------------------------
    def transition(self, lead_id: int, from_expected: str, to: str, actor_id: int = None, **changes) -> Lead:
        """
        Applies `from_expected -> to` as one conditional UPDATE.

        Raises InvalidTransition for an edge the lifecycle does not have, and
        LeadStatusConflict when the lead is no longer in `from_expected`.
        """
        if not is_valid_transition(from_expected, to):
            raise InvalidTransition(f"Cannot move a lead from {from_expected} to {to}")

        now = datetime.utcnow()
        values = dict(changes)
        values["status"] = to
        values["updated_at"] = now

        if to == LeadStatus.AVAILABLE:
            values.update(LOCK_FIELDS_CLEARED)
        elif to == LeadStatus.LOCKED:
            if not values.get("locked_by_id"):
                raise ValidationFailed("A locked lead needs a lock holder")
            values.setdefault("locked_at", now)
        elif to == LeadStatus.COMPLETED:
            values.setdefault("completed_at", now)
            values.setdefault("progress", 100)

        rows = (
            self.db.query(Lead)
            .filter(Lead.id == lead_id, Lead.status == from_expected)
            .update(values, synchronize_session=False)
        )
        self.db.commit()

        if rows == 0:
            lead = self.get(lead_id)
            raise LeadStatusConflict(f"Lead is {lead.status}, expected {from_expected}")

        lead = self.get(lead_id)
        self.db.refresh(lead)
        record_lead_event(self.db, lead_id, "status_changed", actor_id, {"from": from_expected, "to": to})
        return lead

    def update_progress(self, user, lead_id: int, from_status: str, to_status: str,
                        current_stage: str = None, progress: int = None) -> Lead:
        if user is None:
            raise Unauthorized()

        lead = self.get(lead_id)
        participants = {lead.homeowner_id, lead.contractor_id}
        if user.id not in participants and user.role != Role.ADMIN:
            raise Forbidden("Only the homeowner or the purchasing contractor can update this lead")

        if to_status not in PROGRESS_TARGETS:
            raise InvalidTransition(f"Leads cannot be moved to {to_status} directly")

        changes = {}
        if current_stage is not None:
            changes["current_stage"] = current_stage
        if progress is not None:
            changes["progress"] = progress

        return self.transition(lead_id, from_status, to_status, actor_id=user.id, **changes)

    # ---------------------------------------------------------
    # 4. VIEWS
    # ---------------------------------------------------------
    def get_view_count(self, lead_id: int) -> int:
        row = self.db.query(Lead.view_count).filter(Lead.id == lead_id).first()
        return (row[0] or 0) if row else 0


def track_lead_view(session_factory, lead_id: int, actor_id: int = None):
    """
    Background task: bumps view_count on an AVAILABLE lead.
    Runs after the response is sent, so it opens its own session.
    """
    db = session_factory()
    try:
        rows = (
            db.query(Lead)
            .filter(Lead.id == lead_id, Lead.status == LeadStatus.AVAILABLE)
            .update({"view_count": Lead.view_count + 1}, synchronize_session=False)
        )
        db.commit()
        if rows and actor_id is not None:
            record_lead_event(db, lead_id, "viewed", actor_id, {"timestamp": datetime.utcnow().isoformat()})
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"View tracking error for lead {lead_id}: {e}")
    finally:
        db.close()
