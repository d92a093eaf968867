import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Forbidden, LeadStatusConflict, NotFound, Unauthorized, ValidationFailed
from app.models.lead import Lead, LeadStatus
from app.models.profile import Role
from app.models.project import MatchStatus, Project, ProjectMatch, ProjectStatus
from app.models.proposal import Proposal, ProposalStatus
from app.schemas.assessment import Recommendation, parse_recommendations
from app.schemas.proposal import LineItemIn
from app.services.lead_service import LeadService

logger = logging.getLogger(__name__)

# First matching keyword group wins, so order matters ("grab bar" before "rail")
PRICE_ESTIMATES = [
    (("grab bar",), 150),
    (("ramp",), 2500),
    (("walk-in shower", "shower"), 5000),
    (("doorway", "widen"), 1500),
    (("handrail", "rail"), 300),
    (("lighting", "light"), 200),
    (("flooring", "floor"), 800),
]
DEFAULT_ESTIMATE = 500


def estimate_price(description: str) -> int:
    """Rough dollar estimate for a common accessibility modification."""
    lower = (description or "").lower()
    for keywords, price in PRICE_ESTIMATES:
        if any(k in lower for k in keywords):
            return price
    return DEFAULT_ESTIMATE


def to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_line_items(recommendations: List[Recommendation]) -> List[LineItemIn]:
    items = []
    for i, rec in enumerate(recommendations):
        description = rec.text
        if not description:
            continue
        items.append(LineItemIn(
            id=f"rec-{i}",
            description=description,
            quantity=1,
            unit_price=estimate_price(description),
            from_recommendation=True,
            included=True,
        ))
    return items


def price_line_items(line_items: List[LineItemIn]):
    """Included items in cents, plus their total. Excluded items are dropped."""
    priced = []
    total = 0
    for item in line_items:
        if not item.included:
            continue
        unit = to_cents(item.unit_price)
        line_total = unit * item.quantity
        priced.append({
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": unit,
            "total": line_total,
            "from_recommendation": item.from_recommendation,
        })
        total += line_total
    return priced, total


class ProposalService:
    def __init__(self, db: Session):
        self.db = db

    # ---------------------------------------------------------
    # HELPERS
    # ---------------------------------------------------------
    def _match(self, match_id: int) -> ProjectMatch:
        match = self.db.get(ProjectMatch, match_id)
        if not match:
            raise NotFound("Match not found", "MATCH_NOT_FOUND")
        return match

    def _proposal(self, proposal_id: int) -> Proposal:
        proposal = self.db.get(Proposal, proposal_id)
        if not proposal:
            raise NotFound("Proposal not found", "PROPOSAL_NOT_FOUND")
        return proposal

    def _own_match(self, user, match_id: int) -> ProjectMatch:
        if user is None:
            raise Unauthorized()
        if user.role != Role.CONTRACTOR:
            raise Forbidden("Only contractors can write proposals")
        match = self._match(match_id)
        if match.contractor_id != user.id:
            raise Forbidden("This match belongs to another contractor")
        return match

    def expire_if_stale(self, proposal: Proposal) -> Proposal:
        """Expiry is evaluated on read: an open proposal past valid_until becomes expired."""
        now = datetime.utcnow()
        if proposal.status in ProposalStatus.OPEN and proposal.valid_until and proposal.valid_until < now:
            rows = (
                self.db.query(Proposal)
                .filter(Proposal.id == proposal.id, Proposal.status.in_(ProposalStatus.OPEN))
                .update({"status": ProposalStatus.EXPIRED}, synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(proposal)
            if rows:
                logger.info(f"Proposal {proposal.id} expired (valid until {proposal.valid_until})")
        return proposal

    # ---------------------------------------------------------
    # 1. DRAFT
    # ---------------------------------------------------------
    def draft_for_match(self, user, match_id: int) -> List[LineItemIn]:
        match = self._own_match(user, match_id)
        recommendations = []
        for assessment in match.project.assessments:
            recommendations.extend(parse_recommendations(assessment.recommendations))
        return build_line_items(recommendations)

    # ---------------------------------------------------------
    # 2. SEND
    # ---------------------------------------------------------
    def send(self, user, match_id: int, line_items: List[LineItemIn],
             estimated_duration: str = None, notes: str = None) -> Proposal:
        match = self._own_match(user, match_id)

        priced, total_cents = price_line_items(line_items)
        if not priced:
            raise ValidationFailed("A proposal needs at least one included line item")

        now = datetime.utcnow()

        rows = (
            self.db.query(ProjectMatch)
            .filter(ProjectMatch.id == match.id, ProjectMatch.status.in_(MatchStatus.OPEN))
            .update(
                {
                    "status": MatchStatus.PROPOSAL_SENT,
                    "proposed_cost": Decimal(total_cents) / 100,
                    "proposal_details": priced,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if not rows:
            self.db.rollback()
            self.db.refresh(match)
            if match.status == MatchStatus.PROPOSAL_SENT:
                raise Conflict("A proposal was already sent for this match", "PROPOSAL_ALREADY_SENT")
            raise Conflict(f"This match is {match.status} and no longer takes proposals", "MATCH_CLOSED")

        proposal = Proposal(
            match_id=match.id,
            contractor_id=user.id,
            line_items=priced,
            total_amount_cents=total_cents,
            estimated_duration=estimated_duration,
            notes=notes,
            status=ProposalStatus.SENT,
            valid_until=now + timedelta(days=settings.PROPOSAL_VALIDITY_DAYS),
            sent_at=now,
            created_at=now,
        )
        self.db.add(proposal)

        (
            self.db.query(Project)
            .filter(
                Project.id == match.project_id,
                Project.status.in_((ProjectStatus.OPEN_FOR_BIDS, ProjectStatus.MATCHING_COMPLETE)),
            )
            .update({"status": ProjectStatus.PROPOSALS_RECEIVED}, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(proposal)

        logger.info(f"📨 Proposal {proposal.id} sent on match {match.id} for {total_cents} cents")
        return proposal

    # ---------------------------------------------------------
    # 3. READ / VIEWED
    # ---------------------------------------------------------
    def get_for_reader(self, user, proposal_id: int) -> Proposal:
        if user is None:
            raise Unauthorized()
        proposal = self._proposal(proposal_id)
        project = proposal.match.project

        is_homeowner = project.homeowner_id == user.id
        if not is_homeowner and proposal.contractor_id != user.id and user.role != Role.ADMIN:
            raise Forbidden("You cannot view this proposal")

        proposal = self.expire_if_stale(proposal)
        if is_homeowner:
            proposal = self.mark_viewed(proposal.id)
        return proposal

    def mark_viewed(self, proposal_id: int) -> Proposal:
        """sent -> viewed on the homeowner's first read. Later reads change nothing."""
        now = datetime.utcnow()
        (
            self.db.query(Proposal)
            .filter(Proposal.id == proposal_id, Proposal.status == ProposalStatus.SENT)
            .update({"status": ProposalStatus.VIEWED, "viewed_at": now}, synchronize_session=False)
        )
        self.db.commit()
        proposal = self._proposal(proposal_id)
        self.db.refresh(proposal)
        return proposal

    # ---------------------------------------------------------
    # 4. RESPOND
    # ---------------------------------------------------------
    def respond(self, user, proposal_id: int, accept: bool) -> Proposal:
        if user is None:
            raise Unauthorized()
        proposal = self._proposal(proposal_id)
        match = proposal.match
        project = match.project
        if project.homeowner_id != user.id:
            raise Forbidden("Only the project owner can respond to this proposal")

        proposal = self.expire_if_stale(proposal)
        if proposal.status == ProposalStatus.EXPIRED:
            raise Conflict("This proposal has expired", "PROPOSAL_EXPIRED")

        now = datetime.utcnow()

        if accept:
            # At most one accepted proposal per project
            awarded = (
                self.db.query(Project)
                .filter(Project.id == project.id, Project.selected_contractor_id.is_(None))
                .update(
                    {
                        "status": ProjectStatus.IN_PROGRESS,
                        "selected_contractor_id": proposal.contractor_id,
                        "updated_at": now,
                    },
                    synchronize_session=False,
                )
            )
            if not awarded:
                self.db.rollback()
                raise Conflict("Another proposal was already accepted for this project", "PROJECT_ALREADY_AWARDED")

        rows = (
            self.db.query(Proposal)
            .filter(Proposal.id == proposal.id, Proposal.status.in_(ProposalStatus.OPEN))
            .update(
                {
                    "status": ProposalStatus.ACCEPTED if accept else ProposalStatus.REJECTED,
                    "responded_at": now,
                },
                synchronize_session=False,
            )
        )
        if not rows:
            self.db.rollback()
            self.db.refresh(proposal)
            raise Conflict(f"This proposal is already {proposal.status}", "PROPOSAL_ALREADY_RESOLVED")

        (
            self.db.query(ProjectMatch)
            .filter(ProjectMatch.id == match.id)
            .update(
                {
                    "status": MatchStatus.PROPOSAL_ACCEPTED if accept else MatchStatus.PROPOSAL_REJECTED,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )

        if accept:
            self._close_sibling_matches(project.id, match.id, now)

        self.db.commit()
        self.db.refresh(proposal)
        logger.info(f"Proposal {proposal.id} {proposal.status} by homeowner {user.id}")

        if accept:
            self._start_lead_work(project.id, user.id)
        return proposal

    def _close_sibling_matches(self, project_id: int, accepted_match_id: int, now: datetime):
        siblings = select(ProjectMatch.id).where(
            ProjectMatch.project_id == project_id, ProjectMatch.id != accepted_match_id
        )
        (
            self.db.query(Proposal)
            .filter(
                Proposal.match_id.in_(siblings),
                Proposal.status.in_(ProposalStatus.OPEN),
            )
            .update({"status": ProposalStatus.EXPIRED}, synchronize_session=False)
        )
        (
            self.db.query(ProjectMatch)
            .filter(
                ProjectMatch.project_id == project_id,
                ProjectMatch.id != accepted_match_id,
                ProjectMatch.status.in_(MatchStatus.OPEN + (MatchStatus.PROPOSAL_SENT,)),
            )
            .update({"status": MatchStatus.DECLINED, "updated_at": now}, synchronize_session=False)
        )

    def _start_lead_work(self, project_id: int, actor_id: int):
        lead = (
            self.db.query(Lead)
            .filter(Lead.project_id == project_id, Lead.status == LeadStatus.PURCHASED)
            .first()
        )
        if lead is None:
            return
        try:
            LeadService(self.db).transition(
                lead.id, LeadStatus.PURCHASED, LeadStatus.IN_PROGRESS,
                actor_id=actor_id, current_stage="Proposal accepted",
            )
        except LeadStatusConflict as e:
            logger.warning(f"Lead {lead.id} moved before work could start: {e.message}")
