from datetime import datetime, timedelta

import pytest

from app.core.errors import Conflict, Forbidden, Unauthorized, ValidationFailed
from app.models import Lead, LeadEvent, LeadStatus, MatchStatus, ProjectMatch
from app.schemas.lead import CreateLeadRequest
from app.services.lead_service import LeadService
from app.services.purchase_service import UNAVAILABLE_MESSAGE, PurchaseService, release_expired_locks

from conftest import make_match, make_project


@pytest.fixture
def lead(db, homeowner):
    request = CreateLeadRequest(title="Walk-in shower conversion", location="Austin, TX", price=60)
    return LeadService(db).create(homeowner, request)


def age_lock(db, lead_id: int, minutes: int) -> None:
    db.query(Lead).filter(Lead.id == lead_id).update(
        {"locked_at": datetime.utcnow() - timedelta(minutes=minutes)}
    )
    db.commit()


# ---------------------------------------------------------
# LOCK
# ---------------------------------------------------------
def test_lock_claims_available_lead(db, lead, contractor) -> None:
    result = PurchaseService(db).lock(contractor, lead.id, "key-1")

    assert result.replayed is False
    assert result.message == "Lead locked successfully"
    assert result.client_secret.startswith(f"mock_secret_{lead.id}_")
    assert result.lead.status == LeadStatus.LOCKED
    assert result.lead.locked_by_id == contractor.id
    assert result.lead.locked_at is not None


def test_lock_requires_key_and_contractor(db, lead, homeowner, contractor) -> None:
    service = PurchaseService(db)

    with pytest.raises(Unauthorized):
        service.lock(None, lead.id, "key-1")
    with pytest.raises(ValidationFailed) as exc:
        service.lock(contractor, lead.id, None)
    assert exc.value.error_code == "MISSING_IDEMPOTENCY_KEY"
    with pytest.raises(Forbidden):
        service.lock(homeowner, lead.id, "key-1")


def test_repeated_lock_by_holder_is_replayed(db, lead, contractor) -> None:
    service = PurchaseService(db)
    first = service.lock(contractor, lead.id, "key-1")

    again = service.lock(contractor, lead.id, "key-1")
    other_key = service.lock(contractor, lead.id, "key-2")

    assert again.replayed and other_key.replayed
    assert again.message == "Lead already locked by you"
    assert again.lead.locked_at == first.lead.locked_at
    assert again.lead.lock_idempotency_key == "key-1"


def test_second_contractor_cannot_lock(session_factory, lead, contractor, other_contractor) -> None:
    # Separate sessions, and the loser read the lead before the winner locked it
    winner_db, loser_db = session_factory(), session_factory()
    try:
        assert loser_db.get(Lead, lead.id).status == LeadStatus.AVAILABLE

        PurchaseService(winner_db).lock(contractor, lead.id, "key-x")

        with pytest.raises(Conflict) as exc:
            PurchaseService(loser_db).lock(other_contractor, lead.id, "key-y")
        assert exc.value.error_code == "LEAD_LOCKED"

        loser_db.expire_all()
        assert loser_db.get(Lead, lead.id).locked_by_id == contractor.id
    finally:
        winner_db.close()
        loser_db.close()


def test_expired_lock_can_be_reclaimed(db, lead, contractor, other_contractor) -> None:
    service = PurchaseService(db, lock_duration=timedelta(minutes=10))
    service.lock(contractor, lead.id, "key-x")
    age_lock(db, lead.id, 11)

    result = service.lock(other_contractor, lead.id, "key-y")

    assert result.replayed is False
    assert result.lead.locked_by_id == other_contractor.id


def test_release_returns_lead_to_market(db, lead, contractor, other_contractor) -> None:
    service = PurchaseService(db)
    service.lock(contractor, lead.id, "key-x")

    with pytest.raises(Conflict) as exc:
        service.release(other_contractor, lead.id)
    assert exc.value.error_code == "LOCK_NOT_HELD"

    released = service.release(contractor, lead.id)
    assert released.status == LeadStatus.AVAILABLE
    assert released.locked_by_id is None


# ---------------------------------------------------------
# PURCHASE
# ---------------------------------------------------------
def test_purchase_after_lock(db, homeowner, contractor) -> None:
    project = make_project(db, homeowner)
    match = make_match(db, project, contractor)
    lead = LeadService(db).create(
        homeowner, CreateLeadRequest(title="Ramp", location="Austin, TX", projectId=project.id)
    )
    service = PurchaseService(db)
    service.lock(contractor, lead.id, "key-1")

    result = service.purchase(contractor, lead.id)

    assert result.replayed is False
    assert result.lead.status == LeadStatus.PURCHASED
    assert result.lead.contractor_id == contractor.id
    assert result.lead.locked_by_id == contractor.id
    assert result.lead.purchased_at is not None

    db.expire_all()
    assert db.get(ProjectMatch, match.id).status == MatchStatus.LEAD_PURCHASED

    # Retrying is harmless
    again = service.purchase(contractor, lead.id)
    assert again.replayed is True
    assert again.message == "Lead already purchased by you"


def test_purchase_requires_own_live_lock(db, lead, contractor, other_contractor) -> None:
    service = PurchaseService(db, lock_duration=timedelta(minutes=10))

    with pytest.raises(Conflict) as exc:
        service.purchase(contractor, lead.id)
    assert exc.value.error_code == "LOCK_NOT_HELD"

    service.lock(contractor, lead.id, "key-1")
    with pytest.raises(Conflict) as exc:
        service.purchase(other_contractor, lead.id)
    assert exc.value.error_code == "LOCK_NOT_HELD"

    age_lock(db, lead.id, 11)
    with pytest.raises(Conflict) as exc:
        service.purchase(contractor, lead.id)
    assert exc.value.error_code == "LOCK_EXPIRED"


def test_purchased_lead_cannot_be_locked_again(db, lead, contractor, other_contractor) -> None:
    service = PurchaseService(db)
    service.lock(contractor, lead.id, "key-1")
    service.purchase(contractor, lead.id)

    with pytest.raises(Conflict) as exc:
        service.lock(other_contractor, lead.id, "key-2")
    assert exc.value.error_code == "LEAD_ALREADY_PURCHASED"
    with pytest.raises(Conflict):
        service.purchase(other_contractor, lead.id)


def test_live_mode_purchase_is_not_finalized_here(db, lead, contractor) -> None:
    service = PurchaseService(db, mock_mode=False)
    result = service.lock(contractor, lead.id, "key-1")
    assert result.client_secret is None

    with pytest.raises(Conflict) as exc:
        service.purchase(contractor, lead.id)
    assert exc.value.error_code == "PAYMENTS_LIVE_MODE"

    db.expire_all()
    assert db.get(Lead, lead.id).status == LeadStatus.LOCKED


# ---------------------------------------------------------
# COMBINED FLOW
# ---------------------------------------------------------
def test_lock_and_purchase(db, lead, contractor, other_contractor) -> None:
    service = PurchaseService(db)

    won = service.lock_and_purchase(contractor, lead.id, "key-1")
    assert won.success is True
    assert won.lead.status == LeadStatus.PURCHASED

    retry = service.lock_and_purchase(contractor, lead.id, "key-1")
    assert retry.success is True

    lost = service.lock_and_purchase(other_contractor, lead.id, "key-2")
    assert lost.success is False
    assert lost.status_code == 409
    assert lost.error == UNAVAILABLE_MESSAGE


# ---------------------------------------------------------
# EXPIRY SWEEP
# ---------------------------------------------------------
def test_release_expired_locks(db, homeowner, contractor, other_contractor) -> None:
    leads = LeadService(db)
    stale = leads.create(homeowner, CreateLeadRequest(title="Stale", location="Austin, TX"))
    fresh = leads.create(homeowner, CreateLeadRequest(title="Fresh", location="Austin, TX"))
    service = PurchaseService(db, lock_duration=timedelta(minutes=10))
    service.lock(contractor, stale.id, "key-1")
    service.lock(other_contractor, fresh.id, "key-2")
    age_lock(db, stale.id, 30)

    released = release_expired_locks(db, lock_duration=timedelta(minutes=10))

    assert released == 1
    db.expire_all()
    assert db.get(Lead, stale.id).status == LeadStatus.AVAILABLE
    assert db.get(Lead, stale.id).locked_by_id is None
    assert db.get(Lead, fresh.id).status == LeadStatus.LOCKED

    event = db.query(LeadEvent).filter(LeadEvent.lead_id == stale.id, LeadEvent.type == "lock_expired").one()
    assert event.metadata_json == {"previous_holder_id": contractor.id}
    assert release_expired_locks(db, lock_duration=timedelta(minutes=10)) == 0


def test_lock_survives_audit_failure(db, engine, lead, contractor, caplog) -> None:
    LeadEvent.__table__.drop(bind=engine)

    result = PurchaseService(db).lock(contractor, lead.id, "key-1")

    assert result.lead.status == LeadStatus.LOCKED
    db.expire_all()
    stored = db.get(Lead, lead.id)
    assert stored.status == LeadStatus.LOCKED
    assert stored.locked_by_id == contractor.id
    assert "Failed to record 'locked' event" in caplog.text
