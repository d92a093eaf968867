from datetime import datetime, timedelta

from app import scheduler as scheduler_module
from app.models import Lead, LeadStatus


def test_lock_sweep_job_releases_stale_locks(monkeypatch, db, session_factory, homeowner, contractor) -> None:
    lead = Lead(
        homeowner_id=homeowner.id,
        fingerprint="a" * 64,
        title="Stair lift",
        location="Denver, CO",
        status=LeadStatus.LOCKED,
        locked_by_id=contractor.id,
        locked_at=datetime.utcnow() - timedelta(hours=1),
    )
    db.add(lead)
    db.commit()
    monkeypatch.setattr(scheduler_module, "SessionLocal", session_factory)

    scheduler_module.run_lock_sweep()

    db.expire_all()
    assert db.get(Lead, lead.id).status == LeadStatus.AVAILABLE


def test_lock_sweep_job_logs_instead_of_raising(monkeypatch, session_factory) -> None:
    def broken(db):
        raise RuntimeError("database went away")

    monkeypatch.setattr(scheduler_module, "SessionLocal", session_factory)
    monkeypatch.setattr(scheduler_module, "release_expired_locks", broken)

    scheduler_module.run_lock_sweep()
