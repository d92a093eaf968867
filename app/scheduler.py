import logging
from apscheduler.schedulers.background import BackgroundScheduler
from app.core.config import settings
from app.core.database import SessionLocal
from app.services.purchase_service import release_expired_locks

logger = logging.getLogger(__name__)
scheduler = BackgroundScheduler()

# ---------------------------------------------------------
# WRAPPER: Lock Expiry Sweep
# ---------------------------------------------------------
def run_lock_sweep():
    """
    Opens a DB session and reverts stale LOCKED leads to AVAILABLE.
    Bridges the Scheduler (no args) and release_expired_locks (needs a session).
    """
    db = SessionLocal()
    try:
        released = release_expired_locks(db)
        if released:
            logger.info(f"✅ Scheduler: released {released} stale lock(s).")
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Scheduler Error (Lock Sweep): {str(e)}")
    finally:
        db.close()

# ---------------------------------------------------------
# SCHEDULER SETUP
# ---------------------------------------------------------
def start_scheduler():
    if scheduler.running:
        return

    scheduler.add_job(
        run_lock_sweep,
        "interval",
        minutes=settings.LOCK_SWEEP_INTERVAL_MINUTES,
        id="lock_sweep",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("🚀 Background Scheduler Started.")
