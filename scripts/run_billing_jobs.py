"""
Scheduled billing jobs for cron.
Run: python -m scripts.run_billing_jobs expire|reminders|reconcile|stale-payments|all
"""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core import config
from app.core.logging_config import setup_logging
from app.db.session import SessionLocal
from app.services import subscription_service
from app.services.payment_service import expire_stale_pending
import logging

logger = logging.getLogger(__name__)

JOBS = ("stale-payments", "reconcile", "expire", "reminders")


def run_job(job: str) -> dict:
    """Run one job in its own session and return its summary."""
    db = SessionLocal()
    try:
        if job == "expire":
            return subscription_service.expire_due(db)
        if job == "reminders":
            return subscription_service.send_renewal_reminders(db)
        if job == "reconcile":
            return subscription_service.reconcile_paid_payments(db)
        if job == "stale-payments":
            return {"expired_count": expire_stale_pending(db)}
        raise ValueError(f"Unknown job: {job}")
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run scheduled billing jobs")
    parser.add_argument("job", choices=JOBS + ("all",))
    args = parser.parse_args(argv)

    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    jobs = JOBS if args.job == "all" else (args.job,)
    failed = False
    for job in jobs:
        try:
            result = run_job(job)
            logger.info(f"Job {job} finished: {result}")
        except Exception as e:
            logger.error(f"Job {job} failed: {e}", exc_info=True)
            failed = True

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
