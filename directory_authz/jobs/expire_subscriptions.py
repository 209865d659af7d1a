"""
Subscription expiry job.

Runs daily to move ACTIVE and CANCELLED subscriptions whose valid_until has
passed to EXPIRED, for sites and places independently. Entitlement reads
already treat such subscriptions as not effective; this job makes the stored
status agree.

Usage:
    python -m directory_authz.jobs.expire_subscriptions

Running the job twice in a row expires nothing the second time.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from directory_authz.config.settings import Settings
from directory_authz.database.session import get_db_session_sync
from directory_authz.services.side_effects import SideEffectDispatcher
from directory_authz.services.subscription_lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)


class ExpiryStats:
    """Track expiry run statistics."""

    def __init__(self):
        self.site_expired = 0
        self.place_expired = 0
        self.history_written = 0
        self.history_failed = 0
        self.start_time = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "site_expired": self.site_expired,
            "place_expired": self.place_expired,
            "history_written": self.history_written,
            "history_failed": self.history_failed,
            "duration_seconds": duration,
        }


def run_expiry(
    session: Session,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> dict:
    """
    Run one expiry sweep.

    Args:
        session: Database session
        now: Sweep instant, defaults to the current time
        settings: Settings override

    Returns:
        Statistics dictionary with job results
    """
    logger.info("Starting subscription expiry job")
    stats = ExpiryStats()

    lifecycle = SubscriptionLifecycleService(session, settings=settings)
    result = lifecycle.expire(now)
    stats.site_expired = result.site_expired
    stats.place_expired = result.place_expired

    report = SideEffectDispatcher(session).dispatch(result.intents)
    stats.history_written = report.executed
    stats.history_failed = report.failed

    summary = stats.to_dict()
    logger.info("Subscription expiry job completed", extra=summary)
    return summary


def main():
    """Entry point for running the expiry job from the command line."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        for session in get_db_session_sync():
            result = run_expiry(session)
        print(f"Expiry completed: {result}")
        sys.exit(0)
    except Exception as e:
        logger.error("Subscription expiry job failed", extra={"error": str(e)}, exc_info=True)
        print(f"Expiry failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
