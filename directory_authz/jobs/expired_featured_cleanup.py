"""
Expired featured placement cleanup.

Clears is_featured on places whose featured_until has passed, which frees
the site's featured slots for other places.

Usage:
    python -m directory_authz.jobs.expired_featured_cleanup
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from directory_authz.database.session import get_db_session_sync
from directory_authz.models.base import as_utc, utcnow
from directory_authz.models.place import Place

logger = logging.getLogger(__name__)


def run_featured_cleanup(session: Session, now: Optional[datetime] = None) -> dict:
    """
    Unfeature every place whose featured_until is before now.

    Places featured without an end date are left alone.

    Returns:
        Statistics dictionary with the number of places unfeatured
    """
    now = as_utc(now) if now else utcnow()

    cleared = (
        session.query(Place)
        .filter(
            Place.is_featured.is_(True),
            Place.featured_until.isnot(None),
            Place.featured_until < now,
        )
        .update(
            {Place.is_featured: False, Place.featured_until: None},
            synchronize_session=False,
        )
    )
    session.commit()

    result = {"places_unfeatured": cleared, "run_at": now.isoformat()}
    logger.info("Expired featured cleanup completed", extra=result)
    return result


def main():
    """Entry point for running the cleanup from the command line."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        for session in get_db_session_sync():
            result = run_featured_cleanup(session)
        print(f"Featured cleanup completed: {result}")
        sys.exit(0)
    except Exception as e:
        logger.error("Featured cleanup failed", extra={"error": str(e)}, exc_info=True)
        print(f"Featured cleanup failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
