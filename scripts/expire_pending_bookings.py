"""
Cancel unpaid bookings that have held stock longer than the TTL.

Not scheduled by the API. Run it from cron or by hand:

    python -m scripts.expire_pending_bookings --ttl-minutes 60
"""
import argparse
import logging
import os
from datetime import datetime, timedelta, timezone

from src.application.booking_service import BookingService
from src.infrastructure.db.session import get_db_session

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--ttl-minutes",
        type=int,
        default=int(os.getenv("PENDING_BOOKING_TTL_MINUTES", "60")),
        help="Pending bookings older than this are cancelled.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=args.ttl_minutes)

    with get_db_session() as db:
        expired = BookingService(db).expire_stale_pending(cutoff)
        logger.info("Cancelled %s pending bookings created before %s", len(expired), cutoff.isoformat())


if __name__ == "__main__":
    main()
