"""Delete cancelled, completed and no-show reservations older than a cutoff.

Usage:
    python -m booking_engine.purge_history [days]

``days`` defaults to 365. Scheduled reservations are never removed.
"""
import sys
from datetime import timedelta

from booking_engine.repository import ReservationRepository
from booking_engine.scheduling.time_utils import reference_today

DEFAULT_RETENTION_DAYS = 365


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    try:
        days = int(args[0]) if args else DEFAULT_RETENTION_DAYS
    except ValueError:
        print(f"Retention must be a whole number of days, got {args[0]!r}", file=sys.stderr)
        sys.exit(2)
    if days < 0:
        print("Retention must not be negative", file=sys.stderr)
        sys.exit(2)

    cutoff = reference_today() - timedelta(days=days)
    deleted = ReservationRepository().purge_history(cutoff)
    print(f"Deleted {deleted} reservation(s) dated before {cutoff.isoformat()}")


if __name__ == "__main__":
    main()
