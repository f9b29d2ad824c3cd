from datetime import datetime, timezone


class Clock:
    """Authoritative "now" for deadlines. Naive UTC, matching the DB columns."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
