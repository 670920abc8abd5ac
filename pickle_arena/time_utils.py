from datetime import UTC, datetime


def utcnow_naive():
    """Return current UTC timestamp as naive datetime for DB and negotiation timestamps."""
    return datetime.now(UTC).replace(tzinfo=None)
