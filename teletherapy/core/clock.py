from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC wall-clock reading, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_hhmm(value: datetime) -> str:
    return value.strftime('%H:%M')
