from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current time; every timestamp the system stores is UTC."""
    return datetime.now(timezone.utc)
