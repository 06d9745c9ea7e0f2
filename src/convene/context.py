"""Default collaborators for the acting user, the admin check and the clock."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def anonymous_actor() -> int:
    return 0


def no_admins(user_id: int) -> bool:
    return False
