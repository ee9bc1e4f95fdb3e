"""
Connection Health Helper Module.

Pure helpers that derive the health fields shown for a social connection.
"""

from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional

from backend.integrations.constants import TOKEN_EXPIRY_SOON_HOURS, SECONDS_PER_HOUR


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _expires_info(connection, now: datetime) -> Dict[str, Any]:
    expires_at = as_utc(getattr(connection, "expires_at", None))
    if expires_at is None:
        return {"expires_at": None, "expires_in_hours": None, "needs_reconnect": False}

    return {
        "expires_at": expires_at.isoformat(),
        "expires_in_hours": int((expires_at - now).total_seconds() / SECONDS_PER_HOUR),
        "needs_reconnect": expires_at <= now + timedelta(hours=TOKEN_EXPIRY_SOON_HOURS),
    }


def _health_status(connection, now: datetime) -> str:
    if not connection.connected:
        return "disconnected"
    expires_at = as_utc(connection.expires_at)
    if expires_at is not None and expires_at <= now:
        return "expired"
    if not connection.target_id:
        return "needs_target"
    if expires_at is not None and expires_at <= now + timedelta(hours=TOKEN_EXPIRY_SOON_HOURS):
        return "expiring_soon"
    return "healthy"


def compute_connection_health(connection, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Health fields for a SocialConnection; never includes token material.

    Args:
        connection: SocialConnection instance
        now: Reference time (defaults to the current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    base = {"status": _health_status(connection, now)}
    base.update(_expires_info(connection, now))
    last_refreshed = as_utc(getattr(connection, "last_refreshed_at", None))
    base["last_refreshed_at"] = last_refreshed.isoformat() if last_refreshed else None
    base["refresh_failures"] = connection.refresh_failures or 0
    return base
