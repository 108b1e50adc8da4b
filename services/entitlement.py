"""
Access entitlement checks.

A profile may stream content while its ``access_expiry_date`` lies strictly in
the future. Nothing here is cached: callers evaluate on every check because the
clock moves and admins can change expiry dates at any time.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from models import Profile

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (as returned by SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _expiry(profile: Optional[Profile]) -> Optional[datetime]:
    if profile is None or profile.access_expiry_date is None:
        return None
    return as_utc(profile.access_expiry_date)


def is_entitled(profile: Optional[Profile], now: Optional[datetime] = None) -> bool:
    expiry = _expiry(profile)
    if expiry is None:
        return False
    return expiry > as_utc(now or utcnow())


def remaining_days(profile: Optional[Profile], now: Optional[datetime] = None) -> int:
    """Whole days of access left, rounded up and never negative"""
    expiry = _expiry(profile)
    if expiry is None:
        return 0
    left = expiry - as_utc(now or utcnow())
    return max(0, math.ceil(left / ONE_DAY))


def entitlement_summary(profile: Optional[Profile], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    entitled = is_entitled(profile, now)
    expiry = _expiry(profile)
    return {
        "has_valid_access": entitled,
        "is_expired": not entitled,
        "remaining_days": remaining_days(profile, now),
        "access_expiry_date": expiry,
    }
