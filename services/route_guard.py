"""
Route guard: decides what happens to a navigation attempt given the current
session state and the route's requirements.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import quote

from models import Profile
from services.entitlement import is_entitled

LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"
ADMIN_PATH = "/admin"
EXPIRED_PATH = "/expired"


class GuardDecision(str, Enum):
    ALLOW = "allow"
    PENDING = "pending"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_DASHBOARD = "redirect_dashboard"
    REDIRECT_EXPIRED = "redirect_expired"


@dataclass(frozen=True)
class RouteRequirements:
    requires_auth: bool = True
    requires_admin: bool = False
    requires_entitlement: bool = False


USER_ROUTE = RouteRequirements()
PLAYBACK_ROUTE = RouteRequirements(requires_entitlement=True)
ADMIN_ROUTE = RouteRequirements(requires_admin=True)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session holder taken for one decision"""

    is_loading: bool
    user_id: Optional[str]
    profile: Optional[Profile]

    @property
    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.is_admin


@dataclass(frozen=True)
class GuardResult:
    decision: GuardDecision
    redirect_to: Optional[str] = None
    return_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision == GuardDecision.ALLOW


def evaluate_route(
    snapshot: SessionSnapshot,
    requirements: RouteRequirements,
    now: Optional[datetime] = None,
    requested_path: Optional[str] = None,
) -> GuardResult:
    if snapshot.is_loading:
        return GuardResult(GuardDecision.PENDING)

    if requirements.requires_auth and not snapshot.user_id:
        redirect = LOGIN_PATH
        if requested_path:
            redirect = f"{LOGIN_PATH}?next={quote(requested_path, safe='/')}"
        return GuardResult(GuardDecision.REDIRECT_LOGIN, redirect_to=redirect, return_to=requested_path)

    if requirements.requires_admin and not snapshot.is_admin:
        return GuardResult(GuardDecision.REDIRECT_DASHBOARD, redirect_to=DASHBOARD_PATH)

    if requirements.requires_entitlement and not is_entitled(snapshot.profile, now):
        return GuardResult(GuardDecision.REDIRECT_EXPIRED, redirect_to=EXPIRED_PATH)

    return GuardResult(GuardDecision.ALLOW)
