"""
FastAPI Authentication Dependencies
Builds the per-request session holder from the bearer token and applies the
route guard before a handler runs
"""

from typing import Optional

from fastapi import Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backends.auth_provider import AuthClient, LocalAuthProvider
from db import get_db
from services.route_guard import (
    ADMIN_ROUTE,
    GuardDecision,
    PLAYBACK_ROUTE,
    RouteRequirements,
    USER_ROUTE,
    evaluate_route,
)
from services.session_holder import SessionHolder
from utils.error_handling import RouteDenied
from utils.structured_logging import log_security_event

bearer_scheme = HTTPBearer(auto_error=False)

DENIAL_STATUS = {
    GuardDecision.PENDING: status.HTTP_503_SERVICE_UNAVAILABLE,
    GuardDecision.REDIRECT_LOGIN: status.HTTP_401_UNAUTHORIZED,
    GuardDecision.REDIRECT_DASHBOARD: status.HTTP_403_FORBIDDEN,
    GuardDecision.REDIRECT_EXPIRED: status.HTTP_403_FORBIDDEN,
}

DENIAL_MESSAGE = {
    GuardDecision.PENDING: "Session is still loading",
    GuardDecision.REDIRECT_LOGIN: "Authentication required",
    GuardDecision.REDIRECT_DASHBOARD: "Admin access required",
    GuardDecision.REDIRECT_EXPIRED: "Your access has expired",
}


# =============================================================================
# CORE AUTHENTICATION DEPENDENCIES
# =============================================================================


def get_auth_provider(db: Session = Depends(get_db)) -> LocalAuthProvider:
    return LocalAuthProvider(db)


def get_auth_client(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    provider: LocalAuthProvider = Depends(get_auth_provider),
) -> AuthClient:
    """Client handle carrying the caller's access token, if any"""
    return AuthClient(provider, credentials.credentials if credentials else None)


def get_session_holder(auth: AuthClient = Depends(get_auth_client), db: Session = Depends(get_db)):
    """
    Session holder for this request, initialized from the bearer token and
    unsubscribed from auth notifications when the request finishes
    """
    with SessionHolder(auth, db) as holder:
        yield holder


# =============================================================================
# ROUTE GUARD DEPENDENCIES
# =============================================================================


def require_route(requirements: RouteRequirements):
    """
    Factory for dependencies that enforce ``requirements`` on a route
    """

    def guard(request: Request, holder: SessionHolder = Depends(get_session_holder)) -> SessionHolder:
        if holder.last_error is not None and holder.user is None:
            # The session could not be restored at all
            raise holder.last_error

        result = evaluate_route(holder.snapshot(), requirements, requested_path=request.url.path)
        if result.allowed:
            request.state.user_id = holder.user.id if holder.user else None
            return holder

        log_security_event(
            "route_denied",
            f"Navigation to {request.url.path} denied: {result.decision.value}",
            user_id=holder.user.id if holder.user else None,
            severity="low",
            details={"redirect_to": result.redirect_to},
        )
        raise RouteDenied(DENIAL_MESSAGE[result.decision], DENIAL_STATUS[result.decision], result.redirect_to)

    return guard


require_user = require_route(USER_ROUTE)
require_admin = require_route(ADMIN_ROUTE)
require_playback = require_route(PLAYBACK_ROUTE)
