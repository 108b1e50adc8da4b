"""
Authentication Router
Registration, sign-in, sign-out and the current session state
"""

from fastapi import APIRouter, Depends, status

from schemas.api_models import (
    EntitlementResponse,
    LoginResponse,
    LogoutResponse,
    ProfileResponse,
    RegisterResponse,
    SessionStateResponse,
    TokenRefreshResponse,
)
from schemas.validation import LoginSchema, UserRegistrationSchema
from services.entitlement import entitlement_summary
from services.session_holder import SessionHolder
from utils.auth_dependencies import get_session_holder, require_user
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("routes.auth")

router = APIRouter()


def session_state(holder: SessionHolder) -> SessionStateResponse:
    profile = holder.profile
    return SessionStateResponse(
        authenticated=holder.user is not None,
        is_loading=holder.is_loading,
        is_admin=holder.is_admin,
        has_valid_access=holder.has_valid_access,
        user_id=holder.user.id if holder.user else None,
        profile=ProfileResponse.model_validate(profile) if profile else None,
        entitlement=EntitlementResponse(**entitlement_summary(profile)) if profile else None,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(data: UserRegistrationSchema, holder: SessionHolder = Depends(get_session_holder)):
    """
    Create an account. The new user is not signed in and is sent to the login page.
    """
    extra_fields = data.model_dump(include={"school", "college", "major", "grade_year"}, exclude_none=True)
    redirect = holder.sign_up(data.username, data.password, data.phone_number, extra_fields)
    if redirect is None:
        raise holder.last_error

    logger.info("User registered", category=LogCategory.AUTHENTICATION, extra={"username": data.username})
    return RegisterResponse(message="Registration complete, please sign in", redirect_to=redirect, notices=holder.notices)


@router.post("/login", response_model=LoginResponse)
def login(data: LoginSchema, holder: SessionHolder = Depends(get_session_holder)):
    redirect = holder.sign_in(data.username, data.password)
    if redirect is None:
        raise holder.last_error

    session = holder.auth.session
    return LoginResponse(
        message="Signed in",
        access_token=session.access_token,
        expires_at=session.expires_at,
        redirect_to=redirect,
        profile=ProfileResponse.model_validate(holder.profile) if holder.profile else None,
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
def refresh(holder: SessionHolder = Depends(require_user)):
    """Issue a new access token; the one used for this request stops working"""
    if not holder.refresh_session():
        raise holder.last_error

    session = holder.auth.session
    return TokenRefreshResponse(message="Session refreshed", access_token=session.access_token, expires_at=session.expires_at)


@router.post("/logout", response_model=LogoutResponse)
def logout(holder: SessionHolder = Depends(get_session_holder)):
    redirect = holder.sign_out()
    if redirect is None:
        raise holder.last_error
    return LogoutResponse(message="Signed out", redirect_to=redirect)


@router.get("/session", response_model=SessionStateResponse)
def get_session_state(holder: SessionHolder = Depends(get_session_holder)):
    """Who is signed in, their profile and whether their access is still valid"""
    return session_state(holder)
