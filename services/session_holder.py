"""
Session/identity holder

Single authoritative record of who is signed in for one client: the auth
identity, its profile and a loading flag. It is constructed explicitly and
handed to whatever needs it; nothing else writes to it.

Auth changes published by other requests arrive on their threads. They are
only queued here and applied the next time the owner reads the holder, so the
holder's database session is never used from a foreign thread.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backends.auth_provider import AuthChange, AuthClient, AuthEvent, AuthProviderError, AuthUser, Subscription
from models import Profile
from services.entitlement import is_entitled, utcnow
from services.route_guard import ADMIN_PATH, DASHBOARD_PATH, LOGIN_PATH, SessionSnapshot
from utils.error_handling import ConflictError, DependencyFailure, NotFoundError, PortalError, UnauthorizedError
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.session")


def _provider_error(e: AuthProviderError) -> PortalError:
    if e.code == "invalid_credentials":
        return UnauthorizedError("Please check your username and password", title="Sign-in failed")
    if e.code == "invalid_session":
        return UnauthorizedError(e.message, title="Session expired")
    if e.code == "handle_taken":
        return ConflictError("Username already exists")
    if e.code == "not_found":
        return NotFoundError(e.message)
    return DependencyFailure(e.message)


class SessionHolder:
    def __init__(self, auth: AuthClient, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.auth = auth
        self.db = db
        self.clock = clock or utcnow

        self._user: Optional[AuthUser] = None
        self._profile: Optional[Profile] = None
        self.is_loading = True
        self.last_error: Optional[PortalError] = None
        self.notices: List[Dict[str, str]] = []

        self._subscription: Optional[Subscription] = None
        self._pending: List[AuthChange] = []
        self._pending_lock = threading.Lock()

    # Current state

    @property
    def user(self) -> Optional[AuthUser]:
        self._apply_pending()
        return self._user

    @property
    def profile(self) -> Optional[Profile]:
        self._apply_pending()
        return self._profile

    @property
    def is_admin(self) -> bool:
        profile = self.profile
        return profile is not None and profile.is_admin

    @property
    def has_valid_access(self) -> bool:
        return is_entitled(self.profile, self.clock())

    @property
    def has_pending_changes(self) -> bool:
        with self._pending_lock:
            return bool(self._pending)

    def snapshot(self) -> SessionSnapshot:
        user = self.user
        return SessionSnapshot(
            is_loading=self.is_loading,
            user_id=user.id if user else None,
            profile=self._profile,
        )

    # Lifecycle

    def initialize(self) -> "SessionHolder":
        self.is_loading = True
        try:
            if self._subscription is None:
                self._subscription = self.auth.on_auth_state_change(self._on_auth_change)
            session = self.auth.get_session()
            if session:
                self._user = session.user
                self._profile = self._fetch_profile(session.user.id)
        except (AuthProviderError, SQLAlchemyError) as e:
            logger.error("Could not restore session", category=LogCategory.AUTHENTICATION, exception=e)
            self._fail(DependencyFailure("Could not restore your session"))
        finally:
            self.is_loading = False
        return self

    def close(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._pending_lock:
            self._pending.clear()

    def __enter__(self):
        return self.initialize()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # Operations

    def sign_in(self, username: str, password: str) -> Optional[str]:
        """Authenticate and return where to land, or None after a visible error"""
        self._apply_pending()
        self.is_loading = True
        try:
            owner = self.db.query(Profile.id).filter(Profile.username == username).first()
            if not owner:
                raise NotFoundError("Username does not exist", title="Sign-in failed")

            session = self.auth.sign_in(username, password)
            profile = self._fetch_profile(session.user.id)

            self._user = session.user
            self._profile = profile
            self.last_error = None
            return ADMIN_PATH if profile is not None and profile.is_admin else DASHBOARD_PATH
        except PortalError as e:
            self._fail(e)
        except AuthProviderError as e:
            self._fail(_provider_error(e))
        except SQLAlchemyError as e:
            logger.error("Profile lookup failed during sign in", category=LogCategory.DATABASE, exception=e)
            self._fail(DependencyFailure("Sign-in is unavailable right now", title="Sign-in failed"))
        finally:
            self.is_loading = False
        return None

    def sign_up(
        self, username: str, password: str, phone_number: str, extra_fields: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Register a new account; the caller is sent to the login page, not signed in"""
        self.is_loading = True
        try:
            if self.db.query(Profile.id).filter(Profile.username == username).first():
                raise ConflictError("Username already exists", title="Registration failed")

            attributes = dict(extra_fields or {})
            attributes.update({"phone_number": phone_number, "user_type": "user"})
            self.auth.sign_up(username, password, attributes)

            self.last_error = None
            self.notices.append({"title": "Registered", "description": "Registration complete, please sign in"})
            return LOGIN_PATH
        except PortalError as e:
            self._fail(e)
        except AuthProviderError as e:
            self._fail(_provider_error(e))
        except SQLAlchemyError as e:
            logger.error("Username check failed during sign up", category=LogCategory.DATABASE, exception=e)
            self._fail(DependencyFailure("Registration is unavailable right now", title="Registration failed"))
        finally:
            self.is_loading = False
        return None

    def refresh_session(self) -> bool:
        """Exchange the current token for a fresh one; False after a visible error"""
        if self.user is None:
            self._fail(UnauthorizedError("You are not signed in", title="Session expired"))
            return False
        try:
            session = self.auth.refresh_session()
        except AuthProviderError as e:
            self._fail(_provider_error(e))
            return False

        self._user = session.user
        self.last_error = None
        return True

    def sign_out(self) -> Optional[str]:
        """Local state is cleared only once the provider has ended the session"""
        try:
            self.auth.sign_out()
        except AuthProviderError as e:
            self._fail(DependencyFailure(e.message, title="Sign-out failed"))
            return None

        with self._pending_lock:
            self._pending.clear()
        self._user = None
        self._profile = None
        self.last_error = None
        return LOGIN_PATH

    def refresh_profile(self) -> Optional[Profile]:
        self._apply_pending()
        return self._reload_profile()

    # Internals

    def _reload_profile(self) -> Optional[Profile]:
        if not self._user:
            return None
        try:
            self._profile = self._fetch_profile(self._user.id)
        except SQLAlchemyError as e:
            logger.error("Profile refresh failed", category=LogCategory.DATABASE, exception=e, user_id=self._user.id)
            self._fail(DependencyFailure("Could not reload your profile"))
        return self._profile

    def _fetch_profile(self, user_id: str) -> Optional[Profile]:
        return self.db.query(Profile).populate_existing().filter(Profile.id == user_id).first()

    def _fail(self, error: PortalError):
        self.last_error = error
        self.notices.append(error.to_notice())
        logger.warning(
            f"{error.title}: {error.message}",
            category=LogCategory.AUTHENTICATION,
            user_id=self._user.id if self._user else None,
        )

    def _on_auth_change(self, change: AuthChange):
        # Runs on the publisher's thread: record only
        with self._pending_lock:
            self._pending.append(change)

    def _apply_pending(self):
        with self._pending_lock:
            changes, self._pending = self._pending, []

        reload = False
        for change in changes:
            if change.event in (AuthEvent.SIGNED_OUT, AuthEvent.USER_DELETED):
                self.auth.forget()
                self._user = None
                self._profile = None
                reload = False
            elif self._user is not None:
                reload = True
        if reload:
            self._reload_profile()
