"""
Authentication provider
Username-keyed identities with bcrypt secrets, revocable JWT sessions and
in-process notifications when a session or identity changes.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from passlib.hash import bcrypt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from models import AuthIdentity, AuthSession, Profile, UserType, new_identity_id
from utils.jwt_utils import JWTManager, jwt_manager
from utils.structured_logging import get_logger, LogCategory, log_authentication_event

logger = get_logger("backends.auth")

PROFILE_ATTRIBUTES = ("phone_number", "school", "college", "major", "grade_year")


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"


class AuthProviderError(Exception):
    """Raised by the provider; ``code`` tells callers what went wrong"""

    def __init__(self, message: str, code: str = "unavailable"):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class AuthUser:
    id: str
    handle: str


@dataclass(frozen=True)
class AuthSessionInfo:
    access_token: str
    jti: str
    user: AuthUser
    expires_at: datetime


@dataclass(frozen=True)
class AuthChange:
    event: AuthEvent
    user_id: str
    jti: Optional[str] = None


class Subscription:
    def __init__(self, bus: "AuthEventBus", callback: Callable[[AuthChange], None]):
        self._bus = bus
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._bus._remove(self)
            self.active = False


class AuthEventBus:
    """Fan-out of auth changes to every live subscriber in this process"""

    def __init__(self):
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[AuthChange], None]) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, change: AuthChange):
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            try:
                subscription.callback(change)
            except Exception as e:
                # One broken listener must not stop delivery to the others
                logger.error(
                    f"Auth listener failed on {change.event.value}",
                    category=LogCategory.AUTHENTICATION,
                    exception=e,
                    user_id=change.user_id,
                )


# Global instance
auth_events = AuthEventBus()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalAuthProvider:
    """Credential verification and session issuance backed by the portal database"""

    def __init__(
        self,
        db: Session,
        tokens: JWTManager = jwt_manager,
        events: AuthEventBus = auth_events,
        session_ttl_hours: int = settings.SESSION_TTL_HOURS,
    ):
        self.db = db
        self.tokens = tokens
        self.events = events
        self.session_ttl_hours = session_ttl_hours

    def _commit(self, operation: str):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Auth store failure during {operation}", category=LogCategory.DATABASE, exception=e)
            raise AuthProviderError("Authentication service is unavailable", "unavailable") from e

    def sign_up(self, handle: str, secret: str, attributes: Optional[Dict[str, Any]] = None) -> AuthUser:
        """Register an identity and create its profile from ``attributes``"""
        attributes = attributes or {}
        if self.db.query(AuthIdentity).filter(AuthIdentity.handle == handle).first():
            raise AuthProviderError("User already registered", "handle_taken")

        identity = AuthIdentity(id=new_identity_id(), handle=handle, password_hash=bcrypt.hash(secret))
        expiry = attributes.get("access_expiry_date") or _utcnow() + timedelta(days=settings.SIGNUP_ACCESS_DAYS)
        profile = Profile(
            id=identity.id,
            username=handle,
            user_type=UserType(attributes.get("user_type", UserType.USER.value)),
            access_expiry_date=expiry,
            **{key: attributes.get(key) or None for key in PROFILE_ATTRIBUTES},
        )
        identity.profile = profile
        self.db.add(identity)
        self._commit("sign up")

        log_authentication_event("sign_up", user_id=identity.id, details={"handle": handle})
        return AuthUser(id=identity.id, handle=handle)

    def sign_in(self, handle: str, secret: str) -> AuthSessionInfo:
        identity = self.db.query(AuthIdentity).filter(AuthIdentity.handle == handle).first()
        if not identity or not bcrypt.verify(secret, identity.password_hash):
            log_authentication_event("sign_in", success=False, details={"handle": handle})
            raise AuthProviderError("Invalid login credentials", "invalid_credentials")

        issued = self.tokens.create_session_token(identity.id, expires_hours=self.session_ttl_hours)
        self.db.add(AuthSession(jti=issued["jti"], user_id=identity.id, expires_at=issued["expires_at"]))
        identity.last_sign_in_at = _utcnow()
        self._commit("sign in")

        session = AuthSessionInfo(
            access_token=issued["token"],
            jti=issued["jti"],
            user=AuthUser(id=identity.id, handle=identity.handle),
            expires_at=issued["expires_at"],
        )
        log_authentication_event("sign_in", user_id=identity.id)
        self.events.publish(AuthChange(AuthEvent.SIGNED_IN, identity.id, issued["jti"]))
        return session

    def get_session(self, access_token: Optional[str]) -> Optional[AuthSessionInfo]:
        """Session for a token, or None when it is unknown, expired or revoked"""
        if not access_token:
            return None
        payload = self.tokens.verify_session_token(access_token)
        if not payload:
            return None

        record = self.db.get(AuthSession, payload["jti"])
        if not record or record.is_revoked or not record.identity:
            return None

        return AuthSessionInfo(
            access_token=access_token,
            jti=record.jti,
            user=AuthUser(id=record.identity.id, handle=record.identity.handle),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def refresh_session(self, access_token: Optional[str]) -> AuthSessionInfo:
        """Swap a live token for a fresh one; the old token stops working"""
        current = self.get_session(access_token)
        if not current:
            raise AuthProviderError("Session has expired, please sign in again", "invalid_session")

        record = self.db.get(AuthSession, current.jti)
        record.is_revoked = True
        record.revoked_at = _utcnow()
        issued = self.tokens.create_session_token(current.user.id, expires_hours=self.session_ttl_hours)
        self.db.add(AuthSession(jti=issued["jti"], user_id=current.user.id, expires_at=issued["expires_at"]))
        self._commit("refresh session")

        log_authentication_event("token_refresh", user_id=current.user.id, method="token")
        self.events.publish(AuthChange(AuthEvent.TOKEN_REFRESHED, current.user.id, issued["jti"]))
        return AuthSessionInfo(
            access_token=issued["token"],
            jti=issued["jti"],
            user=current.user,
            expires_at=issued["expires_at"],
        )

    def sign_out(self, access_token: Optional[str]) -> None:
        payload = self.tokens.verify_session_token(access_token) if access_token else None
        if not payload:
            # Expired or unknown tokens have nothing left to revoke
            return

        record = self.db.get(AuthSession, payload["jti"])
        if record and not record.is_revoked:
            record.is_revoked = True
            record.revoked_at = _utcnow()
            self._commit("sign out")

        log_authentication_event("sign_out", user_id=payload["sub"])
        self.events.publish(AuthChange(AuthEvent.SIGNED_OUT, payload["sub"], payload["jti"]))

    # Admin operations

    def delete_identity(self, user_id: str) -> None:
        """Remove an identity; its profile, sessions and progress go with it"""
        identity = self.db.get(AuthIdentity, user_id)
        if not identity:
            raise AuthProviderError("User not found", "not_found")

        self.db.delete(identity)
        self._commit("delete identity")

        logger.info("Identity deleted", category=LogCategory.AUTHENTICATION, user_id=user_id)
        self.events.publish(AuthChange(AuthEvent.USER_DELETED, user_id))

    def set_secret(self, user_id: str, secret: str) -> None:
        identity = self.db.get(AuthIdentity, user_id)
        if not identity:
            raise AuthProviderError("User not found", "not_found")

        identity.password_hash = bcrypt.hash(secret)
        self._commit("set secret")

        logger.info("Password reset by admin", category=LogCategory.AUTHENTICATION, user_id=user_id)
        self.events.publish(AuthChange(AuthEvent.USER_UPDATED, user_id))


class AuthClient:
    """
    One caller's handle onto the provider. Holds the current access token the
    way a client SDK would and only forwards changes that concern it.
    """

    def __init__(self, provider: LocalAuthProvider, access_token: Optional[str] = None):
        self.provider = provider
        self.access_token = access_token
        self._session: Optional[AuthSessionInfo] = None

    @property
    def session(self) -> Optional[AuthSessionInfo]:
        """Session as of the last call, without asking the provider again"""
        return self._session

    def get_session(self) -> Optional[AuthSessionInfo]:
        self._session = self.provider.get_session(self.access_token)
        return self._session

    def sign_up(self, handle: str, secret: str, attributes: Optional[Dict[str, Any]] = None) -> AuthUser:
        return self.provider.sign_up(handle, secret, attributes)

    def sign_in(self, handle: str, secret: str) -> AuthSessionInfo:
        session = self.provider.sign_in(handle, secret)
        self.access_token = session.access_token
        self._session = session
        return session

    def refresh_session(self) -> AuthSessionInfo:
        session = self.provider.refresh_session(self.access_token)
        self.access_token = session.access_token
        self._session = session
        return session

    def sign_out(self) -> None:
        self.provider.sign_out(self.access_token)
        self.access_token = None
        self._session = None

    def forget(self) -> None:
        """Drop the token after the provider reported the session gone"""
        self.access_token = None
        self._session = None

    def _concerns_me(self, change: AuthChange) -> bool:
        session = self._session
        if not session:
            return False
        if change.event == AuthEvent.SIGNED_OUT:
            return change.jti == session.jti
        return change.user_id == session.user.id and change.event != AuthEvent.SIGNED_IN

    def on_auth_state_change(self, callback: Callable[[AuthChange], None]) -> Subscription:
        """
        Subscribe ``callback(change)`` to changes affecting this client's session.

        The callback runs on the publisher's thread, so it should only record
        the change; the owner applies it (and calls ``forget``) on its own thread.
        """

        def deliver(change: AuthChange):
            if self._concerns_me(change):
                callback(change)

        return self.provider.events.subscribe(deliver)
