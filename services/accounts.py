"""
Account administration and self-service profile edits.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from backends.auth_provider import AuthProviderError, LocalAuthProvider
from config import settings
from models import Chapter, Course, Profile, Subject, UserType
from services.catalog import paginate
from services.entitlement import as_utc, is_entitled, utcnow
from utils.error_handling import (
    ConflictError,
    DependencyFailure,
    InvalidInputError,
    NotFoundError,
    log_operation_success,
    safe_database_operation,
    validate_resource_exists,
)
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.accounts")

SELF_EDITABLE_FIELDS = ("phone_number", "school", "college", "major", "grade_year")
ADMIN_EDITABLE_FIELDS = SELF_EDITABLE_FIELDS + ("user_type", "access_expiry_date")


def _translate(e: AuthProviderError):
    if e.code == "handle_taken":
        return ConflictError("Username already exists")
    if e.code == "not_found":
        return NotFoundError("User not found")
    return DependencyFailure(e.message)


class AccountService:
    def __init__(self, db: Session, provider: LocalAuthProvider):
        self.db = db
        self.provider = provider

    def get_profile(self, user_id: str) -> Profile:
        profile = self.db.get(Profile, user_id)
        validate_resource_exists(profile, "User", user_id)
        return profile

    def list_users(
        self,
        search: Optional[str] = None,
        user_type: Optional[UserType] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        query = self.db.query(Profile)
        if user_type is not None:
            query = query.filter(Profile.user_type == UserType(user_type))
        term = (search or "").strip()
        if term:
            query = query.filter(
                or_(
                    Profile.username.icontains(term, autoescape=True),
                    Profile.phone_number.icontains(term, autoescape=True),
                    Profile.school.icontains(term, autoescape=True),
                )
            )
        result = paginate(query.order_by(Profile.created_at.desc(), Profile.username), page, page_size)
        now = utcnow()
        result["items"] = [{"profile": p, "is_expired": not is_entitled(p, now)} for p in result["items"]]
        return result

    def create_user(
        self,
        username: str,
        password: str,
        phone_number: str,
        user_type: UserType = UserType.USER,
        access_expiry_date: Optional[datetime] = None,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Profile:
        username = (username or "").strip()
        if not username or not password or not (phone_number or "").strip():
            raise InvalidInputError("Username, password and phone number are required")
        if self.db.query(Profile.id).filter(Profile.username == username).first():
            raise ConflictError("Username already exists")

        expiry = as_utc(access_expiry_date) if access_expiry_date else utcnow() + timedelta(days=settings.DEFAULT_ACCESS_DAYS)
        attributes = dict(extra_fields or {})
        attributes.update(
            {"phone_number": phone_number, "user_type": UserType(user_type).value, "access_expiry_date": expiry}
        )
        try:
            user = self.provider.sign_up(username, password, attributes)
        except AuthProviderError as e:
            raise _translate(e) from e

        log_operation_success("create user", f"username={username} type={UserType(user_type).value}")
        return self.get_profile(user.id)

    def update_user(self, user_id: str, changes: Dict[str, Any]) -> Profile:
        """Admin edit; the username is never changed"""
        profile = self.get_profile(user_id)
        with safe_database_operation(self.db, "update user"):
            for key in ADMIN_EDITABLE_FIELDS:
                if key not in changes or changes[key] is None:
                    continue
                value = changes[key]
                if key == "user_type":
                    value = UserType(value)
                elif key == "access_expiry_date":
                    value = as_utc(value)
                setattr(profile, key, value)
            self.db.commit()
            self.db.refresh(profile)
        log_operation_success("update user", f"id={user_id}")
        return profile

    def delete_user(self, user_id: str) -> None:
        self.get_profile(user_id)
        try:
            self.provider.delete_identity(user_id)
        except AuthProviderError as e:
            raise _translate(e) from e
        log_operation_success("delete user", f"id={user_id}")

    def reset_password(self, user_id: str, new_password: str) -> None:
        if not new_password:
            raise InvalidInputError("New password is required")
        self.get_profile(user_id)
        try:
            self.provider.set_secret(user_id, new_password)
        except AuthProviderError as e:
            raise _translate(e) from e

    def update_own_profile(self, profile: Profile, changes: Dict[str, Any]) -> Profile:
        with safe_database_operation(self.db, "update profile"):
            for key in SELF_EDITABLE_FIELDS:
                if key in changes:
                    setattr(profile, key, changes[key] or None)
            self.db.commit()
            self.db.refresh(profile)
        logger.info("Profile updated", category=LogCategory.BUSINESS, user_id=profile.id)
        return profile

    def stats(self) -> Dict[str, int]:
        now = utcnow()

        def count(*criteria):
            return self.db.query(func.count(Profile.id)).filter(*criteria).scalar()

        return {
            "user_count": count(),
            "admin_count": count(Profile.user_type == UserType.ADMIN),
            "expired_user_count": count(Profile.user_type == UserType.USER, Profile.access_expiry_date <= now),
            "subject_count": self.db.query(func.count(Subject.id)).scalar(),
            "course_count": self.db.query(func.count(Course.id)).scalar(),
            "chapter_count": self.db.query(func.count(Chapter.id)).scalar(),
        }
