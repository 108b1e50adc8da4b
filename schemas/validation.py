from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime

from models import UserType
from services.chapter_order import MoveDirection


def _strip_required(v: str, label: str) -> str:
    if not v or not v.strip():
        raise ValueError(f"{label} cannot be empty")
    return v.strip()


class UserRegistrationSchema(BaseModel):
    """Schema for self-service registration"""

    username: str = Field(..., min_length=1, max_length=50, description="Login name, cannot be changed later")
    password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str = Field(..., description="Must repeat the password")
    phone_number: str = Field(..., min_length=1, max_length=30)
    school: Optional[str] = Field(None, max_length=255)
    college: Optional[str] = Field(None, max_length=255)
    major: Optional[str] = Field(None, max_length=255)
    grade_year: Optional[str] = Field(None, max_length=20)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        v = _strip_required(v, "Username")
        if any(ch.isspace() for ch in v):
            raise ValueError("Username cannot contain spaces")
        return v

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v):
        return _strip_required(v, "Phone number")

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class LoginSchema(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        return _strip_required(v, "Username")


class ProfileUpdateSchema(BaseModel):
    """Fields a learner may change on their own profile"""

    phone_number: Optional[str] = Field(None, max_length=30)
    school: Optional[str] = Field(None, max_length=255)
    college: Optional[str] = Field(None, max_length=255)
    major: Optional[str] = Field(None, max_length=255)
    grade_year: Optional[str] = Field(None, max_length=20)


class AdminUserCreateSchema(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=6, max_length=128)
    phone_number: str = Field(..., min_length=1, max_length=30)
    user_type: UserType = UserType.USER
    access_expiry_date: Optional[datetime] = Field(None, description="Defaults to 30 days from now")
    school: Optional[str] = Field(None, max_length=255)
    college: Optional[str] = Field(None, max_length=255)
    major: Optional[str] = Field(None, max_length=255)
    grade_year: Optional[str] = Field(None, max_length=20)

    @field_validator("username", "phone_number")
    @classmethod
    def validate_required(cls, v):
        return _strip_required(v, "Field")


class AdminUserUpdateSchema(ProfileUpdateSchema):
    user_type: Optional[UserType] = None
    access_expiry_date: Optional[datetime] = None


class PasswordResetSchema(BaseModel):
    new_password: str = Field(..., min_length=6, max_length=128)


class SubjectCreateSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v, "Subject name")


class SubjectUpdateSchema(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)


class CourseCreateSchema(BaseModel):
    """Schema for creating courses"""

    subject_id: int = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    keywords: Optional[str] = Field(None, max_length=500, description="Free text matched by course search")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        return _strip_required(v, "Course title")


class CourseUpdateSchema(BaseModel):
    subject_id: Optional[int] = Field(None, gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    keywords: Optional[str] = Field(None, max_length=500)


class ChapterCreateSchema(BaseModel):
    course_id: int = Field(..., gt=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    order_in_course: Optional[int] = Field(None, ge=0, description="Appended after the last chapter when omitted")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        return _strip_required(v, "Chapter title")


class ChapterUpdateSchema(BaseModel):
    course_id: Optional[int] = Field(None, gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    order_in_course: Optional[int] = Field(None, ge=0)


class ChapterMoveSchema(BaseModel):
    direction: MoveDirection
