"""
Pydantic response schemas for API v1
This is the single source of truth for all API contracts
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Dict, Any, Union
from datetime import datetime

from models import UserType


# ============================================================================
# BASE MODELS
# ============================================================================

class BaseResponse(BaseModel):
    """Base response with common fields"""
    success: bool = True
    message: Optional[str] = None


class PaginatedResponse(BaseResponse):
    page: int
    page_size: int
    total: int
    total_pages: int


class Notice(BaseModel):
    """User-facing notification, shown as a toast by the client"""
    title: str
    description: str
    variant: str = "default"


# ============================================================================
# PROFILE / SESSION MODELS
# ============================================================================

class ProfileResponse(BaseModel):
    id: str
    username: str
    phone_number: Optional[str] = None
    school: Optional[str] = None
    college: Optional[str] = None
    major: Optional[str] = None
    grade_year: Optional[str] = None
    user_type: UserType
    access_expiry_date: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EntitlementResponse(BaseModel):
    has_valid_access: bool
    is_expired: bool
    remaining_days: int
    access_expiry_date: Optional[datetime] = None


class RegisterResponse(BaseResponse):
    redirect_to: str
    notices: List[Notice] = []


class LoginResponse(BaseResponse):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    redirect_to: str
    profile: Optional[ProfileResponse] = None


class TokenRefreshResponse(BaseResponse):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class LogoutResponse(BaseResponse):
    redirect_to: str


class SessionStateResponse(BaseResponse):
    authenticated: bool
    is_loading: bool = False
    is_admin: bool = False
    has_valid_access: bool = False
    user_id: Optional[str] = None
    profile: Optional[ProfileResponse] = None
    entitlement: Optional[EntitlementResponse] = None


class AdminUserItem(ProfileResponse):
    is_expired: bool


class UserListResponse(PaginatedResponse):
    users: List[AdminUserItem]


class StatsResponse(BaseResponse):
    user_count: int
    admin_count: int
    expired_user_count: int
    subject_count: int
    course_count: int
    chapter_count: int


# ============================================================================
# CATALOG MODELS
# ============================================================================

class SubjectSummary(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class SubjectResponse(SubjectSummary):
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SubjectListResponse(PaginatedResponse):
    subjects: List[SubjectResponse]


class CourseResponse(BaseModel):
    id: int
    subject_id: int
    title: str
    description: Optional[str] = None
    keywords: Optional[str] = None
    subject: Optional[SubjectSummary] = None
    created_by_admin_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CourseListResponse(PaginatedResponse):
    courses: List[CourseResponse]


class ChapterResponse(BaseModel):
    id: int
    course_id: int
    title: str
    description: Optional[str] = None
    order_in_course: int
    has_video: bool
    video_storage_path: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChapterListResponse(PaginatedResponse):
    chapters: List[ChapterResponse]


class LearnerChapter(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    order_in_course: int
    has_video: bool
    watched: bool = False

    model_config = ConfigDict(from_attributes=True)


class CourseDetailResponse(BaseResponse):
    course: CourseResponse
    chapters: List[LearnerChapter]


class ChapterMoveResponse(BaseResponse):
    moved: bool
    chapters: List[ChapterResponse]


class VideoUploadResponse(BaseResponse):
    chapter_id: int
    state: str
    progress: int = Field(..., ge=0, le=100)
    storage_path: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# LEARNER VIEWS
# ============================================================================

class ProgressItem(BaseModel):
    chapter_id: int
    chapter_title: str
    course_id: int
    course_title: str
    watched_at: datetime


class CourseSearchResponse(BaseResponse):
    query: str
    courses: List[CourseResponse]


class DashboardResponse(BaseResponse):
    profile: ProfileResponse
    entitlement: EntitlementResponse
    recent_subjects: List[SubjectResponse]
    recent_courses: List[CourseResponse]
    recent_progress: List[ProgressItem]


class PlaybackResponse(BaseResponse):
    status: str
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    course: CourseResponse
    chapter: LearnerChapter
    previous_chapter: Optional[LearnerChapter] = None
    next_chapter: Optional[LearnerChapter] = None


class ExpiredResponse(BaseResponse):
    username: str
    entitlement: EntitlementResponse
    contact_message: str


# ============================================================================
# ERROR MODELS
# ============================================================================

class ErrorDetail(BaseModel):
    loc: Optional[List[Union[str, int]]] = None
    msg: str
    type: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[Union[str, List[ErrorDetail], Dict[str, Any]]] = None
    status_code: int
    request_id: Optional[str] = None
    correlation_id: Optional[str] = None
    redirect_to: Optional[str] = None
