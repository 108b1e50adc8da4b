"""
Admin Router
User accounts, catalog management, chapter ordering and video uploads
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from models import UserType
from schemas.api_models import (
    AdminUserItem,
    BaseResponse,
    ChapterListResponse,
    ChapterMoveResponse,
    ChapterResponse,
    CourseListResponse,
    CourseResponse,
    ProfileResponse,
    StatsResponse,
    SubjectListResponse,
    SubjectResponse,
    UserListResponse,
    VideoUploadResponse,
)
from schemas.validation import (
    AdminUserCreateSchema,
    AdminUserUpdateSchema,
    ChapterCreateSchema,
    ChapterMoveSchema,
    ChapterUpdateSchema,
    CourseCreateSchema,
    CourseUpdateSchema,
    PasswordResetSchema,
    SubjectCreateSchema,
    SubjectUpdateSchema,
)
from services.accounts import AccountService
from services.catalog import CatalogService
from services.chapter_order import ChapterOrderManager
from services.media import MediaCoordinator, VideoState
from services.session_holder import SessionHolder
from utils.auth_dependencies import require_admin
from utils.error_handling import DependencyFailure
from utils.service_dependencies import (
    get_account_service,
    get_catalog_service,
    get_chapter_order_manager,
    get_media_coordinator,
)

# Every route here goes through the admin guard
router = APIRouter(dependencies=[Depends(require_admin)])


# =============================================================================
# STATISTICS AND USERS
# =============================================================================


@router.get("/stats", response_model=StatsResponse)
def get_stats(accounts: AccountService = Depends(get_account_service)):
    return StatsResponse(**accounts.stats())


@router.get("/users", response_model=UserListResponse)
def list_users(
    search: Optional[str] = None,
    user_type: Optional[UserType] = None,
    page: int = Query(1, ge=1),
    accounts: AccountService = Depends(get_account_service),
):
    result = accounts.list_users(search, user_type, page)
    users = [
        AdminUserItem(**ProfileResponse.model_validate(item["profile"]).model_dump(), is_expired=item["is_expired"])
        for item in result.pop("items")
    ]
    return UserListResponse(users=users, **result)


@router.post("/users", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
def create_user(data: AdminUserCreateSchema, accounts: AccountService = Depends(get_account_service)):
    """Create an account directly; access defaults to 30 days when no expiry is given"""
    profile = accounts.create_user(
        data.username,
        data.password,
        data.phone_number,
        user_type=data.user_type,
        access_expiry_date=data.access_expiry_date,
        extra_fields=data.model_dump(include={"school", "college", "major", "grade_year"}, exclude_none=True),
    )
    return ProfileResponse.model_validate(profile)


@router.put("/users/{user_id}", response_model=ProfileResponse)
def update_user(user_id: str, data: AdminUserUpdateSchema, accounts: AccountService = Depends(get_account_service)):
    profile = accounts.update_user(user_id, data.model_dump(exclude_unset=True))
    return ProfileResponse.model_validate(profile)


@router.delete("/users/{user_id}", response_model=BaseResponse)
def delete_user(user_id: str, accounts: AccountService = Depends(get_account_service)):
    accounts.delete_user(user_id)
    return BaseResponse(message="User deleted")


@router.post("/users/{user_id}/password", response_model=BaseResponse)
def reset_password(
    user_id: str, data: PasswordResetSchema, accounts: AccountService = Depends(get_account_service)
):
    accounts.reset_password(user_id, data.new_password)
    return BaseResponse(message="Password reset")


# =============================================================================
# SUBJECTS
# =============================================================================


@router.get("/subjects", response_model=SubjectListResponse)
def list_subjects(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    catalog: CatalogService = Depends(get_catalog_service),
):
    result = catalog.list_subjects(search, page)
    return SubjectListResponse(subjects=[SubjectResponse.model_validate(s) for s in result.pop("items")], **result)


@router.post("/subjects", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
def create_subject(data: SubjectCreateSchema, catalog: CatalogService = Depends(get_catalog_service)):
    return SubjectResponse.model_validate(catalog.create_subject(data.name, data.description))


@router.put("/subjects/{subject_id}", response_model=SubjectResponse)
def update_subject(
    subject_id: int, data: SubjectUpdateSchema, catalog: CatalogService = Depends(get_catalog_service)
):
    return SubjectResponse.model_validate(catalog.update_subject(subject_id, data.model_dump(exclude_unset=True)))


@router.delete("/subjects/{subject_id}", response_model=BaseResponse)
def delete_subject(subject_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    """Refused with 409 while the subject still has courses"""
    catalog.delete_subject(subject_id)
    return BaseResponse(message="Subject deleted")


# =============================================================================
# COURSES
# =============================================================================


@router.get("/courses", response_model=CourseListResponse)
def list_courses(
    subject_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    catalog: CatalogService = Depends(get_catalog_service),
):
    result = catalog.list_courses(subject_id, search, page)
    return CourseListResponse(courses=[CourseResponse.model_validate(c) for c in result.pop("items")], **result)


@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    data: CourseCreateSchema,
    holder: SessionHolder = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
):
    course = catalog.create_course(data.model_dump(), admin_id=holder.user.id)
    return CourseResponse.model_validate(catalog.get_course(course.id))


@router.put("/courses/{course_id}", response_model=CourseResponse)
def update_course(course_id: int, data: CourseUpdateSchema, catalog: CatalogService = Depends(get_catalog_service)):
    catalog.update_course(course_id, data.model_dump(exclude_unset=True))
    return CourseResponse.model_validate(catalog.get_course(course_id))


@router.delete("/courses/{course_id}", response_model=BaseResponse)
def delete_course(course_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    """Refused with 409 while the course still has chapters"""
    catalog.delete_course(course_id)
    return BaseResponse(message="Course deleted")


# =============================================================================
# CHAPTERS
# =============================================================================


@router.get("/chapters", response_model=ChapterListResponse)
def list_chapters(
    course_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    catalog: CatalogService = Depends(get_catalog_service),
):
    result = catalog.list_chapters(course_id, subject_id, search, page)
    return ChapterListResponse(chapters=[ChapterResponse.model_validate(c) for c in result.pop("items")], **result)


@router.post("/chapters", response_model=ChapterResponse, status_code=status.HTTP_201_CREATED)
def create_chapter(data: ChapterCreateSchema, catalog: CatalogService = Depends(get_catalog_service)):
    """New chapters start without a video and go after the last chapter unless a free position is given"""
    return ChapterResponse.model_validate(catalog.create_chapter(data.model_dump()))


@router.put("/chapters/{chapter_id}", response_model=ChapterResponse)
def update_chapter(
    chapter_id: int, data: ChapterUpdateSchema, catalog: CatalogService = Depends(get_catalog_service)
):
    return ChapterResponse.model_validate(catalog.update_chapter(chapter_id, data.model_dump(exclude_unset=True)))


@router.delete("/chapters/{chapter_id}", response_model=BaseResponse)
def delete_chapter(chapter_id: int, catalog: CatalogService = Depends(get_catalog_service)):
    catalog.delete_chapter(chapter_id)
    return BaseResponse(message="Chapter deleted")


@router.post("/chapters/{chapter_id}/move", response_model=ChapterMoveResponse)
def move_chapter(
    chapter_id: int,
    data: ChapterMoveSchema,
    catalog: CatalogService = Depends(get_catalog_service),
    ordering: ChapterOrderManager = Depends(get_chapter_order_manager),
):
    """
    Swap the chapter with its neighbour. Moving the first chapter up or the
    last one down changes nothing and reports ``moved: false``.
    """
    chapter = catalog.get_chapter(chapter_id)
    course_id = chapter.course_id
    moved = ordering.swap(course_id, chapter_id, data.direction)
    chapters = ordering.ordered_chapters(course_id)
    return ChapterMoveResponse(
        message=None if moved else "Chapter is already at that end of the course",
        moved=moved,
        chapters=[ChapterResponse.model_validate(c) for c in chapters],
    )


@router.post("/chapters/{chapter_id}/video", response_model=VideoUploadResponse)
def upload_chapter_video(
    chapter_id: int,
    file: UploadFile = File(...),
    media: MediaCoordinator = Depends(get_media_coordinator),
):
    job = media.upload_video(chapter_id, file.file, file.filename, file.content_type, size=file.size)
    if job.state != VideoState.BOUND:
        raise DependencyFailure(job.error or "Upload failed", title="Upload failed")
    return VideoUploadResponse(
        message="Video uploaded",
        chapter_id=chapter_id,
        state=job.state.value,
        progress=job.progress,
        storage_path=job.storage_path,
        error=job.error,
    )
