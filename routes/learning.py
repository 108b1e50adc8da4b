"""
Learner Router
Dashboard, catalog browsing, profile and chapter playback for signed-in users
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from schemas.api_models import (
    CourseDetailResponse,
    CourseListResponse,
    CourseResponse,
    CourseSearchResponse,
    DashboardResponse,
    EntitlementResponse,
    ExpiredResponse,
    LearnerChapter,
    PlaybackResponse,
    ProfileResponse,
    ProgressItem,
    SubjectListResponse,
    SubjectResponse,
)
from schemas.validation import ProfileUpdateSchema
from services.accounts import AccountService
from services.catalog import CatalogService
from services.entitlement import entitlement_summary
from services.media import MediaCoordinator, PlaybackStatus
from services.session_holder import SessionHolder
from utils.auth_dependencies import require_playback, require_user
from utils.service_dependencies import get_account_service, get_catalog_service, get_media_coordinator

router = APIRouter()


def _learner_chapter(chapter, watched: bool = False) -> LearnerChapter:
    item = LearnerChapter.model_validate(chapter)
    item.watched = watched
    return item


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    holder: SessionHolder = Depends(require_user), catalog: CatalogService = Depends(get_catalog_service)
):
    data = catalog.dashboard(holder.profile)
    return DashboardResponse(
        profile=ProfileResponse.model_validate(data["profile"]),
        entitlement=EntitlementResponse(**data["entitlement"]),
        recent_subjects=[SubjectResponse.model_validate(s) for s in data["recent_subjects"]],
        recent_courses=[CourseResponse.model_validate(c) for c in data["recent_courses"]],
        recent_progress=[
            ProgressItem(
                chapter_id=p.chapter_id,
                chapter_title=p.chapter.title,
                course_id=p.chapter.course_id,
                course_title=p.chapter.course.title,
                watched_at=p.watched_at,
            )
            for p in data["recent_progress"]
        ],
    )


@router.get("/subjects", response_model=SubjectListResponse)
def list_subjects(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    holder: SessionHolder = Depends(require_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    result = catalog.list_subjects(search, page)
    return SubjectListResponse(
        subjects=[SubjectResponse.model_validate(s) for s in result.pop("items")], **result
    )


@router.get("/courses", response_model=CourseListResponse)
def list_courses(
    subject_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    holder: SessionHolder = Depends(require_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Courses of one subject (or all), ordered by title"""
    if subject_id is not None:
        catalog.get_subject(subject_id)
    result = catalog.list_courses(subject_id, search, page)
    return CourseListResponse(courses=[CourseResponse.model_validate(c) for c in result.pop("items")], **result)


@router.get("/courses/{course_id}", response_model=CourseDetailResponse)
def get_course(
    course_id: int, holder: SessionHolder = Depends(require_user), catalog: CatalogService = Depends(get_catalog_service)
):
    detail = catalog.course_detail(course_id, holder.user.id)
    return CourseDetailResponse(
        course=CourseResponse.model_validate(detail["course"]),
        chapters=[_learner_chapter(item["chapter"], item["watched"]) for item in detail["chapters"]],
    )


@router.get("/search", response_model=CourseSearchResponse)
def search_courses(
    q: str = Query("", max_length=200),
    holder: SessionHolder = Depends(require_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Match courses by title, description or keywords"""
    courses = catalog.search_courses(q)
    return CourseSearchResponse(query=q, courses=[CourseResponse.model_validate(c) for c in courses])


@router.get("/profile", response_model=ProfileResponse)
def get_profile(holder: SessionHolder = Depends(require_user)):
    return ProfileResponse.model_validate(holder.profile)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    data: ProfileUpdateSchema,
    holder: SessionHolder = Depends(require_user),
    accounts: AccountService = Depends(get_account_service),
):
    profile = accounts.update_own_profile(holder.profile, data.model_dump(exclude_unset=True))
    return ProfileResponse.model_validate(profile)


@router.get("/expired", response_model=ExpiredResponse)
def get_expired_notice(holder: SessionHolder = Depends(require_user)):
    summary = entitlement_summary(holder.profile)
    return ExpiredResponse(
        success=not summary["is_expired"],
        username=holder.profile.username,
        entitlement=EntitlementResponse(**summary),
        contact_message="Your access has expired. Please contact an administrator to renew it.",
    )


@router.get("/courses/{course_id}/chapters/{chapter_id}/play", response_model=PlaybackResponse)
def play_chapter(
    course_id: int,
    chapter_id: int,
    holder: SessionHolder = Depends(require_playback),
    catalog: CatalogService = Depends(get_catalog_service),
    media: MediaCoordinator = Depends(get_media_coordinator),
):
    """
    Signed, short-lived URL for the chapter's video. Requesting it marks the
    chapter as watched.
    """
    context = catalog.player_context(course_id, chapter_id)
    playback = media.request_playback(chapter_id, holder.user.id)
    ok = playback.status == PlaybackStatus.PLAYABLE
    return PlaybackResponse(
        success=ok,
        message=None if ok else playback.error,
        status=playback.status.value,
        url=playback.url,
        expires_at=playback.expires_at,
        error=playback.error,
        course=CourseResponse.model_validate(context["course"]),
        chapter=_learner_chapter(context["chapter"], watched=ok),
        previous_chapter=_learner_chapter(context["previous"]) if context["previous"] else None,
        next_chapter=_learner_chapter(context["next"]) if context["next"] else None,
    )
