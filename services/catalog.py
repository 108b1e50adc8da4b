"""
Catalog service: subjects, courses and chapters for admins and learners.
"""

import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session, joinedload

from config import settings
from models import Chapter, ChapterProgress, Course, Profile, Subject
from services.chapter_order import ChapterOrderManager
from services.entitlement import entitlement_summary
from services.media import MediaCoordinator, video_state
from utils.error_handling import (
    ConflictError,
    InvalidInputError,
    log_operation_success,
    safe_database_operation,
    validate_resource_exists,
)

RECENT_SUBJECTS = 3
RECENT_COURSES = 4
RECENT_PROGRESS = 5


def paginate(query: Query, page: int = 1, page_size: Optional[int] = None) -> Dict[str, Any]:
    page_size = page_size or settings.PAGE_SIZE
    page = max(page, 1)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return {
        "items": items,
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }


def _search(columns, term: Optional[str]):
    term = (term or "").strip()
    if not term:
        return None
    return or_(*[column.icontains(term, autoescape=True) for column in columns])


def _required(value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidInputError(f"{label} is required")
    return value


def _apply(entity, changes: Dict[str, Any], fields):
    for key in fields:
        if key in changes:
            value = changes[key]
            setattr(entity, key, value.strip() if isinstance(value, str) else value)


class CatalogService:
    def __init__(self, db: Session, media: Optional[MediaCoordinator] = None):
        self.db = db
        self.media = media
        self.chapters = ChapterOrderManager(db)

    # Subjects

    def get_subject(self, subject_id: int) -> Subject:
        subject = self.db.get(Subject, subject_id)
        validate_resource_exists(subject, "Subject", subject_id)
        return subject

    def list_subjects(self, search: Optional[str] = None, page: int = 1, page_size: Optional[int] = None):
        query = self.db.query(Subject)
        condition = _search((Subject.name, Subject.description), search)
        if condition is not None:
            query = query.filter(condition)
        return paginate(query.order_by(Subject.name), page, page_size)

    def _ensure_subject_name_free(self, name: str, exclude_id: Optional[int] = None):
        query = self.db.query(Subject.id).filter(Subject.name == name)
        if exclude_id is not None:
            query = query.filter(Subject.id != exclude_id)
        if query.first():
            raise ConflictError(f"A subject named '{name}' already exists")

    def create_subject(self, name: str, description: Optional[str] = None) -> Subject:
        name = _required(name, "Subject name")
        self._ensure_subject_name_free(name)
        with safe_database_operation(self.db, "create subject"):
            subject = Subject(name=name, description=description or None)
            self.db.add(subject)
            self.db.commit()
            self.db.refresh(subject)
        log_operation_success("create subject", f"id={subject.id}")
        return subject

    def update_subject(self, subject_id: int, changes: Dict[str, Any]) -> Subject:
        subject = self.get_subject(subject_id)
        if "name" in changes:
            changes["name"] = _required(changes["name"], "Subject name")
            self._ensure_subject_name_free(changes["name"], exclude_id=subject_id)
        with safe_database_operation(self.db, "update subject"):
            _apply(subject, changes, ("name", "description"))
            self.db.commit()
            self.db.refresh(subject)
        return subject

    def delete_subject(self, subject_id: int) -> None:
        subject = self.get_subject(subject_id)
        dependents = self.db.query(func.count(Course.id)).filter(Course.subject_id == subject_id).scalar()
        if dependents:
            raise ConflictError(
                f"This subject still has {dependents} course(s); delete those first", title="Cannot delete subject"
            )
        with safe_database_operation(self.db, "delete subject"):
            self.db.delete(subject)
            self.db.commit()
        log_operation_success("delete subject", f"id={subject_id}")

    # Courses

    def get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).options(joinedload(Course.subject)).filter(Course.id == course_id).first()
        validate_resource_exists(course, "Course", course_id)
        return course

    def _course_query(self, subject_id: Optional[int], search: Optional[str]):
        query = self.db.query(Course).options(joinedload(Course.subject))
        if subject_id is not None:
            query = query.filter(Course.subject_id == subject_id)
        condition = _search((Course.title, Course.description, Course.keywords), search)
        if condition is not None:
            query = query.filter(condition)
        return query.order_by(Course.title, Course.id)

    def list_courses(
        self,
        subject_id: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ):
        return paginate(self._course_query(subject_id, search), page, page_size)

    def create_course(self, fields: Dict[str, Any], admin_id: Optional[str] = None) -> Course:
        title = _required(fields.get("title"), "Course title")
        if fields.get("subject_id") is None:
            raise InvalidInputError("Select a subject for the course")
        self.get_subject(fields["subject_id"])
        with safe_database_operation(self.db, "create course"):
            course = Course(
                subject_id=fields["subject_id"],
                title=title,
                description=fields.get("description") or None,
                keywords=fields.get("keywords") or None,
                created_by_admin_id=admin_id,
            )
            self.db.add(course)
            self.db.commit()
            self.db.refresh(course)
        log_operation_success("create course", f"id={course.id}")
        return course

    def update_course(self, course_id: int, changes: Dict[str, Any]) -> Course:
        course = self.get_course(course_id)
        if "title" in changes:
            changes["title"] = _required(changes["title"], "Course title")
        if changes.get("subject_id") is not None:
            self.get_subject(changes["subject_id"])
        elif "subject_id" in changes:
            changes.pop("subject_id")
        with safe_database_operation(self.db, "update course"):
            _apply(course, changes, ("subject_id", "title", "description", "keywords"))
            self.db.commit()
            self.db.refresh(course)
        return course

    def delete_course(self, course_id: int) -> None:
        course = self.get_course(course_id)
        dependents = self.db.query(func.count(Chapter.id)).filter(Chapter.course_id == course_id).scalar()
        if dependents:
            raise ConflictError(
                f"This course still has {dependents} chapter(s); delete those first", title="Cannot delete course"
            )
        with safe_database_operation(self.db, "delete course"):
            self.db.delete(course)
            self.db.commit()
        log_operation_success("delete course", f"id={course_id}")

    # Chapters

    def get_chapter(self, chapter_id: int) -> Chapter:
        chapter = self.db.get(Chapter, chapter_id)
        validate_resource_exists(chapter, "Chapter", chapter_id)
        return chapter

    def list_chapters(
        self,
        course_id: Optional[int] = None,
        subject_id: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ):
        query = self.db.query(Chapter).join(Course, Chapter.course_id == Course.id)
        if course_id is not None:
            query = query.filter(Chapter.course_id == course_id)
        if subject_id is not None:
            query = query.filter(Course.subject_id == subject_id)
        condition = _search((Chapter.title, Chapter.description), search)
        if condition is not None:
            query = query.filter(condition)
        query = query.order_by(Course.title, Chapter.course_id, Chapter.order_in_course, Chapter.id)
        return paginate(query, page, page_size)

    def create_chapter(self, fields: Dict[str, Any]) -> Chapter:
        return self.chapters.append(fields["course_id"], fields, fields.get("order_in_course"))

    def update_chapter(self, chapter_id: int, changes: Dict[str, Any]) -> Chapter:
        chapter = self.get_chapter(chapter_id)
        if changes.get("course_id") is not None:
            self.chapters.reassign_course(chapter_id, changes["course_id"])
        if changes.get("order_in_course") is not None:
            self.chapters.set_order(chapter_id, changes["order_in_course"])

        if "title" in changes:
            changes["title"] = _required(changes["title"], "Chapter title")
        with safe_database_operation(self.db, "update chapter"):
            _apply(chapter, changes, ("title", "description"))
            self.db.commit()
            self.db.refresh(chapter)
        return chapter

    def delete_chapter(self, chapter_id: int) -> None:
        self.media.delete_chapter(chapter_id)

    # Learner views

    def all_subjects(self) -> List[Subject]:
        return self.db.query(Subject).order_by(Subject.name).all()

    def courses_for_subject(self, subject_id: int) -> List[Course]:
        self.get_subject(subject_id)
        return self._course_query(subject_id, None).all()

    def search_courses(self, term: str) -> List[Course]:
        if not (term or "").strip():
            return []
        return self._course_query(None, term).all()

    def _watched_ids(self, user_id: str, chapter_ids: List[int]) -> set:
        if not chapter_ids:
            return set()
        rows = (
            self.db.query(ChapterProgress.chapter_id)
            .filter(ChapterProgress.user_id == user_id, ChapterProgress.chapter_id.in_(chapter_ids))
            .all()
        )
        return {row.chapter_id for row in rows}

    def course_detail(self, course_id: int, user_id: str) -> Dict[str, Any]:
        course = self.get_course(course_id)
        chapters = self.chapters.ordered_chapters(course_id)
        watched = self._watched_ids(user_id, [c.id for c in chapters])
        return {
            "course": course,
            "chapters": [
                {"chapter": c, "watched": c.id in watched, "video_state": video_state(c)} for c in chapters
            ],
        }

    def player_context(self, course_id: int, chapter_id: int) -> Dict[str, Any]:
        """Chapter being played plus its neighbours in course order"""
        course = self.get_course(course_id)
        chapters = self.chapters.ordered_chapters(course_id)
        index = next((i for i, c in enumerate(chapters) if c.id == chapter_id), None)
        if index is None:
            validate_resource_exists(None, "Chapter", chapter_id)
        return {
            "course": course,
            "chapter": chapters[index],
            "previous": chapters[index - 1] if index > 0 else None,
            "next": chapters[index + 1] if index + 1 < len(chapters) else None,
        }

    def dashboard(self, profile: Profile) -> Dict[str, Any]:
        subjects = self.db.query(Subject).order_by(Subject.created_at.desc(), Subject.id.desc()).limit(RECENT_SUBJECTS).all()
        courses = (
            self.db.query(Course)
            .options(joinedload(Course.subject))
            .order_by(Course.created_at.desc(), Course.id.desc())
            .limit(RECENT_COURSES)
            .all()
        )
        progress = (
            self.db.query(ChapterProgress)
            .options(joinedload(ChapterProgress.chapter).joinedload(Chapter.course))
            .filter(ChapterProgress.user_id == profile.id)
            .order_by(ChapterProgress.watched_at.desc())
            .limit(RECENT_PROGRESS)
            .all()
        )
        return {
            "profile": profile,
            "entitlement": entitlement_summary(profile),
            "recent_subjects": subjects,
            "recent_courses": courses,
            "recent_progress": progress,
        }
