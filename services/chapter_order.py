"""
Chapter ordering within a course.

Positions (``order_in_course``) need not be contiguous. Listing always sorts by
position then id, and moving a chapter up or down swaps its position with the
adjacent sibling so relative order stays consistent.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Chapter, Course, NO_VIDEO_PATH
from utils.error_handling import ConflictError, DependencyFailure, InvalidInputError, safe_database_operation, validate_resource_exists
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.chapter_order")

CHAPTER_FIELDS = ("title", "description", "video_storage_path")


class MoveDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class ChapterOrderManager:
    def __init__(self, db: Session):
        self.db = db

    def _course(self, course_id: int) -> Course:
        course = self.db.get(Course, course_id)
        validate_resource_exists(course, "Course", course_id)
        return course

    def _chapter(self, chapter_id: int) -> Chapter:
        chapter = self.db.get(Chapter, chapter_id)
        validate_resource_exists(chapter, "Chapter", chapter_id)
        return chapter

    def ordered_chapters(self, course_id: int, for_update: bool = False) -> List[Chapter]:
        query = (
            self.db.query(Chapter)
            .filter(Chapter.course_id == course_id)
            .order_by(Chapter.order_in_course, Chapter.id)
        )
        if for_update:
            # Ignored by SQLite, row locks on PostgreSQL
            query = query.with_for_update()
        return query.all()

    def next_order(self, course_id: int) -> int:
        highest = self.db.query(func.max(Chapter.order_in_course)).filter(Chapter.course_id == course_id).scalar()
        return 0 if highest is None else highest + 1

    def _ensure_position_free(self, course_id: int, order_in_course: int, exclude_id: Optional[int] = None):
        if order_in_course < 0:
            raise InvalidInputError("Chapter position cannot be negative")
        query = self.db.query(Chapter.id).filter(
            Chapter.course_id == course_id, Chapter.order_in_course == order_in_course
        )
        if exclude_id is not None:
            query = query.filter(Chapter.id != exclude_id)
        if query.first():
            raise ConflictError(f"Position {order_in_course} is already used in this course")

    def append(self, course_id: int, fields: Dict[str, Any], order_in_course: Optional[int] = None) -> Chapter:
        """Create a chapter at the end of the course, or at a free caller-chosen position"""
        self._course(course_id)
        if not (fields.get("title") or "").strip():
            raise InvalidInputError("Chapter title is required")

        if order_in_course is None:
            order_in_course = self.next_order(course_id)
        else:
            self._ensure_position_free(course_id, order_in_course)

        values = {key: fields.get(key) for key in CHAPTER_FIELDS}
        values["title"] = values["title"].strip()
        values["description"] = values["description"] or None
        values["video_storage_path"] = values["video_storage_path"] or NO_VIDEO_PATH

        with safe_database_operation(self.db, "append chapter"):
            chapter = Chapter(course_id=course_id, order_in_course=order_in_course, **values)
            self.db.add(chapter)
            self.db.commit()
            self.db.refresh(chapter)

        logger.info(
            "Chapter appended",
            category=LogCategory.BUSINESS,
            extra={"course_id": course_id, "chapter_id": chapter.id, "order_in_course": order_in_course},
        )
        return chapter

    def swap(self, course_id: int, chapter_id: int, direction: MoveDirection) -> bool:
        """
        Exchange a chapter's position with its neighbour in ``direction``.

        Returns False without writing anything when the chapter is already at
        that end of the course. Both rows are updated in one transaction; if
        the commit fails nothing changes and the caller should re-fetch.
        """
        direction = MoveDirection(direction)
        chapters = self.ordered_chapters(course_id, for_update=True)
        index = next((i for i, c in enumerate(chapters) if c.id == chapter_id), None)
        if index is None:
            self.db.rollback()
            validate_resource_exists(None, "Chapter", chapter_id)

        neighbour_index = index - 1 if direction == MoveDirection.UP else index + 1
        if neighbour_index < 0 or neighbour_index >= len(chapters):
            # Release the row locks taken above
            self.db.rollback()
            return False

        chapter, neighbour = chapters[index], chapters[neighbour_index]
        chapter.order_in_course, neighbour.order_in_course = neighbour.order_in_course, chapter.order_in_course
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Chapter reorder failed",
                category=LogCategory.DATABASE,
                exception=e,
                extra={"course_id": course_id, "chapter_id": chapter_id, "direction": direction.value},
            )
            raise DependencyFailure("Updating the chapter order failed; refresh the list and try again") from e

        logger.info(
            "Chapters swapped",
            category=LogCategory.BUSINESS,
            extra={"course_id": course_id, "chapter_id": chapter.id, "neighbour_id": neighbour.id},
        )
        return True

    def set_order(self, chapter_id: int, order_in_course: int) -> Chapter:
        chapter = self._chapter(chapter_id)
        if chapter.order_in_course == order_in_course:
            return chapter
        self._ensure_position_free(chapter.course_id, order_in_course, exclude_id=chapter.id)
        with safe_database_operation(self.db, "set chapter order"):
            chapter.order_in_course = order_in_course
            self.db.commit()
        return chapter

    def reassign_course(self, chapter_id: int, new_course_id: int) -> Chapter:
        """Move a chapter to another course, keeping its position value as-is"""
        chapter = self._chapter(chapter_id)
        if chapter.course_id == new_course_id:
            return chapter
        self._course(new_course_id)
        with safe_database_operation(self.db, "reassign chapter"):
            chapter.course_id = new_course_id
            self.db.commit()
        logger.info(
            "Chapter moved to another course",
            category=LogCategory.BUSINESS,
            extra={"chapter_id": chapter_id, "course_id": new_course_id, "order_in_course": chapter.order_in_course},
        )
        return chapter
