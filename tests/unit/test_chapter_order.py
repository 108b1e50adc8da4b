import pytest
from sqlalchemy.exc import OperationalError

from models import Course, NO_VIDEO_PATH
from services.chapter_order import ChapterOrderManager, MoveDirection
from utils.error_handling import ConflictError, DependencyFailure, NotFoundError


def orders(manager, course):
    return [(c.title, c.order_in_course) for c in manager.ordered_chapters(course.id)]


class TestNextOrder:
    def test_empty_course_starts_at_zero(self, test_db, course):
        assert ChapterOrderManager(test_db).next_order(course.id) == 0

    def test_gaps_are_kept_and_max_plus_one_is_used(self, test_db, course, add_chapter):
        for title, order in (("A", 0), ("B", 2), ("C", 5)):
            add_chapter(course, title, order)
        assert ChapterOrderManager(test_db).next_order(course.id) == 6


class TestAppend:
    def test_append_places_chapter_last_without_video(self, test_db, course, add_chapter):
        add_chapter(course, "Limits", 0)
        manager = ChapterOrderManager(test_db)

        chapter = manager.append(course.id, {"title": "Derivatives"})

        assert chapter.order_in_course == 1
        assert chapter.video_storage_path == NO_VIDEO_PATH
        assert orders(manager, course) == [("Limits", 0), ("Derivatives", 1)]

    def test_append_to_missing_course(self, test_db):
        with pytest.raises(NotFoundError):
            ChapterOrderManager(test_db).append(999, {"title": "Orphan"})

    def test_explicit_position_already_taken(self, test_db, course, add_chapter):
        add_chapter(course, "Limits", 3)
        with pytest.raises(ConflictError):
            ChapterOrderManager(test_db).append(course.id, {"title": "Derivatives"}, order_in_course=3)

    def test_explicit_free_position(self, test_db, course, add_chapter):
        add_chapter(course, "Limits", 3)
        chapter = ChapterOrderManager(test_db).append(course.id, {"title": "Intro"}, order_in_course=1)
        assert chapter.order_in_course == 1


class TestOrdering:
    def test_equal_positions_fall_back_to_id(self, test_db, course, add_chapter):
        first = add_chapter(course, "First", 1)
        second = add_chapter(course, "Second", 1)
        ids = [c.id for c in ChapterOrderManager(test_db).ordered_chapters(course.id)]
        assert ids == [first.id, second.id]


class TestSwap:
    @pytest.fixture
    def three_chapters(self, course, add_chapter):
        return [add_chapter(course, title, order) for title, order in (("A", 0), ("B", 4), ("C", 9))]

    def test_move_middle_chapter_up(self, test_db, course, three_chapters):
        manager = ChapterOrderManager(test_db)

        assert manager.swap(course.id, three_chapters[1].id, MoveDirection.UP) is True
        assert orders(manager, course) == [("B", 0), ("A", 4), ("C", 9)]

    def test_move_middle_chapter_down(self, test_db, course, three_chapters):
        manager = ChapterOrderManager(test_db)

        assert manager.swap(course.id, three_chapters[1].id, "down") is True
        assert orders(manager, course) == [("A", 0), ("C", 4), ("B", 9)]

    def test_boundaries_do_not_write(self, test_db, course, three_chapters, monkeypatch):
        manager = ChapterOrderManager(test_db)
        commits = []
        monkeypatch.setattr(test_db, "commit", lambda: commits.append(True))

        assert manager.swap(course.id, three_chapters[0].id, MoveDirection.UP) is False
        assert manager.swap(course.id, three_chapters[2].id, MoveDirection.DOWN) is False

        assert commits == []
        assert orders(manager, course) == [("A", 0), ("B", 4), ("C", 9)]

    def test_single_chapter_course_is_a_no_op(self, test_db, course, add_chapter):
        only = add_chapter(course, "Only", 0)
        manager = ChapterOrderManager(test_db)

        assert manager.swap(course.id, only.id, MoveDirection.UP) is False
        assert manager.swap(course.id, only.id, MoveDirection.DOWN) is False

    def test_unknown_chapter(self, test_db, course, three_chapters):
        with pytest.raises(NotFoundError):
            ChapterOrderManager(test_db).swap(course.id, 12345, MoveDirection.UP)

    def test_unknown_chapter_releases_locked_rows(self, test_db, course, three_chapters, monkeypatch):
        rollbacks = []
        real_rollback = test_db.rollback

        def tracking_rollback():
            rollbacks.append(True)
            real_rollback()

        monkeypatch.setattr(test_db, "rollback", tracking_rollback)
        with pytest.raises(NotFoundError):
            ChapterOrderManager(test_db).swap(course.id, 12345, MoveDirection.DOWN)

        assert rollbacks == [True]
        assert not test_db.in_transaction()

    def test_failed_commit_leaves_both_positions_unchanged(self, test_db, course, three_chapters, monkeypatch):
        manager = ChapterOrderManager(test_db)

        def failing_commit():
            raise OperationalError("UPDATE chapters", {}, Exception("database is locked"))

        monkeypatch.setattr(test_db, "commit", failing_commit)
        with pytest.raises(DependencyFailure):
            manager.swap(course.id, three_chapters[1].id, MoveDirection.UP)
        monkeypatch.undo()

        assert orders(manager, course) == [("A", 0), ("B", 4), ("C", 9)]


class TestDirectEdits:
    def test_set_order_to_taken_position(self, test_db, course, add_chapter):
        add_chapter(course, "A", 0)
        b = add_chapter(course, "B", 1)
        with pytest.raises(ConflictError):
            ChapterOrderManager(test_db).set_order(b.id, 0)

    def test_set_order_to_free_position(self, test_db, course, add_chapter):
        add_chapter(course, "A", 0)
        b = add_chapter(course, "B", 1)
        assert ChapterOrderManager(test_db).set_order(b.id, 7).order_in_course == 7

    def test_reassign_keeps_position_value(self, test_db, course, add_chapter):
        other = Course(subject_id=course.subject_id, title="Calculus II")
        test_db.add(other)
        test_db.commit()
        add_chapter(other, "Series", 2)
        moved = add_chapter(course, "Integrals", 2)
        manager = ChapterOrderManager(test_db)

        manager.reassign_course(moved.id, other.id)

        assert [(c.title, c.order_in_course) for c in manager.ordered_chapters(other.id)] == [
            ("Series", 2),
            ("Integrals", 2),
        ]
        assert manager.ordered_chapters(course.id) == []
