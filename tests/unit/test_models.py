import pytest
from sqlalchemy.exc import IntegrityError

from models import AuthIdentity, AuthSession, Chapter, ChapterProgress, NO_VIDEO_PATH, Profile, Subject, UserType


class TestProfileModel:
    def test_admin_flag_follows_user_type(self, admin_user, learner):
        assert admin_user.is_admin is True
        assert learner.is_admin is False
        assert learner.user_type == UserType.USER

    def test_username_must_be_unique(self, test_db, learner):
        duplicate = AuthIdentity(handle="alice-2", password_hash="x")
        duplicate.profile = Profile(username="alice", access_expiry_date=learner.access_expiry_date)
        test_db.add(duplicate)
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()

    def test_deleting_identity_cascades(self, test_db, provider, learner, course, add_chapter):
        chapter = add_chapter(course, "Limits", 0)
        test_db.add(ChapterProgress(user_id=learner.id, chapter_id=chapter.id))
        test_db.commit()
        provider.sign_in("alice", "secret123")

        provider.delete_identity(learner.id)

        assert test_db.query(Profile).count() == 0
        assert test_db.query(AuthSession).count() == 0
        assert test_db.query(ChapterProgress).count() == 0
        assert test_db.get(Chapter, chapter.id) is not None


class TestCatalogModels:
    def test_new_chapter_has_no_video(self, test_db, course):
        chapter = Chapter(course_id=course.id, title="Limits", order_in_course=0)
        test_db.add(chapter)
        test_db.commit()

        assert chapter.video_storage_path == NO_VIDEO_PATH
        assert chapter.has_video is False

    def test_subject_name_unique(self, test_db, course):
        test_db.add(Subject(name="Math"))
        with pytest.raises(IntegrityError):
            test_db.commit()
        test_db.rollback()

    def test_course_chapters_relationship_is_ordered(self, test_db, course, add_chapter):
        add_chapter(course, "Second", 5)
        add_chapter(course, "First", 1)
        test_db.refresh(course)
        assert [c.title for c in course.chapters] == ["First", "Second"]
