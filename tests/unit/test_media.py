import io
import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from backends.object_storage import LocalObjectStorage, StorageError
from models import Chapter, ChapterProgress, NO_VIDEO_PATH
from services.entitlement import as_utc
from services.media import MediaCoordinator, PlaybackStatus, VideoState, video_state
from utils.error_handling import InvalidInputError

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" * 200_000


class FailingUploadStorage(LocalObjectStorage):
    def upload(self, *args, **kwargs):
        raise StorageError("bucket is read-only")


class FailingRemoveStorage(LocalObjectStorage):
    def remove(self, paths):
        raise StorageError("permission denied")


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def chapter(course, add_chapter):
    return add_chapter(course, "Limits", 0)


def bucket_files(storage):
    bucket = storage.root / storage.bucket
    return sorted(p.name for p in bucket.iterdir()) if bucket.exists() else []


class TestUpload:
    def test_non_video_is_rejected_before_storage(self, test_db, storage, chapter):
        coordinator = MediaCoordinator(test_db, storage)

        with pytest.raises(InvalidInputError):
            coordinator.upload_video(chapter.id, io.BytesIO(b"%PDF-1.4"), "notes.pdf", "application/pdf")

        assert bucket_files(storage) == []
        assert test_db.get(Chapter, chapter.id).video_storage_path == NO_VIDEO_PATH

    def test_successful_upload_binds_path_and_reports_progress(self, test_db, storage, chapter):
        clock = Clock(datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc))
        coordinator = MediaCoordinator(test_db, storage, clock=clock)
        seen = []

        job = coordinator.upload_video(
            chapter.id,
            io.BytesIO(VIDEO_BYTES),
            "Lesson 1.MP4",
            "video/mp4",
            size=len(VIDEO_BYTES),
            on_progress=seen.append,
        )

        assert job.state == VideoState.BOUND
        assert job.history == [VideoState.UPLOADING, VideoState.BOUND]
        assert job.progress == 100
        assert seen[0] == 0 and seen[-1] == 100
        assert seen == sorted(seen)

        expected = f"chapter_{chapter.id}_{int(clock.now.timestamp() * 1000)}.mp4"
        assert job.storage_path == expected
        assert test_db.get(Chapter, chapter.id).video_storage_path == expected
        assert storage.exists(expected)

    def test_storage_failure_keeps_previous_video(self, test_db, tmp_path, course, add_chapter):
        chapter = add_chapter(course, "Derivatives", 1, video_storage_path="chapter_1_100.mp4")
        coordinator = MediaCoordinator(test_db, FailingUploadStorage(str(tmp_path), "course_videos"))

        job = coordinator.upload_video(chapter.id, io.BytesIO(b"data"), "clip.mp4", "video/mp4")

        assert job.state == VideoState.FAILED
        assert job.error == "bucket is read-only"
        assert test_db.get(Chapter, chapter.id).video_storage_path == "chapter_1_100.mp4"

    def test_replacing_video_removes_previous_object(self, test_db, storage, chapter):
        clock = Clock(datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc))
        coordinator = MediaCoordinator(test_db, storage, clock=clock)
        first = coordinator.upload_video(chapter.id, io.BytesIO(b"first"), "a.mp4", "video/mp4")
        clock.now += timedelta(minutes=5)

        second = coordinator.upload_video(chapter.id, io.BytesIO(b"second"), "b.mp4", "video/mp4")

        assert second.state == VideoState.BOUND
        assert second.storage_path != first.storage_path
        assert storage.exists(second.storage_path)
        assert not storage.exists(first.storage_path)
        assert bucket_files(storage) == [second.storage_path]

    def test_replaced_object_that_cannot_be_removed_is_kept_bound(self, test_db, tmp_path, course, add_chapter):
        chapter = add_chapter(course, "Derivatives", 1, video_storage_path="chapter_1_100.mp4")
        coordinator = MediaCoordinator(test_db, FailingRemoveStorage(str(tmp_path), "course_videos"))

        job = coordinator.upload_video(chapter.id, io.BytesIO(b"data"), "clip.mp4", "video/mp4")

        assert job.state == VideoState.BOUND
        assert test_db.get(Chapter, chapter.id).video_storage_path == job.storage_path

    def test_storage_path_uses_extension_and_millis(self):
        now = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        path = MediaCoordinator.storage_path_for(42, "intro.webm", now)
        assert re.fullmatch(r"chapter_42_\d{13}\.webm", path)
        assert path.endswith(f"{int(now.timestamp() * 1000)}.webm")


class TestPlayback:
    def test_chapter_without_video_is_an_error(self, test_db, storage, chapter, learner):
        playback = MediaCoordinator(test_db, storage).request_playback(chapter.id, learner.id)

        assert playback.status == PlaybackStatus.ERROR
        assert playback.url is None
        assert "No video" in playback.error
        assert test_db.query(ChapterProgress).count() == 0

    def test_missing_object_is_an_error(self, test_db, storage, course, add_chapter, learner):
        chapter = add_chapter(course, "Gone", 0, video_storage_path="chapter_9_1.mp4")
        playback = MediaCoordinator(test_db, storage).request_playback(chapter.id, learner.id)
        assert playback.status == PlaybackStatus.ERROR

    def test_progress_write_failure_still_plays(self, test_db, storage, chapter, learner, monkeypatch):
        coordinator = MediaCoordinator(test_db, storage)
        coordinator.upload_video(chapter.id, io.BytesIO(VIDEO_BYTES), "a.mp4", "video/mp4")

        def failing_commit():
            raise OperationalError("INSERT INTO user_chapter_progress", {}, Exception("database is locked"))

        monkeypatch.setattr(test_db, "commit", failing_commit)
        playback = coordinator.request_playback(chapter.id, learner.id)
        monkeypatch.undo()

        assert playback.status == PlaybackStatus.PLAYABLE
        assert playback.url.startswith("/media/course_videos/chapter_")
        assert playback.error is None
        assert test_db.query(ChapterProgress).count() == 0

    def test_playback_signs_url_and_upserts_progress_once(self, test_db, storage, chapter, learner):
        clock = Clock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
        coordinator = MediaCoordinator(test_db, storage, clock=clock)
        coordinator.upload_video(chapter.id, io.BytesIO(VIDEO_BYTES), "a.mp4", "video/mp4")

        first = coordinator.request_playback(chapter.id, learner.id)
        clock.now += timedelta(hours=2)
        second = coordinator.request_playback(chapter.id, learner.id)

        assert first.status == second.status == PlaybackStatus.PLAYABLE
        assert first.url.startswith("/media/course_videos/chapter_")
        assert "token=" in first.url

        rows = test_db.query(ChapterProgress).filter_by(user_id=learner.id).all()
        assert len(rows) == 1
        assert as_utc(rows[0].watched_at) == clock.now


class TestDeleteChapter:
    def test_delete_removes_video_and_progress(self, test_db, storage, chapter, learner):
        coordinator = MediaCoordinator(test_db, storage)
        job = coordinator.upload_video(chapter.id, io.BytesIO(b"video"), "a.mp4", "video/mp4")
        coordinator.request_playback(chapter.id, learner.id)

        coordinator.delete_chapter(chapter.id)

        assert test_db.get(Chapter, chapter.id) is None
        assert test_db.query(ChapterProgress).count() == 0
        assert not storage.exists(job.storage_path)

    def test_storage_failure_leaves_orphan_but_deletes_record(self, test_db, tmp_path, course, add_chapter):
        chapter = add_chapter(course, "Limits", 0, video_storage_path="chapter_1_5.mp4")
        coordinator = MediaCoordinator(test_db, FailingRemoveStorage(str(tmp_path), "course_videos"))

        coordinator.delete_chapter(chapter.id)

        assert test_db.get(Chapter, chapter.id) is None

    def test_sentinel_path_is_never_removed(self, test_db, storage, chapter, monkeypatch):
        removed = []
        monkeypatch.setattr(storage, "remove", lambda paths: removed.extend(paths))

        MediaCoordinator(test_db, storage).delete_chapter(chapter.id)

        assert test_db.get(Chapter, chapter.id) is None
        assert removed == []


def test_video_state_reflects_sentinel():
    assert video_state(Chapter(video_storage_path=NO_VIDEO_PATH)) == VideoState.NO_VIDEO
    assert video_state(Chapter(video_storage_path="chapter_1_2.mp4")) == VideoState.BOUND
