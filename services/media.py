"""
Upload and playback coordination for chapter videos.

A chapter starts without a video (sentinel path). An upload moves it through
UPLOADING to BOUND, and the chapter record is only pointed at the new object
once storage has accepted every byte. Playback hands out a short-lived signed
URL and records that the learner watched the chapter.
"""

import mimetypes
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backends.object_storage import LocalObjectStorage, StorageError
from config import settings
from models import Chapter, ChapterProgress, NO_VIDEO_PATH
from services.entitlement import utcnow
from utils.error_handling import DependencyFailure, InvalidInputError, NotFoundError, PortalError, safe_database_operation, validate_resource_exists
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.media")


class VideoState(str, Enum):
    NO_VIDEO = "no_video"
    UPLOADING = "uploading"
    BOUND = "bound"
    FAILED = "failed"


class PlaybackStatus(str, Enum):
    REQUESTING = "requesting"
    PLAYABLE = "playable"
    ERROR = "error"


@dataclass
class UploadJob:
    chapter_id: int
    filename: str
    state: VideoState = VideoState.NO_VIDEO
    progress: int = 0
    storage_path: Optional[str] = None
    error: Optional[str] = None
    history: List[VideoState] = field(default_factory=list)

    def move_to(self, state: VideoState):
        self.state = state
        self.history.append(state)


@dataclass
class PlaybackSession:
    chapter_id: int
    user_id: str
    status: PlaybackStatus = PlaybackStatus.REQUESTING
    url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


def video_state(chapter: Chapter) -> VideoState:
    if not chapter.video_storage_path or chapter.video_storage_path == NO_VIDEO_PATH:
        return VideoState.NO_VIDEO
    return VideoState.BOUND


def _extension(filename: str, content_type: Optional[str]) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if ext:
        return ext
    guessed = mimetypes.guess_extension(content_type or "") or ".mp4"
    return guessed.lstrip(".")


class MediaCoordinator:
    def __init__(self, db: Session, storage: LocalObjectStorage, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.storage = storage
        self.clock = clock or utcnow

    def _chapter(self, chapter_id: int) -> Chapter:
        chapter = self.db.get(Chapter, chapter_id)
        validate_resource_exists(chapter, "Chapter", chapter_id)
        return chapter

    @staticmethod
    def validate_video(filename: str, content_type: Optional[str]):
        if not filename:
            raise InvalidInputError("No file was selected", title="Upload failed")
        if not content_type or not content_type.startswith("video/"):
            raise InvalidInputError("Please select a video file", title="Invalid file type")

    @staticmethod
    def storage_path_for(chapter_id: int, filename: str, now: datetime, content_type: Optional[str] = None) -> str:
        epoch_ms = int(now.timestamp() * 1000)
        return f"chapter_{chapter_id}_{epoch_ms}.{_extension(filename, content_type)}"

    def upload_video(
        self,
        chapter_id: int,
        stream: BinaryIO,
        filename: str,
        content_type: Optional[str],
        size: Optional[int] = None,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> UploadJob:
        """
        Store a video and bind it to the chapter.

        Raises InvalidInputError before touching storage when the file is not
        a video. A storage failure leaves the chapter's previous video in place
        and is reported on the job (state FAILED) rather than raised.
        """
        self.validate_video(filename, content_type)
        chapter = self._chapter(chapter_id)

        job = UploadJob(chapter_id=chapter_id, filename=filename, state=video_state(chapter))
        path = self.storage_path_for(chapter_id, filename, self.clock(), content_type)

        def report(percent: int):
            job.progress = percent
            if on_progress:
                on_progress(percent)

        job.move_to(VideoState.UPLOADING)
        report(0)
        try:
            self.storage.upload(path, stream, allow_overwrite=True, size=size, on_progress=report)
        except StorageError as e:
            job.error = e.message
            job.move_to(VideoState.FAILED)
            logger.warning(
                "Video upload failed", category=LogCategory.STORAGE, extra={"chapter_id": chapter_id, "path": path}
            )
            return job

        previous = chapter.video_storage_path
        try:
            with safe_database_operation(self.db, "bind chapter video"):
                chapter.video_storage_path = path
                self.db.commit()
        except PortalError as e:
            job.error = e.message
            job.move_to(VideoState.FAILED)
            self._remove_quietly(path, chapter_id)
            return job

        job.storage_path = path
        job.progress = 100
        job.move_to(VideoState.BOUND)
        logger.info(
            "Chapter video bound",
            category=LogCategory.STORAGE,
            extra={"chapter_id": chapter_id, "path": path, "replaced": previous},
        )

        # The replaced object is no longer reachable from any chapter
        if previous and previous not in (NO_VIDEO_PATH, path):
            self._remove_quietly(previous, chapter_id)
        return job

    def _remove_quietly(self, path: str, chapter_id: int):
        try:
            self.storage.remove([path])
        except StorageError as e:
            logger.warning(
                f"Orphaned video object left in storage: {path}",
                category=LogCategory.STORAGE,
                extra={"chapter_id": chapter_id, "path": path, "reason": e.message},
            )

    def delete_chapter(self, chapter_id: int) -> None:
        chapter = self._chapter(chapter_id)
        path = chapter.video_storage_path

        with safe_database_operation(self.db, "delete chapter"):
            self.db.delete(chapter)
            self.db.commit()
        logger.info("Chapter deleted", category=LogCategory.BUSINESS, extra={"chapter_id": chapter_id})

        if path and path != NO_VIDEO_PATH:
            self._remove_quietly(path, chapter_id)

    def request_playback(self, chapter_id: int, user_id: str) -> PlaybackSession:
        """Sign a URL for the chapter's video and record the view"""
        playback = PlaybackSession(chapter_id=chapter_id, user_id=user_id)
        try:
            chapter = self._chapter(chapter_id)
            if video_state(chapter) == VideoState.NO_VIDEO:
                raise NotFoundError("No video has been uploaded for this chapter yet")

            try:
                signed = self.storage.create_signed_url(chapter.video_storage_path, settings.SIGNED_URL_TTL_SECONDS)
            except StorageError as e:
                raise DependencyFailure(f"Could not load the video: {e.message}") from e
        except PortalError as e:
            playback.status = PlaybackStatus.ERROR
            playback.error = e.message
            logger.warning(
                f"Playback unavailable: {e.message}",
                category=LogCategory.STORAGE,
                user_id=user_id,
                extra={"chapter_id": chapter_id},
            )
            return playback

        playback.url = signed.url
        playback.expires_at = signed.expires_at
        playback.status = PlaybackStatus.PLAYABLE

        # Progress is a side effect of watching; a failed write does not stop playback
        self._record_progress(user_id, chapter_id)
        return playback

    def _record_progress(self, user_id: str, chapter_id: int) -> bool:
        try:
            progress = self.db.get(ChapterProgress, (user_id, chapter_id))
            if progress:
                progress.watched_at = self.clock()
            else:
                self.db.add(ChapterProgress(user_id=user_id, chapter_id=chapter_id, watched_at=self.clock()))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Could not record chapter progress",
                category=LogCategory.DATABASE,
                exception=e,
                user_id=user_id,
                extra={"chapter_id": chapter_id},
            )
            return False
        return True
