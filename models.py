from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func, Enum, Boolean, Text
from sqlalchemy import Index
from sqlalchemy.orm import declarative_base, relationship
import enum
import uuid

Base = declarative_base()

# Sentinel video_storage_path meaning "no video uploaded yet"
NO_VIDEO_PATH = "placeholder.mp4"


def new_identity_id() -> str:
    return str(uuid.uuid4())


class UserType(enum.Enum):
    USER = "user"
    ADMIN = "admin"


# Auth provider tables


class AuthIdentity(Base):
    __tablename__ = "auth_identities"

    id = Column(String(36), primary_key=True, default=new_identity_id)
    handle = Column(String(50), unique=True, nullable=False, index=True)  # login handle, the username
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    last_sign_in_at = Column(DateTime(timezone=True), nullable=True)

    sessions = relationship("AuthSession", back_populates="identity", cascade="all, delete-orphan")
    profile = relationship("Profile", back_populates="identity", uselist=False, cascade="all, delete-orphan")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    jti = Column(String, primary_key=True)  # JWT ID of the session token
    user_id = Column(String(36), ForeignKey("auth_identities.id", ondelete="CASCADE"), nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    is_revoked = Column(Boolean, default=False, nullable=False)

    identity = relationship("AuthIdentity", back_populates="sessions")


# Directory tables


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("auth_identities.id", ondelete="CASCADE"), primary_key=True)
    username = Column(String(50), unique=True, nullable=False, index=True)  # immutable after creation
    phone_number = Column(String(30), nullable=True)
    school = Column(String, nullable=True)
    college = Column(String, nullable=True)
    major = Column(String, nullable=True)
    grade_year = Column(String(20), nullable=True)
    user_type = Column(Enum(UserType), default=UserType.USER, nullable=False, index=True)
    access_expiry_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    identity = relationship("AuthIdentity", back_populates="profile")
    progress = relationship("ChapterProgress", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.user_type == UserType.ADMIN


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    # Deletion is guarded in the catalog service, never cascaded
    courses = relationship("Course", back_populates="subject", order_by="Course.title")


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)
    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    keywords = Column(String, nullable=True)  # free text used by search
    created_by_admin_id = Column(String(36), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    subject = relationship("Subject", back_populates="courses")
    chapters = relationship("Chapter", back_populates="course", order_by="Chapter.order_in_course")


class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    video_storage_path = Column(String, nullable=False, default=NO_VIDEO_PATH)
    order_in_course = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    course = relationship("Course", back_populates="chapters")
    progress = relationship("ChapterProgress", back_populates="chapter", cascade="all, delete-orphan")

    # Not unique: moving a chapter between courses may leave equal positions behind
    __table_args__ = (Index("idx_chapters_course_order", "course_id", "order_in_course"),)

    @property
    def has_video(self) -> bool:
        return bool(self.video_storage_path) and self.video_storage_path != NO_VIDEO_PATH


class ChapterProgress(Base):
    __tablename__ = "user_chapter_progress"

    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="CASCADE"), primary_key=True)
    watched_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    user = relationship("Profile", back_populates="progress")
    chapter = relationship("Chapter", back_populates="progress")

    __table_args__ = (Index("idx_progress_user_watched", "user_id", "watched_at"),)
