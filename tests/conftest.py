import pytest
import os
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment variables
os.environ["NODE_ENV"] = "test"
os.environ["POSTGRES_USER"] = "test_user"
os.environ["POSTGRES_PASSWORD"] = "test_password"
os.environ["POSTGRES_HOST"] = "localhost"
os.environ["POSTGRES_DATABASE"] = "test_db"
os.environ["POSTGRES_PORT"] = "5432"
os.environ["SQLALCHEMY_TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SESSION_SECRET"] = "test-session-secret-with-enough-length"
os.environ["STORAGE_SIGNING_SECRET"] = "test-storage-secret-with-enough-length"
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient

from app import app
from backends.auth_provider import LocalAuthProvider
from backends.object_storage import LocalObjectStorage, get_object_storage
from db import SessionLocal, engine, get_db
from models import Base, Chapter, Course, Profile, Subject, UserType
from services.entitlement import utcnow

TEST_PASSWORD = "secret123"


@pytest.fixture(scope="session")
def test_engine():
    """Create the test schema once per run"""
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    # Cleanup
    try:
        os.remove("./test.db")
    except FileNotFoundError:
        pass


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create test database session"""
    session = SessionLocal()

    yield session

    # Cleanup after each test
    session.close()
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "storage"), "course_videos")


@pytest.fixture(scope="function")
def client(test_db, storage):
    """Create test client with test database and a temporary bucket"""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_storage] = lambda: storage

    with TestClient(app) as test_client:
        yield test_client

    # Clean up dependency override
    app.dependency_overrides.clear()


@pytest.fixture
def provider(test_db):
    return LocalAuthProvider(test_db)


@pytest.fixture
def make_user(provider, test_db):
    """Factory creating an account directly through the auth provider"""

    def _make_user(username, user_type=UserType.USER, expires_in=timedelta(days=30), password=TEST_PASSWORD, **fields):
        attributes = {
            "user_type": user_type.value,
            "access_expiry_date": utcnow() + expires_in,
            "phone_number": fields.pop("phone_number", "13800000000"),
            **fields,
        }
        user = provider.sign_up(username, password, attributes)
        return test_db.get(Profile, user.id)

    return _make_user


@pytest.fixture
def admin_user(make_user):
    return make_user("admin", UserType.ADMIN, expires_in=timedelta(days=365))


@pytest.fixture
def learner(make_user):
    return make_user("alice")


@pytest.fixture
def expired_learner(make_user):
    return make_user("bob", expires_in=timedelta(days=-1))


@pytest.fixture
def login_as(client):
    """Sign in through the API and return the bearer header"""

    def _login(username, password=TEST_PASSWORD):
        response = client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login


@pytest.fixture
def admin_headers(login_as, admin_user):
    return login_as(admin_user.username)


@pytest.fixture
def learner_headers(login_as, learner):
    return login_as(learner.username)


@pytest.fixture
def course(test_db):
    """A subject with one empty course"""
    subject = Subject(name="Math", description="Numbers and shapes")
    test_db.add(subject)
    test_db.flush()
    course = Course(subject_id=subject.id, title="Calculus I", keywords="limits derivatives")
    test_db.add(course)
    test_db.commit()
    return course


@pytest.fixture
def add_chapter(test_db):
    def _add_chapter(course, title, order_in_course, **fields):
        chapter = Chapter(course_id=course.id, title=title, order_in_course=order_in_course, **fields)
        test_db.add(chapter)
        test_db.commit()
        return chapter

    return _add_chapter
