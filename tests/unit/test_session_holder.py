import threading
from datetime import timedelta

import pytest
from sqlalchemy import event

from backends.auth_provider import AuthClient, AuthProviderError, LocalAuthProvider, auth_events
from db import SessionLocal
from models import Profile, UserType
from services.route_guard import ADMIN_PATH, DASHBOARD_PATH, LOGIN_PATH
from services.session_holder import SessionHolder
from utils.error_handling import ConflictError, DependencyFailure, NotFoundError, UnauthorizedError
from conftest import TEST_PASSWORD


@pytest.fixture
def holder(provider, test_db):
    with SessionHolder(AuthClient(provider), test_db) as holder:
        yield holder


class TestInitialize:
    def test_without_token_is_signed_out_and_not_loading(self, holder):
        assert holder.is_loading is False
        assert holder.user is None
        assert holder.profile is None
        assert holder.snapshot().user_id is None

    def test_restores_session_from_token(self, provider, test_db, learner):
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            assert holder.user.id == learner.id
            assert holder.profile.username == "alice"
            assert holder.has_valid_access is True

    def test_invalid_token_is_treated_as_signed_out(self, provider, test_db):
        with SessionHolder(AuthClient(provider, "not-a-token"), test_db) as holder:
            assert holder.user is None
            assert holder.last_error is None

    def test_close_unsubscribes(self, provider, test_db):
        before = auth_events.subscriber_count
        holder = SessionHolder(AuthClient(provider), test_db).initialize()
        assert auth_events.subscriber_count == before + 1
        holder.close()
        assert auth_events.subscriber_count == before


class TestSignIn:
    def test_learner_lands_on_dashboard(self, holder, learner):
        assert holder.sign_in("alice", TEST_PASSWORD) == DASHBOARD_PATH
        assert holder.user.id == learner.id
        assert holder.is_admin is False
        assert holder.is_loading is False

    def test_admin_lands_on_admin_area(self, holder, admin_user):
        assert holder.sign_in("admin", TEST_PASSWORD) == ADMIN_PATH
        assert holder.is_admin is True

    def test_unknown_username(self, holder):
        assert holder.sign_in("nobody", TEST_PASSWORD) is None
        assert isinstance(holder.last_error, NotFoundError)
        assert holder.notices[-1]["description"] == "Username does not exist"
        assert holder.user is None
        assert holder.is_loading is False

    def test_wrong_password(self, holder, learner):
        assert holder.sign_in("alice", "wrong-password") is None
        assert isinstance(holder.last_error, UnauthorizedError)
        assert holder.user is None

    def test_expired_user_can_sign_in_but_has_no_access(self, holder, expired_learner):
        assert holder.sign_in("bob", TEST_PASSWORD) == DASHBOARD_PATH
        assert holder.has_valid_access is False


class TestSignUp:
    def test_sign_up_does_not_sign_in(self, holder, test_db):
        redirect = holder.sign_up("carol", TEST_PASSWORD, "13900000000", {"school": "North High"})

        assert redirect == LOGIN_PATH
        assert holder.user is None
        profile = test_db.query(Profile).filter_by(username="carol").one()
        assert profile.school == "North High"
        assert profile.user_type == UserType.USER
        assert holder.notices[-1]["title"] == "Registered"

    def test_self_registered_user_starts_without_access(self, holder, test_db):
        holder.sign_up("dave", TEST_PASSWORD, "13900000001")
        assert holder.sign_in("dave", TEST_PASSWORD) == DASHBOARD_PATH
        assert holder.has_valid_access is False

    def test_duplicate_username(self, holder, learner):
        assert holder.sign_up("alice", TEST_PASSWORD, "13900000000") is None
        assert isinstance(holder.last_error, ConflictError)


class TestSignOut:
    def test_sign_out_revokes_session(self, holder, provider, learner):
        holder.sign_in("alice", TEST_PASSWORD)
        token = holder.auth.access_token

        assert holder.sign_out() == LOGIN_PATH
        assert holder.user is None
        assert holder.profile is None
        assert provider.get_session(token) is None

    def test_failed_sign_out_keeps_state(self, holder, provider, learner, monkeypatch):
        holder.sign_in("alice", TEST_PASSWORD)

        def unavailable(token):
            raise AuthProviderError("Authentication service is unavailable")

        monkeypatch.setattr(provider, "sign_out", unavailable)

        assert holder.sign_out() is None
        assert isinstance(holder.last_error, DependencyFailure)
        assert holder.user is not None


class TestAuthChanges:
    def test_sign_out_elsewhere_clears_holder(self, provider, test_db, learner):
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            AuthClient(provider, token).sign_out()
            assert holder.user is None
            assert holder.profile is None

    def test_other_sessions_are_not_affected(self, provider, test_db, learner):
        first = provider.sign_in("alice", TEST_PASSWORD).access_token
        second = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, first), test_db) as holder:
            AuthClient(provider, second).sign_out()
            assert holder.user is not None

    def test_deleted_identity_clears_holder(self, provider, test_db, learner):
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            provider.delete_identity(learner.id)
            assert holder.user is None

    def test_profile_is_refreshed_on_update(self, provider, test_db, learner):
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            assert holder.has_valid_access is True
            learner.access_expiry_date = learner.access_expiry_date - timedelta(days=60)
            test_db.commit()
            provider.set_secret(learner.id, "new-secret")
            assert holder.has_valid_access is False


def run_in_worker(action):
    """Run ``action(provider)`` on another thread with its own database session"""
    errors = []

    def target():
        db = SessionLocal()
        try:
            action(LocalAuthProvider(db), db)
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    worker = threading.Thread(target=target)
    worker.start()
    worker.join()
    assert errors == []
    return worker.ident


@pytest.fixture
def query_threads(test_db):
    threads = set()

    def record(orm_execute_state):
        threads.add(threading.get_ident())

    event.listen(test_db, "do_orm_execute", record)
    yield threads
    event.remove(test_db, "do_orm_execute", record)


class TestChangesFromOtherThreads:
    def test_update_is_applied_on_the_owning_thread(self, provider, test_db, learner, query_threads):
        learner_id = learner.id
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            assert holder.has_valid_access is True
            test_db.commit()
            query_threads.clear()

            def expire_and_reset(admin, db):
                profile = db.get(Profile, learner_id)
                profile.access_expiry_date = profile.access_expiry_date - timedelta(days=60)
                db.commit()
                admin.set_secret(learner_id, "new-secret")

            worker = run_in_worker(expire_and_reset)

            assert query_threads == set()
            assert holder.has_pending_changes is True

            assert holder.has_valid_access is False
            assert query_threads == {threading.get_ident()}
            assert worker not in query_threads
            assert holder.has_pending_changes is False

    def test_deletion_clears_holder_without_touching_its_session(self, provider, test_db, learner, query_threads):
        learner_id = learner.id
        token = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, token), test_db) as holder:
            test_db.commit()
            query_threads.clear()

            run_in_worker(lambda admin, db: admin.delete_identity(learner_id))

            assert query_threads == set()
            assert holder.user is None
            assert holder.profile is None
            assert holder.auth.access_token is None


class TestRefreshSession:
    def test_refresh_replaces_token(self, holder, provider, learner):
        holder.sign_in("alice", TEST_PASSWORD)
        old_token = holder.auth.access_token

        assert holder.refresh_session() is True

        assert holder.auth.access_token != old_token
        assert provider.get_session(old_token) is None
        assert provider.get_session(holder.auth.access_token).user.id == learner.id
        assert holder.user.id == learner.id

    def test_other_holders_reload_profile(self, provider, test_db, learner):
        first = provider.sign_in("alice", TEST_PASSWORD).access_token
        second = provider.sign_in("alice", TEST_PASSWORD).access_token

        with SessionHolder(AuthClient(provider, first), test_db) as watcher:
            AuthClient(provider, second).refresh_session()
            assert watcher.has_pending_changes is True
            assert watcher.profile.username == "alice"
            assert watcher.user is not None

    def test_refresh_without_session(self, holder):
        assert holder.refresh_session() is False
        assert isinstance(holder.last_error, UnauthorizedError)
