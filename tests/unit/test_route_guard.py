from datetime import datetime, timedelta, timezone

import pytest

from models import Profile, UserType
from services.route_guard import (
    ADMIN_ROUTE,
    GuardDecision,
    PLAYBACK_ROUTE,
    RouteRequirements,
    SessionSnapshot,
    USER_ROUTE,
    evaluate_route,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def snapshot(user_type=UserType.USER, expires_in=timedelta(days=10), loading=False, signed_in=True):
    if not signed_in:
        return SessionSnapshot(is_loading=loading, user_id=None, profile=None)
    profile = Profile(id="u1", username="u1", user_type=user_type, access_expiry_date=NOW + expires_in)
    return SessionSnapshot(is_loading=loading, user_id="u1", profile=profile)


class TestEvaluateRoute:
    def test_loading_session_is_pending_whatever_the_route(self):
        for requirements in (USER_ROUTE, ADMIN_ROUTE, PLAYBACK_ROUTE):
            result = evaluate_route(snapshot(loading=True, signed_in=False), requirements, NOW)
            assert result.decision == GuardDecision.PENDING
            assert result.redirect_to is None

    def test_anonymous_user_goes_to_login_with_return_path(self):
        result = evaluate_route(snapshot(signed_in=False), USER_ROUTE, NOW, requested_path="/api/v1/courses/3")

        assert result.decision == GuardDecision.REDIRECT_LOGIN
        assert result.redirect_to == "/login?next=/api/v1/courses/3"
        assert result.return_to == "/api/v1/courses/3"

    def test_non_admin_on_admin_route_goes_to_dashboard(self):
        result = evaluate_route(snapshot(), ADMIN_ROUTE, NOW)
        assert result.decision == GuardDecision.REDIRECT_DASHBOARD
        assert result.redirect_to == "/dashboard"

    def test_admin_route_is_checked_before_expiry(self):
        requirements = RouteRequirements(requires_admin=True, requires_entitlement=True)
        result = evaluate_route(snapshot(expires_in=timedelta(days=-1)), requirements, NOW)
        assert result.decision == GuardDecision.REDIRECT_DASHBOARD

    def test_expired_user_is_sent_to_expired_page(self):
        result = evaluate_route(snapshot(expires_in=timedelta(days=-1)), PLAYBACK_ROUTE, NOW)
        assert result.decision == GuardDecision.REDIRECT_EXPIRED
        assert result.redirect_to == "/expired"

    def test_expired_user_may_still_open_ordinary_pages(self):
        assert evaluate_route(snapshot(expires_in=timedelta(days=-1)), USER_ROUTE, NOW).allowed

    @pytest.mark.parametrize("requirements", [USER_ROUTE, ADMIN_ROUTE, PLAYBACK_ROUTE])
    def test_entitled_admin_is_allowed_everywhere(self, requirements):
        assert evaluate_route(snapshot(user_type=UserType.ADMIN), requirements, NOW).allowed

    def test_public_route_allows_anonymous(self):
        public = RouteRequirements(requires_auth=False)
        assert evaluate_route(snapshot(signed_in=False), public, NOW).allowed


@pytest.mark.parametrize(
    "session, requirements, expected",
    [
        (snapshot(loading=True, signed_in=False), PLAYBACK_ROUTE, GuardDecision.PENDING),
        (snapshot(signed_in=False), USER_ROUTE, GuardDecision.REDIRECT_LOGIN),
        (snapshot(), ADMIN_ROUTE, GuardDecision.REDIRECT_DASHBOARD),
        (snapshot(expires_in=timedelta(days=-1)), PLAYBACK_ROUTE, GuardDecision.REDIRECT_EXPIRED),
        (snapshot(), PLAYBACK_ROUTE, GuardDecision.ALLOW),
    ],
)
def test_repeated_evaluation_gives_the_same_result(session, requirements, expected):
    results = [evaluate_route(session, requirements, NOW, requested_path="/api/v1/dashboard") for _ in range(5)]

    assert results[0].decision == expected
    assert all(result == results[0] for result in results)
