"""
OpenAPI documentation metadata
Tags, contact information and shared error responses for the generated docs
"""

from .api_models import ErrorResponse


class OpenAPIMetadata:
    TITLE = "Course Portal API"
    VERSION = "1.0.0"
    DESCRIPTION = """
    Video course portal with time-limited learner access.

    * **Learners** browse subjects and courses, watch chapter videos through
      short-lived signed URLs and see their recent progress.
    * **Admins** manage accounts and access expiry, the subject/course/chapter
      catalog, chapter order and chapter videos.

    Authenticate with `POST /api/v1/auth/login` and send the returned token as
    `Authorization: Bearer <token>`.
    """
    CONTACT = {"name": "Course Portal Team"}
    LICENSE_INFO = {"name": "MIT"}


class OpenAPITags:
    """Centralized tag definitions for OpenAPI documentation"""

    AUTH = {"name": "Authentication", "description": "Registration, sign-in, sign-out and session state"}
    LEARNING = {
        "name": "Learning",
        "description": "Dashboard, catalog browsing, profile and chapter playback. Playback requires unexpired access.",
    }
    ADMIN = {"name": "Administration", "description": "Accounts, catalog, chapter order and video uploads"}
    MEDIA = {"name": "Media", "description": "Signed video downloads"}
    SYSTEM = {"name": "System", "description": "Service information and health checks"}


def _error_response(description: str, status_code: int, error: str, redirect_to: str = None):
    example = {"success": False, "error": error, "detail": error, "status_code": status_code}
    if redirect_to:
        example["redirect_to"] = redirect_to
    return {
        "description": description,
        "content": {"application/json": {"schema": ErrorResponse.model_json_schema(), "example": example}},
    }


COMMON_RESPONSES = {
    400: _error_response("Bad Request - Invalid input data", 400, "Please select a video file"),
    401: _error_response("Unauthorized - Sign-in required", 401, "Authentication required", "/login"),
    403: _error_response("Forbidden - Admin only or access expired", 403, "Your access has expired", "/expired"),
    404: _error_response("Not Found", 404, "Course not found"),
    409: _error_response("Conflict - Duplicate or still referenced", 409, "Username already exists"),
    502: _error_response("Bad Gateway - A backing service failed", 502, "Database operation failed"),
}
