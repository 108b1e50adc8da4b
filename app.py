"""
Course Portal API v1.0
Learner and admin endpoints for the video course portal
"""

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from routes import admin, auth, learning, media
from schemas.openapi_models import COMMON_RESPONSES, OpenAPIMetadata, OpenAPITags
from utils.error_handling import PortalError, RouteDenied, error_payload
from utils.structured_logging import configure_logging, get_logger, log_request_middleware, LogCategory

# Configure structured logging system
configure_logging(level=settings.LOG_LEVEL, json_output=True)
logger = get_logger("app")

app = FastAPI(
    title=OpenAPIMetadata.TITLE,
    description=OpenAPIMetadata.DESCRIPTION,
    version=OpenAPIMetadata.VERSION,
    contact=OpenAPIMetadata.CONTACT,
    license_info=OpenAPIMetadata.LICENSE_INFO,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=[
        OpenAPITags.AUTH,
        OpenAPITags.LEARNING,
        OpenAPITags.ADMIN,
        OpenAPITags.MEDIA,
        OpenAPITags.SYSTEM,
    ],
)

# CORS configuration - Load from environment
origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Correlation-ID", "Accept", "Origin"],
    expose_headers=["Content-Length", "Content-Range", "Location", "X-Correlation-ID", "X-Request-ID"],
)


# Structured logging middleware - adds correlation IDs and logs all requests
@app.middleware("http")
async def structured_logging_middleware(request: Request, call_next):
    """Add correlation IDs and structured logging to all requests"""
    return await log_request_middleware(request, call_next)


def _error_response(request: Request, status_code: int, error: str, detail=None, **extra) -> JSONResponse:
    content = error_payload(
        status_code,
        error,
        details=detail,
        request_id=getattr(request.state, "request_id", None),
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


# Global exception handlers
@app.exception_handler(RouteDenied)
async def route_denied_handler(request: Request, exc: RouteDenied):
    """Guard refusals carry the page the client should go to instead"""
    response = _error_response(request, exc.status_code, exc.message, redirect_to=exc.redirect_to)
    if exc.redirect_to:
        response.headers["Location"] = exc.redirect_to
    return response


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(
            f"{exc.title}: {exc.message}",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
        )
    else:
        logger.warning(
            f"{exc.title}: {exc.message}",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
        )
    return _error_response(request, exc.status_code, exc.message, title=exc.title)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with proper structure and logging"""
    errors = []
    for error in exc.errors():
        errors.append(
            {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"], "code": error["type"]}
        )

    logger.warning(
        "Validation error",
        category=LogCategory.ERROR,
        request_method=request.method,
        request_path=request.url.path,
        error_type="ValidationError",
        error_message=f"{len(errors)} validation errors",
        extra={"errors": errors},
    )
    return _error_response(request, 422, "Validation Error", errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with proper structure and logging"""
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
            error_message=str(exc.detail),
        )
    elif exc.status_code >= 400:
        logger.warning(
            f"HTTP {exc.status_code} client error",
            category=LogCategory.ERROR,
            request_method=request.method,
            request_path=request.url.path,
            response_status=exc.status_code,
            error_message=str(exc.detail),
        )
    return _error_response(request, exc.status_code, str(exc.detail), exc.detail)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with structured logging"""
    logger.critical(
        "Unexpected server error",
        category=LogCategory.ERROR,
        exception=exc,
        request_method=request.method,
        request_path=request.url.path,
        user_id=getattr(request.state, "user_id", None),
    )
    return _error_response(
        request, 500, "Internal Server Error", "An unexpected error occurred. Please try again later."
    )


app.include_router(auth.router, prefix="/api/v1/auth", tags=[OpenAPITags.AUTH["name"]], responses=COMMON_RESPONSES)
app.include_router(learning.router, prefix="/api/v1", tags=[OpenAPITags.LEARNING["name"]], responses=COMMON_RESPONSES)
app.include_router(admin.router, prefix="/api/v1/admin", tags=[OpenAPITags.ADMIN["name"]], responses=COMMON_RESPONSES)
app.include_router(media.router, prefix="/media", tags=[OpenAPITags.MEDIA["name"]])


# Root endpoint
@app.get("/", tags=[OpenAPITags.SYSTEM["name"]], summary="API Information")
async def root():
    """Service name, version and where each group of endpoints lives"""
    return {
        "name": OpenAPIMetadata.TITLE,
        "version": OpenAPIMetadata.VERSION,
        "status": "operational",
        "documentation": {"swagger": "/docs", "redoc": "/redoc", "openapi_spec": "/openapi.json"},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "auth": {"endpoint": "/api/v1/auth", "description": "Registration, sign-in and session state"},
            "learning": {"endpoint": "/api/v1", "description": "Dashboard, catalog, profile and playback"},
            "admin": {"endpoint": "/api/v1/admin", "description": "Accounts, catalog and video management"},
            "media": {"endpoint": "/media", "description": "Signed video downloads"},
        },
    }


# Health check endpoint
@app.get("/health", tags=[OpenAPITags.SYSTEM["name"]], summary="Health Check")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": OpenAPIMetadata.VERSION,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
