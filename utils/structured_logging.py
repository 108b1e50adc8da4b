"""
Structured Logging with Correlation IDs
Provides JSON logging with request tracking and correlation
"""

import logging
import json
import sys
import time
import traceback
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from contextvars import ContextVar
import uuid
from enum import Enum
from fastapi import Request, Response
from pydantic import BaseModel, Field

# Context variable for storing correlation ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# ============================================================================
# LOG LEVELS AND CATEGORIES
# ============================================================================


class LogLevel(str, Enum):
    """Log severity levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    SECURITY = "SECURITY"  # Special level for security events


class LogCategory(str, Enum):
    """Log categories for filtering and analysis"""

    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    SECURITY = "security"
    AUTHENTICATION = "authentication"
    STORAGE = "storage"
    ERROR = "error"
    BUSINESS = "business"
    SYSTEM = "system"


# ============================================================================
# STRUCTURED LOG MODEL
# ============================================================================


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class StructuredLogEntry(BaseModel):
    """Standard structured log entry format"""

    timestamp: str = Field(default_factory=_utc_timestamp)
    level: str = Field(..., description="Log severity level")
    category: str = Field(..., description="Log category for filtering")
    message: str = Field(..., description="Log message")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    user_id: Optional[str] = Field(None, description="User identifier")

    # Request context
    request_id: Optional[str] = Field(None, description="Unique request ID")
    request_method: Optional[str] = Field(None, description="HTTP method")
    request_path: Optional[str] = Field(None, description="Request path")
    request_ip: Optional[str] = Field(None, description="Client IP address")

    # Response context
    response_status: Optional[int] = Field(None, description="HTTP response status")
    response_time_ms: Optional[float] = Field(None, description="Response time in milliseconds")

    # Error context
    error_type: Optional[str] = Field(None, description="Error class name")
    error_message: Optional[str] = Field(None, description="Error message")
    error_stack: Optional[str] = Field(None, description="Stack trace")

    # Security context
    security_event: Optional[str] = Field(None, description="Security event type")
    security_severity: Optional[str] = Field(None, description="Security severity")
    security_details: Optional[Dict[str, Any]] = Field(None, description="Security event details")

    duration_ms: Optional[float] = Field(None, description="Operation duration")

    # Additional context
    extra: Optional[Dict[str, Any]] = Field(default_factory=dict, description="Additional context")


# ============================================================================
# STRUCTURED LOGGER CLASS
# ============================================================================


class StructuredLogger:
    """Logger with structured output and correlation IDs"""

    def __init__(self, name: str, level: str = "INFO"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level))

        # Remove existing handlers
        self.logger.handlers = []

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)

        # Disable propagation to avoid duplicate logs
        self.logger.propagate = False

    def _create_log_entry(self, level: str, category: str, message: str, **kwargs) -> StructuredLogEntry:
        """Create a structured log entry with context"""
        kwargs.setdefault("correlation_id", correlation_id_var.get())
        return StructuredLogEntry(
            level=getattr(level, "value", level), category=getattr(category, "value", category), message=message, **kwargs
        )

    def _emit(self, log_level: int, entry: StructuredLogEntry):
        self.logger.log(log_level, entry.model_dump_json(exclude_none=True))

    def debug(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        """Log debug message"""
        self._emit(logging.DEBUG, self._create_log_entry(LogLevel.DEBUG, category, message, **kwargs))

    def info(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        """Log info message"""
        self._emit(logging.INFO, self._create_log_entry(LogLevel.INFO, category, message, **kwargs))

    def warning(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        """Log warning message"""
        self._emit(logging.WARNING, self._create_log_entry(LogLevel.WARNING, category, message, **kwargs))

    def error(self, message: str, category: str = LogCategory.ERROR, exception: Optional[Exception] = None, **kwargs):
        """Log error message with optional exception"""

        if exception:
            kwargs["error_type"] = type(exception).__name__
            kwargs["error_message"] = str(exception)
            kwargs["error_stack"] = traceback.format_exc()

        self._emit(logging.ERROR, self._create_log_entry(LogLevel.ERROR, category, message, **kwargs))

    def critical(
        self, message: str, category: str = LogCategory.ERROR, exception: Optional[Exception] = None, **kwargs
    ):
        """Log critical message"""

        if exception:
            kwargs["error_type"] = type(exception).__name__
            kwargs["error_message"] = str(exception)
            kwargs["error_stack"] = traceback.format_exc()

        self._emit(logging.CRITICAL, self._create_log_entry(LogLevel.CRITICAL, category, message, **kwargs))

    def security(
        self, message: str, event_type: str, severity: str = "medium", details: Optional[Dict] = None, **kwargs
    ):
        """Log security event"""

        kwargs["security_event"] = event_type
        kwargs["security_severity"] = severity
        kwargs["security_details"] = details or {}

        # Security events go out at warning level
        self._emit(logging.WARNING, self._create_log_entry(LogLevel.SECURITY, LogCategory.SECURITY, message, **kwargs))

    def request(self, request: Request, **kwargs):
        """Log incoming request"""

        entry = self._create_log_entry(
            LogLevel.INFO,
            LogCategory.REQUEST,
            f"Incoming {request.method} {request.url.path}",
            request_method=request.method,
            request_path=request.url.path,
            request_ip=request.client.host if request.client else None,
            **kwargs,
        )
        self._emit(logging.INFO, entry)

    def response(self, request: Request, response: Response, duration_ms: float, **kwargs):
        """Log outgoing response"""

        entry = self._create_log_entry(
            LogLevel.INFO,
            LogCategory.RESPONSE,
            f"Response {response.status_code} for {request.method} {request.url.path}",
            request_method=request.method,
            request_path=request.url.path,
            response_status=response.status_code,
            response_time_ms=duration_ms,
            **kwargs,
        )
        self._emit(logging.INFO, entry)


# ============================================================================
# CUSTOM FORMATTER
# ============================================================================


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON output"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""

        # If message is already JSON, return as-is
        if isinstance(record.msg, str) and record.msg.startswith("{"):
            return record.msg

        entry = {
            "timestamp": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
        }

        if record.exc_info:
            entry["error_stack"] = self.formatException(record.exc_info)

        return json.dumps(entry)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================


def generate_correlation_id() -> str:
    """Generate a unique correlation ID"""
    return f"corr_{uuid.uuid4().hex[:16]}"


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID in context"""

    if not correlation_id:
        correlation_id = generate_correlation_id()

    correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


# ============================================================================
# REQUEST LOGGING MIDDLEWARE
# ============================================================================


async def log_request_middleware(request: Request, call_next):
    """Middleware to log requests with correlation IDs"""

    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

    # Store in request state for access in endpoints and exception handlers
    request.state.correlation_id = correlation_id
    request.state.request_id = f"req_{uuid.uuid4().hex[:8]}"

    logger = get_logger("api.request")
    logger.request(request, request_id=request.state.request_id)

    start_time = time.time()

    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Request failed: {str(e)}",
            exception=e,
            request_id=request.state.request_id,
            request_method=request.method,
            request_path=request.url.path,
            response_time_ms=duration_ms,
        )
        raise

    duration_ms = (time.time() - start_time) * 1000

    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Request-ID"] = request.state.request_id

    logger.response(
        request,
        response,
        duration_ms,
        request_id=request.state.request_id,
        user_id=getattr(request.state, "user_id", None),
    )

    return response


# ============================================================================
# LOGGER FACTORY
# ============================================================================

# Global logger cache
_loggers: Dict[str, StructuredLogger] = {}
_default_level = "INFO"


def get_logger(name: str, level: Optional[str] = None) -> StructuredLogger:
    """Get or create a structured logger"""

    if name not in _loggers:
        _loggers[name] = StructuredLogger(name, level or _default_level)

    return _loggers[name]


# ============================================================================
# SECURITY LOGGING HELPERS
# ============================================================================


def log_security_event(
    event_type: str,
    message: str,
    user_id: Optional[str] = None,
    severity: str = "medium",
    details: Optional[Dict] = None,
):
    """Log a security event with context"""

    logger = get_logger("security")
    logger.security(message, event_type=event_type, severity=severity, details=details, user_id=user_id)


def log_authentication_event(
    event_type: str,
    user_id: Optional[str] = None,
    success: bool = True,
    method: str = "password",
    details: Optional[Dict] = None,
):
    """Log authentication event"""

    logger = get_logger("auth")

    if success:
        logger.info(
            f"Authentication successful: {event_type}",
            category=LogCategory.AUTHENTICATION,
            user_id=user_id,
            extra={"method": method, "success": True, **(details or {})},
        )
    else:
        logger.warning(
            f"Authentication failed: {event_type}",
            category=LogCategory.AUTHENTICATION,
            user_id=user_id,
            extra={"method": method, "success": False, **(details or {})},
        )


# ============================================================================
# CONFIGURATION
# ============================================================================


def configure_logging(level: str = "INFO", json_output: bool = True):
    """Configure global logging settings"""
    global _default_level

    _default_level = level.upper()
    logging.getLogger().setLevel(getattr(logging, _default_level))

    if json_output:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(StructuredFormatter())

    for cached in _loggers.values():
        cached.logger.setLevel(getattr(logging, _default_level))

    logger = get_logger("system")
    logger.info("Logging configured", category=LogCategory.SYSTEM, extra={"level": level, "json_output": json_output})
