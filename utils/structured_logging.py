"""
Structured Logging with Correlation IDs
JSON log lines for the quiz engine, tagged with the request correlation ID
"""

import asyncio
import functools
import json
import logging
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

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


class LogCategory(str, Enum):
    """Log categories for filtering and analysis"""

    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    GENERATION = "generation"
    GRADING = "grading"
    AGGREGATION = "aggregation"
    ERROR = "error"
    PERFORMANCE = "performance"
    SYSTEM = "system"


# ============================================================================
# STRUCTURED LOG MODEL
# ============================================================================


class StructuredLogEntry(BaseModel):
    """Standard structured log entry format"""

    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    level: str = Field(..., description="Log severity level")
    category: str = Field(..., description="Log category for filtering")
    logger: Optional[str] = Field(None, description="Logger name")
    message: str = Field(..., description="Log message")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")

    # Engine context
    student_id: Optional[str] = Field(None, description="Student the operation acts for")
    set_id: Optional[str] = Field(None, description="Question set involved")
    attempt_id: Optional[str] = Field(None, description="Attempt involved")

    # Request context
    request_id: Optional[str] = Field(None, description="Unique request ID")
    request_method: Optional[str] = Field(None, description="HTTP method")
    request_path: Optional[str] = Field(None, description="Request path")
    response_status: Optional[int] = Field(None, description="HTTP response status")

    # Error context
    error_type: Optional[str] = Field(None, description="Error class name")
    error_message: Optional[str] = Field(None, description="Error message")
    error_stack: Optional[str] = Field(None, description="Stack trace")

    duration_ms: Optional[float] = Field(None, description="Operation duration")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Additional context")


# ============================================================================
# STRUCTURED LOGGER CLASS
# ============================================================================


class StructuredLogger:
    """Logger emitting one JSON document per record"""

    def __init__(self, name: str, level: str = "INFO"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        self.logger.handlers = []
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)

        # Disable propagation to avoid duplicate logs
        self.logger.propagate = False

    def _render(self, level: str, category: str, message: str, **kwargs) -> str:
        entry = StructuredLogEntry(
            level=level,
            category=category,
            logger=self.name,
            message=message,
            correlation_id=correlation_id_var.get(),
            **kwargs,
        )
        return entry.model_dump_json(exclude_none=True)

    def debug(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._render(LogLevel.DEBUG, category, message, **kwargs))

    def info(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        self.logger.info(self._render(LogLevel.INFO, category, message, **kwargs))

    def warning(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        self.logger.warning(self._render(LogLevel.WARNING, category, message, **kwargs))

    def error(self, message: str, category: str = LogCategory.ERROR, exception: Optional[Exception] = None, **kwargs):
        """Log error message with optional exception"""
        if exception:
            kwargs["error_type"] = type(exception).__name__
            kwargs["error_message"] = str(exception)
            kwargs["error_stack"] = traceback.format_exc()

        self.logger.error(self._render(LogLevel.ERROR, category, message, **kwargs))

    def request(self, request: Request, **kwargs):
        """Log incoming request"""
        self.logger.info(
            self._render(
                LogLevel.INFO,
                LogCategory.REQUEST,
                f"Incoming {request.method} {request.url.path}",
                request_method=request.method,
                request_path=request.url.path,
                **kwargs,
            )
        )

    def response(self, request: Request, response: Response, duration_ms: float, **kwargs):
        """Log outgoing response"""
        self.logger.info(
            self._render(
                LogLevel.INFO,
                LogCategory.RESPONSE,
                f"Response {response.status_code} for {request.method} {request.url.path}",
                request_method=request.method,
                request_path=request.url.path,
                response_status=response.status_code,
                duration_ms=duration_ms,
                **kwargs,
            )
        )


# ============================================================================
# CUSTOM FORMATTER
# ============================================================================


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON output"""

    def format(self, record: logging.LogRecord) -> str:
        # Records produced by StructuredLogger are already JSON
        if isinstance(record.msg, str) and record.msg.startswith("{"):
            return record.msg

        entry = {
            "timestamp": datetime.utcnow().isoformat(),
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


# ============================================================================
# REQUEST LOGGING MIDDLEWARE
# ============================================================================


async def log_request_middleware(request: Request, call_next):
    """Middleware to log requests with correlation IDs"""

    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

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
            duration_ms=duration_ms,
        )
        raise

    duration_ms = (time.time() - start_time) * 1000

    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Request-ID"] = request.state.request_id
    response.headers["X-Process-Time"] = f"{duration_ms / 1000:.3f}"

    logger.response(request, response, duration_ms, request_id=request.state.request_id)
    return response


# ============================================================================
# LOGGER FACTORY
# ============================================================================

# Global logger cache
_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str, level: Optional[str] = None) -> StructuredLogger:
    """Get or create a structured logger"""

    if name not in _loggers:
        if level is None:
            from config import settings

            level = settings.LOG_LEVEL
        _loggers[name] = StructuredLogger(name, level)

    return _loggers[name]


# ============================================================================
# LOGGING DECORATORS
# ============================================================================


def log_execution(category: str = LogCategory.PERFORMANCE):
    """Decorator to log function execution with timing"""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {func.__qualname__}",
                    category=category,
                    exception=e,
                    duration_ms=(time.time() - start_time) * 1000,
                )
                raise
            logger.info(
                f"Completed {func.__qualname__}",
                category=category,
                duration_ms=(time.time() - start_time) * 1000,
            )
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {func.__qualname__}",
                    category=category,
                    exception=e,
                    duration_ms=(time.time() - start_time) * 1000,
                )
                raise
            logger.info(
                f"Completed {func.__qualname__}",
                category=category,
                duration_ms=(time.time() - start_time) * 1000,
            )
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# ============================================================================
# CONFIGURATION
# ============================================================================


def configure_logging(level: str = "INFO", json_output: bool = True):
    """Configure global logging settings"""

    logging.getLogger().setLevel(getattr(logging, level.upper()))

    if json_output:
        for handler in logging.getLogger().handlers:
            handler.setFormatter(StructuredFormatter())

    logger = get_logger("system")
    logger.info("Logging configured", category=LogCategory.SYSTEM, extra={"level": level, "json_output": json_output})
