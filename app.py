"""
Quiz Mastery API v1.0
Quiz-set reuse and skill mastery aggregation over generated question sets
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from routes import quiz
from config import settings
from schemas.api_models import ErrorDetail, ErrorResponse
from schemas.quiz import utc_now
from utils.error_handling import QuizEngineError, format_validation_errors

# Configure structured logging
from utils.structured_logging import (
    configure_logging,
    get_logger,
    log_request_middleware,
    LogCategory,
)

configure_logging(level=settings.LOG_LEVEL, json_output=True)
logger = get_logger("app")

API_VERSION = "1.0.0"

app = FastAPI(
    title="Quiz Mastery API",
    description="""
    ## Quiz Mastery API v1.0

    Serves students multiple-choice quizzes for a curriculum coordinate
    (class, subject, chapter, topic, difficulty), reusing question sets they
    have not attempted before generating new ones, and keeps running
    per-skill mastery statistics from graded attempts.
    """,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "X-Process-Time"],
)


# Structured logging middleware - adds correlation IDs and logs all requests
@app.middleware("http")
async def structured_logging_middleware(request: Request, call_next):
    return await log_request_middleware(request, call_next)


def _error_response(request: Request, status_code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            status_code=status_code,
            request_id=getattr(request.state, "request_id", None),
            correlation_id=getattr(request.state, "correlation_id", None),
        ).model_dump(),
    )


# Global exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors with per-field details"""
    errors = [ErrorDetail(**e) for e in format_validation_errors(exc.errors())]

    logger.warning(
        "Validation error",
        category=LogCategory.ERROR,
        request_method=request.method,
        request_path=request.url.path,
        error_type="RequestValidationError",
        error_message=f"{len(errors)} validation errors",
    )
    return _error_response(request, 422, "Validation Error", errors)


@app.exception_handler(QuizEngineError)
async def quiz_engine_exception_handler(request: Request, exc: QuizEngineError):
    """Map engine errors to their HTTP status"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error}: {exc.message}",
        category=LogCategory.ERROR,
        request_method=request.method,
        request_path=request.url.path,
        response_status=exc.status_code,
        error_type=type(exc).__name__,
        error_message=exc.message,
    )

    detail = exc.message
    if isinstance(exc.details, list):
        detail = [ErrorDetail(**d) for d in exc.details]
    return _error_response(request, exc.status_code, exc.error, detail)


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
    return _error_response(request, exc.status_code, str(exc.detail), str(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions, including broken internal invariants"""
    logger.error(
        "Unexpected server error",
        category=LogCategory.ERROR,
        exception=exc,
        request_method=request.method,
        request_path=request.url.path,
    )
    return _error_response(
        request, 500, "Internal Server Error", "An unexpected error occurred. Please try again later."
    )


app.include_router(
    quiz.router,
    prefix="/api/v1/quiz",
    tags=["Quiz"],
)


@app.get("/", tags=["System"])
async def root():
    """
    Root endpoint providing API information
    """
    return {
        "name": "Quiz Mastery API",
        "version": API_VERSION,
        "status": "operational",
        "documentation": "/docs",
        "openapi_spec": "/openapi.json",
        "timestamp": utc_now().isoformat(),
        "services": {
            "quiz": {"endpoint": "/api/v1/quiz", "description": "Quiz requests, submissions and skill statistics"},
        },
    }


@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring
    """
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "version": API_VERSION,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
