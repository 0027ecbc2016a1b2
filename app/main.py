"""
Main application entry point - FastAPI app instance and configuration.
This is where the ASGI application is created and configured.
Run with: uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request  # The FastAPI framework
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware  # Cross-Origin Resource Sharing
from fastapi.responses import JSONResponse

from app.core.config import settings  # Application settings
from app.core.errors import ErrorCode, GenerationError, generate_correlation_id
from app.generation.prompt_assembler import prompt_template
from app.routers import edit, generation  # Generation and edit endpoints
from app.services.rate_limiter import RateLimitExceeded

logger = logging.getLogger("genui.main")


# ---------------------------------------------------------------------------
# LIFESPAN
# ---------------------------------------------------------------------------
# The HTML system prompt template is loaded once at startup. A missing file
# or a template without exactly one {brief} placeholder raises
# TemplateLoadError here, so the process never starts serving with a broken
# prompt.
@asynccontextmanager
async def lifespan(app: FastAPI):
    prompt_template.load()
    logger.info(f"Prompt template loaded from {prompt_template.path}")
    yield


# ---------------------------------------------------------------------------
# CREATE FASTAPI APPLICATION
# ---------------------------------------------------------------------------
# - docs_url: Swagger UI at http://localhost:8000/docs
# - redoc_url: ReDoc at http://localhost:8000/redoc
app = FastAPI(
    title=settings.APP_NAME,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS MIDDLEWARE
# ---------------------------------------------------------------------------
# The editor front end calls the API from a different origin.
# Current configuration is permissive; restrict allow_origins per deployment.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# ERROR HANDLERS
# ---------------------------------------------------------------------------
# Every failure leaves the API as
#   {"success": false, "error": {"code", "message", "correlation_id"}}
# The internal detail goes to the log only.
@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    correlation_id = generate_correlation_id()
    logger.warning(
        f"[{correlation_id}] {request.method} {request.url.path} -> "
        f"{exc.code.value} ({exc.status_code}): {exc.detail}"
    )
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(correlation_id),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = GenerationError(ErrorCode.VALIDATION_ERROR, str(exc.errors()))
    return await generation_error_handler(request, error)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    correlation_id = generate_correlation_id()
    logger.error(
        f"[{correlation_id}] Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    error = GenerationError(ErrorCode.INTERNAL_ERROR)
    return JSONResponse(status_code=error.status_code, content=error.to_response(correlation_id))


# ---------------------------------------------------------------------------
# REGISTER ROUTERS
# ---------------------------------------------------------------------------
# generation.router: /generate, /generate/{id}/stream, /generate/{id}/cancel
app.include_router(generation.router)
# edit.router: /edit (streams through /generate/{id}/stream)
app.include_router(edit.router)


# ---------------------------------------------------------------------------
# HEALTH CHECK ENDPOINT
# ---------------------------------------------------------------------------
@app.get("/health", tags=["health"])
def health_check():
    """
    Simple health check endpoint.

    Does NOT check database or model provider connectivity.

    Returns:
        {"status": "ok"}
    """
    return {"status": "ok"}
