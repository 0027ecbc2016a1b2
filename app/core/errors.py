"""
Error taxonomy - the fixed set of caller-visible error codes.

Every failure that leaves the generation core is expressed as a
GenerationError carrying one of these codes. The code decides the HTTP status
and the user-facing message; the optional `detail` is for logs only and is
never serialized into a response.

Categories:
- Validation: EMPTY_PROMPT, PROMPT_TOO_LONG, VALIDATION_ERROR
  (raised before any model call)
- Policy: UPGRADE_REQUIRED, CREDITS_EXHAUSTED, GENERATION_IN_PROGRESS, RATE_LIMITED
  (raised before a session exists, state unchanged)
- Session recoverable: STREAM_INTERRUPTED
- Session terminal: STREAM_ERROR, TOKEN_LIMIT_EXCEEDED, EDIT_FAILED,
  SESSION_EXPIRED
- Upstream: API_ERROR, TIMEOUT (retried once, then terminal)
"""

import uuid
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Caller-visible error codes."""
    EMPTY_PROMPT = "EMPTY_PROMPT"
    PROMPT_TOO_LONG = "PROMPT_TOO_LONG"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    CREDITS_EXHAUSTED = "CREDITS_EXHAUSTED"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"
    RATE_LIMITED = "RATE_LIMITED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"
    STREAM_ERROR = "STREAM_ERROR"
    TOKEN_LIMIT_EXCEEDED = "TOKEN_LIMIT_EXCEEDED"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    EDIT_FAILED = "EDIT_FAILED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ---------------------------------------------------------------------------
# HTTP STATUS MAP
# ---------------------------------------------------------------------------
ERROR_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.EMPTY_PROMPT: 400,
    ErrorCode.PROMPT_TOO_LONG: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.UPGRADE_REQUIRED: 403,
    ErrorCode.CREDITS_EXHAUSTED: 402,
    ErrorCode.GENERATION_IN_PROGRESS: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.PROJECT_NOT_FOUND: 404,
    ErrorCode.STREAM_INTERRUPTED: 409,
    ErrorCode.STREAM_ERROR: 502,
    ErrorCode.TOKEN_LIMIT_EXCEEDED: 502,
    ErrorCode.API_ERROR: 502,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.EDIT_FAILED: 502,
    ErrorCode.SESSION_EXPIRED: 410,
    ErrorCode.INTERNAL_ERROR: 500,
}


# ---------------------------------------------------------------------------
# USER-FACING MESSAGES
# ---------------------------------------------------------------------------
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.EMPTY_PROMPT: "Please enter a description for your interface",
    ErrorCode.PROMPT_TOO_LONG: "Your description is too long. Please keep it under 10,000 characters",
    ErrorCode.VALIDATION_ERROR: "Invalid request",
    ErrorCode.UNAUTHORIZED: "Please sign in to continue",
    ErrorCode.UPGRADE_REQUIRED: "Generation requires a paid plan. Upgrade to continue",
    ErrorCode.CREDITS_EXHAUSTED: "You don't have enough credits for this generation",
    ErrorCode.GENERATION_IN_PROGRESS: "Please wait for your current generation to complete",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait a moment",
    ErrorCode.SESSION_NOT_FOUND: "Generation session not found",
    ErrorCode.PROJECT_NOT_FOUND: "Project not found",
    ErrorCode.STREAM_INTERRUPTED: "Generation was interrupted. Click 'Resume' to continue",
    ErrorCode.STREAM_ERROR: "Generation failed. Please try again",
    ErrorCode.TOKEN_LIMIT_EXCEEDED: "Generation reached maximum length",
    ErrorCode.API_ERROR: "AI service is temporarily unavailable. Please try again later",
    ErrorCode.TIMEOUT: "AI service took too long to respond. Please try again",
    ErrorCode.EDIT_FAILED: "Could not apply the edit. Try rephrasing your request",
    ErrorCode.SESSION_EXPIRED: "Generation was never started. Your credits were refunded",
    ErrorCode.INTERNAL_ERROR: "Something went wrong. Please try again",
}


def generate_correlation_id() -> str:
    """Create an id that ties a caller-visible error to its log lines."""
    return uuid.uuid4().hex


class GenerationError(Exception):
    """
    The only exception the generation core raises toward callers.

    Args:
        code: One of the fixed ErrorCode values
        detail: Internal description for logs (never sent to clients)
    """

    def __init__(self, code: ErrorCode, detail: Optional[str] = None):
        super().__init__(detail or code.value)
        self.code = code
        self.detail = detail

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP[self.code]

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self.code]

    def to_response(self, correlation_id: str) -> dict:
        """Caller-visible body. Contains no upstream text or identifiers."""
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "correlation_id": correlation_id,
            },
        }
