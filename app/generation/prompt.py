"""
Prompt validation - the first gate every request passes.

build_prompt() trims the raw text and enforces the length bounds BEFORE any
sanitization or model call. The resulting Prompt is immutable.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.errors import ErrorCode, GenerationError
from app.generation.sanitization import InjectionMatch, detect, sanitize

HISTORY_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Prompt:
    """
    A validated request.

    Attributes:
        raw: Trimmed user text
        sanitized: raw with injection patterns neutralized
        length: Character length of raw
        injections: Patterns found in raw (empty for clean text)
    """
    raw: str
    sanitized: str
    length: int
    injections: Tuple[InjectionMatch, ...] = field(default_factory=tuple)


def validate_prompt(raw: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Trim and check length bounds.

    Raises:
        GenerationError(EMPTY_PROMPT): nothing left after trimming
        GenerationError(PROMPT_TOO_LONG): more than max_length characters
    """
    limit = max_length if max_length is not None else settings.MAX_PROMPT_LENGTH
    text = (raw or "").strip()
    if len(text) == 0:
        raise GenerationError(ErrorCode.EMPTY_PROMPT)
    if len(text) > limit:
        raise GenerationError(ErrorCode.PROMPT_TOO_LONG, f"length={len(text)} limit={limit}")
    return text


def build_prompt(raw: Optional[str], max_length: Optional[int] = None) -> Prompt:
    text = validate_prompt(raw, max_length)
    return Prompt(
        raw=text,
        sanitized=sanitize(text),
        length=len(text),
        injections=tuple(detect(text)),
    )


def sanitize_history(
    history: Optional[List[Dict[str, str]]],
) -> Tuple[List[Dict[str, str]], List[InjectionMatch]]:
    """
    Prepare prior conversation turns for a model prompt.

    User turns go through the same sanitizer as the request. Assistant turns
    are the service's own earlier output and pass through. Turns with an
    unknown role or empty content are dropped.

    Returns:
        (clean turns, injections found in user turns)
    """
    turns: List[Dict[str, str]] = []
    found: List[InjectionMatch] = []
    for turn in history or []:
        role = turn.get("role")
        content = (turn.get("content") or "").strip()
        if role not in HISTORY_ROLES or not content:
            continue
        if role == "user":
            found.extend(detect(content))
            content = sanitize(content)
        turns.append({"role": role, "content": content})
    return turns, found
