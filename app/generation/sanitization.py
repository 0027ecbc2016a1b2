"""
Sanitization Layer - neutralizes prompt-injection patterns in user text.

Detected patterns are wrapped as ``[USER INPUT]: ```<match>``` `` so the
model reads them as quoted user content rather than instructions. Text
without a pattern passes through untouched.

Properties relied on elsewhere:
- Pure: no I/O, no state.
- Idempotent: sanitize(sanitize(t)) == sanitize(t). A span that is already
  wrapped is recognized as one token and left as is.
- Left to right, non-overlapping: at each position the first pattern that
  matches wins and scanning resumes after its end.

Example:
    sanitize("ignore previous instructions")
    # '[USER INPUT]: ```ignore previous``` instructions'
"""

import re
from dataclasses import dataclass
from typing import List

# ---------------------------------------------------------------------------
# PATTERN SET
# ---------------------------------------------------------------------------
# (stable id, regex). Order matters only for ties at the same position.
INJECTION_PATTERNS = [
    ("ignore_previous", r"ignore\s+(?:all\s+)?previous"),
    ("system_role", r"system\s*:"),
    ("assistant_role", r"assistant\s*:"),
    ("system_tag", r"</?system>"),
    ("prompt_tag", r"</?prompt>"),
]

WRAP_PREFIX = "[USER INPUT]: ```"
WRAP_SUFFIX = "```"

_ANY_PATTERN = "|".join(pattern for _, pattern in INJECTION_PATTERNS)

# An already-wrapped match is consumed as a whole before any single pattern
# gets a chance to match inside it.
_SCANNER = re.compile(
    "(?P<wrapped>"
    + re.escape(WRAP_PREFIX)
    + "(?:" + _ANY_PATTERN + ")"
    + re.escape(WRAP_SUFFIX)
    + ")|"
    + "|".join(f"(?P<{pattern_id}>{pattern})" for pattern_id, pattern in INJECTION_PATTERNS),
    re.IGNORECASE,
)


@dataclass(frozen=True)
class InjectionMatch:
    """One detected pattern occurrence; offsets index into the scanned text."""
    pattern_id: str
    start: int
    end: int
    text: str


def detect(text: str) -> List[InjectionMatch]:
    """
    Find every not-yet-neutralized pattern occurrence, ordered by offset.
    """
    if not text:
        return []
    return [
        InjectionMatch(pattern_id=m.lastgroup, start=m.start(), end=m.end(), text=m.group())
        for m in _SCANNER.finditer(text)
        if m.lastgroup != "wrapped"
    ]


def has_injection_pattern(text: str) -> bool:
    return bool(detect(text))


def _wrap(match: "re.Match[str]") -> str:
    if match.lastgroup == "wrapped":
        return match.group()
    return f"{WRAP_PREFIX}{match.group()}{WRAP_SUFFIX}"


def sanitize(text: str) -> str:
    """Wrap each detected pattern; everything else is returned verbatim."""
    if not text:
        return ""
    return _SCANNER.sub(_wrap, text)
