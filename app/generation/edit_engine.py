"""
Edit Engine - targeted line-range edits of a committed page.

Instead of regenerating the whole document, the model is shown the page with
line numbers and answers with replacement blocks:

    ```edit
    [12-14]
    <h1 class="text-4xl">New headline</h1>
    ```

Blocks replace the inclusive line range with their content. They are applied
highest line first, so the line numbers of the remaining blocks stay valid.

Section-scoped requests ("change the footer") only show the model the lines
of that section, numbered as in the full document, which keeps the prompt
small on long pages.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

# Requests that ask for a new design rather than a change to this one
NEW_DESIGN_KEYWORDS = (
    "start over",
    "start fresh",
    "from scratch",
    "new website",
    "new page",
    "completely new",
    "brand new",
    "forget this",
    "discard this",
    "replace everything",
    "redo everything",
)

GLOBAL_KEYWORDS = (
    "all ",
    "every ",
    "entire ",
    "whole ",
    "throughout",
    "color scheme",
    "theme",
    "dark mode",
    "light mode",
)

SECTION_KEYWORDS = (
    "header",
    "footer",
    "navbar",
    "nav ",
    "hero",
    "about",
    "contact",
    "pricing",
    "features",
    "testimonials",
    "section",
    "sidebar",
    "menu",
    "banner",
)

# Lines of context kept around an extracted section
SECTION_CONTEXT_LINES = 2

# (instruction keywords, patterns marking the section's opening line)
SECTION_PATTERNS: List[Tuple[Tuple[str, ...], Tuple[re.Pattern, ...]]] = [
    (
        ("header", "navbar", "nav ", "navigation", "menu"),
        (
            re.compile(r"<header[\s>]", re.IGNORECASE),
            re.compile(r"<nav[\s>]", re.IGNORECASE),
            re.compile(r'class="[^"]*nav[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("footer",),
        (
            re.compile(r"<footer[\s>]", re.IGNORECASE),
            re.compile(r'class="[^"]*footer[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("hero", "banner", "jumbotron"),
        (
            re.compile(r'class="[^"]*hero[^"]*"', re.IGNORECASE),
            re.compile(r'class="[^"]*banner[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("about",),
        (
            re.compile(r'id="about"', re.IGNORECASE),
            re.compile(r'class="[^"]*about[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("contact",),
        (
            re.compile(r'id="contact"', re.IGNORECASE),
            re.compile(r'class="[^"]*contact[^"]*"', re.IGNORECASE),
            re.compile(r"<form", re.IGNORECASE),
        ),
    ),
    (
        ("pricing",),
        (
            re.compile(r'id="pricing"', re.IGNORECASE),
            re.compile(r'class="[^"]*pricing[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("features",),
        (
            re.compile(r'id="features"', re.IGNORECASE),
            re.compile(r'class="[^"]*features[^"]*"', re.IGNORECASE),
        ),
    ),
    (
        ("testimonial",),
        (
            re.compile(r'id="testimonial', re.IGNORECASE),
            re.compile(r'class="[^"]*testimonial[^"]*"', re.IGNORECASE),
        ),
    ),
]

# Block formats, tried in order; the first one that yields blocks wins
BLOCK_FORMATS = (
    # ```edit\n[12-14]\ncontent```
    re.compile(r"```edit\s*\n\[(\d+)-(\d+)\]\s*\n(.*?)```", re.DOTALL),
    # [12-14]\n```html\ncontent```
    re.compile(r"\[(\d+)-(\d+)\]\s*\n```\w*\n(.*?)```", re.DOTALL),
    # Lines 12-14:\n```\ncontent```
    re.compile(r"[Ll]ines?\s*(\d+)[-–](\d+)[:\s]*\n```\w*\n(.*?)```", re.DOTALL),
)

_OPEN_TAG = re.compile(r"<(?!/)[a-z]", re.IGNORECASE)
_CLOSE_TAG = re.compile(r"</[a-z]", re.IGNORECASE)


class EditScope(str, Enum):
    TARGETED = "targeted"
    SECTION = "section"
    GLOBAL = "global"


@dataclass(frozen=True)
class EditBlock:
    start_line: int
    end_line: int
    content: str


@dataclass(frozen=True)
class Section:
    """A slice of the page, with 1-based inclusive line numbers."""
    text: str
    start_line: int
    end_line: int


@dataclass
class EditResult:
    success: bool
    html: str
    applied_count: int


# ---------------------------------------------------------------------------
# REQUEST CLASSIFICATION
# ---------------------------------------------------------------------------

def is_new_design_request(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in NEW_DESIGN_KEYWORDS)


def is_edit_request(message: str, has_existing_html: bool) -> bool:
    """A follow-up on an existing page is an edit unless it asks to start over."""
    if not has_existing_html:
        return False
    return not is_new_design_request(message)


def analyze_edit_scope(instruction: str) -> EditScope:
    lowered = instruction.lower()
    if any(keyword in lowered for keyword in GLOBAL_KEYWORDS):
        return EditScope.GLOBAL
    if any(keyword in lowered for keyword in SECTION_KEYWORDS):
        return EditScope.SECTION
    return EditScope.TARGETED


# ---------------------------------------------------------------------------
# PROMPT INPUT
# ---------------------------------------------------------------------------

def add_line_numbers(html: str, first_line: int = 1) -> str:
    """Prefix every line with its right-aligned number, e.g. '  12| <h1>'."""
    return "\n".join(
        f"{number:>4}| {line}" for number, line in enumerate(html.split("\n"), start=first_line)
    )


def _tag_balance(line: str) -> int:
    return len(_OPEN_TAG.findall(line)) - len(_CLOSE_TAG.findall(line))


def extract_relevant_section(html: str, instruction: str) -> Optional[Section]:
    """
    Find the section of the page the instruction names.

    The section starts at the first line matching one of its patterns and ends
    where the tags opened there are closed again, counted per line. A couple
    of lines of context are kept on each side. Returns None when the
    instruction names no known section or the page has none.
    """
    lowered = instruction.lower()
    lines = html.split("\n")

    for keywords, patterns in SECTION_PATTERNS:
        if not any(keyword in lowered for keyword in keywords):
            continue

        start = end = None
        depth = 0
        for index, line in enumerate(lines):
            if start is None:
                if not any(pattern.search(line) for pattern in patterns):
                    continue
                start = index
                depth = _tag_balance(line)
            else:
                depth += _tag_balance(line)
            if depth <= 0:
                end = index
                break

        if start is None or end is None:
            continue

        context_start = max(0, start - SECTION_CONTEXT_LINES)
        context_end = min(len(lines) - 1, end + SECTION_CONTEXT_LINES)
        return Section(
            text="\n".join(lines[context_start:context_end + 1]),
            start_line=context_start + 1,
            end_line=context_end + 1,
        )

    return None


def build_edit_request(html: str, instruction: str) -> str:
    """
    User turn of an edit: the numbered page (or just the named section of it)
    followed by the instruction.
    """
    total_lines = len(html.split("\n"))
    section = None
    if analyze_edit_scope(instruction) == EditScope.SECTION:
        section = extract_relevant_section(html, instruction)

    if section is None:
        return (
            f"HTML ({total_lines} lines):\n"
            f"{add_line_numbers(html)}\n\n"
            f"USER REQUEST: {instruction}\n\n"
            "Respond with ONLY edit blocks. Use [LINE-LINE] format."
        )

    return (
        f"HTML (lines {section.start_line}-{section.end_line} of {total_lines}):\n"
        f"{add_line_numbers(section.text, first_line=section.start_line)}\n\n"
        f"USER REQUEST: {instruction}\n\n"
        "Respond with ONLY edit blocks. Use [LINE-LINE] format with the line "
        "numbers shown, which are the line numbers of the full document."
    )


# ---------------------------------------------------------------------------
# RESPONSE HANDLING
# ---------------------------------------------------------------------------

def parse_edit_response(response: str) -> List[EditBlock]:
    """
    Pull edit blocks out of a model response, highest start line first.

    Ranges with a start below 1 or an end before the start are dropped.
    """
    blocks: List[EditBlock] = []
    for block_format in BLOCK_FORMATS:
        for match in block_format.finditer(response or ""):
            start_line, end_line = int(match.group(1)), int(match.group(2))
            if start_line > 0 and end_line >= start_line:
                blocks.append(EditBlock(start_line, end_line, match.group(3).rstrip()))
        if blocks:
            break

    blocks.sort(key=lambda block: block.start_line, reverse=True)
    return blocks


def apply_edit_blocks(html: str, blocks: List[EditBlock]) -> EditResult:
    """
    Replace each block's line range with its content.

    Line numbers past the end of the page are clamped to the last line.
    `blocks` must be ordered highest start line first, as parse_edit_response
    returns them.
    """
    if not blocks:
        return EditResult(success=False, html=html, applied_count=0)

    lines = html.split("\n")
    total_lines = len(lines)
    applied = 0
    for block in blocks:
        start_line = max(1, min(block.start_line, total_lines))
        end_line = max(start_line, min(block.end_line, total_lines))
        lines[start_line - 1:end_line] = block.content.split("\n")
        applied += 1

    return EditResult(success=applied > 0, html="\n".join(lines), applied_count=applied)
