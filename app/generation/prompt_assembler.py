"""
Prompt Assembler - builds the system prompt for the first HTML pass.

The static template is read from disk once per process (thread-safe, lazy)
and must contain exactly one {brief} placeholder. A template that is missing,
unreadable or malformed is a deployment error: TemplateLoadError is raised at
startup (FastAPI lifespan) so the process refuses to serve instead of failing
every request later.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.generation.brief import Brief

logger = logging.getLogger("genui.generation.prompt_assembler")

PLACEHOLDER = "{brief}"

DEFAULT_TEMPLATE_PATH = (
    Path(__file__).resolve().parent.parent / "ai" / "prompts" / "templates" / "html_system_prompt.txt"
)

# Appended when the project already has a committed document
CONTEXT_BLOCK = "\n\nCURRENT HTML (modify this based on user request):\n{html}\n\n"


class TemplateLoadError(RuntimeError):
    """The system prompt template cannot be used. Fatal at startup."""


class PromptTemplate:
    """
    Read-once template holder.

    The first load() reads and validates the file under a lock; later calls
    return the cached text without touching the disk.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._text: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        if self._path is not None:
            return self._path
        return Path(settings.PROMPT_TEMPLATE_PATH) if settings.PROMPT_TEMPLATE_PATH else DEFAULT_TEMPLATE_PATH

    @property
    def loaded(self) -> bool:
        return self._text is not None

    def load(self) -> str:
        if self._text is not None:
            return self._text
        with self._lock:
            if self._text is None:
                self._text = self._read()
        return self._text

    def _read(self) -> str:
        path = self.path
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateLoadError(f"cannot read prompt template {path}: {e}") from e

        count = text.count(PLACEHOLDER)
        if count != 1:
            raise TemplateLoadError(
                f"prompt template {path} must contain exactly one {PLACEHOLDER} placeholder, found {count}"
            )
        logger.info(f"Prompt template loaded from {path} ({len(text)} chars)")
        return text


# Process-wide template
prompt_template = PromptTemplate()


def assemble(
    brief: Brief,
    current_html: Optional[str] = None,
    template: Optional[PromptTemplate] = None,
) -> str:
    """
    Substitute the brief into the template.

    Args:
        brief: Parsed or fallback brief
        current_html: Committed document of the project, if any; appended as
                      a context block so the model edits instead of starting over
        template: Override for tests (defaults to the process-wide template)

    Raises:
        TemplateLoadError: if the template was never loadable
    """
    text = (template or prompt_template).load().replace(PLACEHOLDER, brief.to_prompt_text(), 1)
    if current_html:
        text += CONTEXT_BLOCK.format(html=current_html)
    return text
