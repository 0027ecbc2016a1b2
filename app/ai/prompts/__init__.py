"""
Prompts Module - Centralized prompt templates for AI interactions.

- brief_prompts: creative-director few-shot instruction for the brief
- refine_prompts: fixed critique-and-rewrite instruction for passes k > 1
- edit_prompts: line-range edit instruction for edits of an existing page
- templates/html_system_prompt.txt: static HTML system prompt with one
  {brief} placeholder, loaded once by app.generation.prompt_assembler
"""

from app.ai.prompts.brief_prompts import BRIEF_SYSTEM_PROMPT, build_brief_request
from app.ai.prompts.edit_prompts import EDIT_SYSTEM_PROMPT
from app.ai.prompts.refine_prompts import REFINE_SYSTEM_PROMPT, build_refine_request

__all__ = [
    "BRIEF_SYSTEM_PROMPT",
    "build_brief_request",
    "EDIT_SYSTEM_PROMPT",
    "REFINE_SYSTEM_PROMPT",
    "build_refine_request",
]
