"""
AI Module - model access for the generation pipeline.

Module Structure:
================
- providers/: AI provider clients (Gemini, OpenAI-compatible)
- prompts/: Fixed instructions (creative-director brief, refinement pass)
  and the bundled HTML system prompt template
- monitoring/: Structured event logging

Flow:
=====
1. User: "A landing page for my bakery"
2. Brief (prompts/brief_prompts.py): design brief from the sanitized request
3. HTML pass 1: template system prompt + brief -> full document
4. HTML pass k>1 (prompts/refine_prompts.py): critique and rewrite pass k-1
"""

# Version of the AI module
__version__ = "0.1.0"
