"""
Monitoring Module - structured event logging for the generation pipeline.

Usage:
    from app.ai.monitoring import generation_logger

    generation_logger.pass_completed(session_id, 1, 2, len(html), latency_ms)
"""

from app.ai.monitoring.logger import GenerationLogger, generation_logger

__all__ = [
    "GenerationLogger",
    "generation_logger",
]
