"""
Generation Logger - Structured logging for the generation pipeline.

Every log line is a JSON object with an "event" name and a correlation id
(the generation session id, or a request id before the session exists), so a
single generation can be traced end to end.

Privacy rule: prompt text and generated HTML are NEVER logged. Only lengths,
counts and identifiers are.

Events:
=======
- generation_started: session created and charged
- brief_synthesized: brief call finished (fallback or not)
- pass_completed: one HTML pass committed as a snapshot
- generation_failed: session ended FAILED (or a pass failed in a degraded COMPLETE)
- credit_event: charge / refund / grant
- security_event: sanitization neutralized injection patterns
- stream_event: reader opened, resumed, disconnected or cancelled a stream
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.ai.providers.base import AIResponse

# Configure the pipeline logger
logger = logging.getLogger("genui.generation.events")
logger.setLevel(logging.INFO)

# Create console handler if not exists
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class GenerationLogger:
    """
    Structured logger for generation events.

    Usage:
        generation_logger.generation_started(
            correlation_id=str(session.id),
            account_id=str(account.id),
            tier="ENHANCED",
            passes_total=2,
            credit_cost=2,
            prompt_length=len(prompt.raw),
        )
    """

    SERVICE = "generative-ui-core"

    def __init__(self):
        self._logger = logger

    def _emit(self, level: int, event: str, correlation_id: str, **fields: Any) -> None:
        log_data: Dict[str, Any] = {
            "event": event,
            "service": self.SERVICE,
            "correlation_id": correlation_id,
            **fields,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._logger.log(level, json.dumps(log_data, default=str))

    # ---------------------------------------------------------------------------
    # LIFECYCLE
    # ---------------------------------------------------------------------------

    def generation_started(
        self,
        correlation_id: str,
        account_id: str,
        project_id: str,
        tier: str,
        passes_total: int,
        credit_cost: int,
        prompt_length: int,
    ) -> None:
        self._emit(
            logging.INFO,
            "generation_started",
            correlation_id,
            account_id=account_id,
            project_id=project_id,
            tier=tier,
            passes_total=passes_total,
            credit_cost=credit_cost,
            prompt_length=prompt_length,
        )

    def brief_synthesized(
        self,
        correlation_id: str,
        response: Optional[AIResponse],
        fallback: bool,
        reason: Optional[str] = None,
    ) -> None:
        """Log the brief call. `response` is None when no call was made."""
        fields: Dict[str, Any] = {"fallback": fallback}
        if reason:
            fields["reason"] = reason
        if response is not None:
            fields.update(
                provider=response.provider.value,
                model=response.model,
                latency_ms=round(response.latency_ms, 2),
                tokens=response.usage.total_tokens,
                response_length=len(response.content),
            )
        level = logging.WARNING if fallback else logging.INFO
        self._emit(level, "brief_synthesized", correlation_id, **fields)

    def pass_completed(
        self,
        correlation_id: str,
        pass_number: int,
        passes_total: int,
        html_length: int,
        latency_ms: float,
    ) -> None:
        self._emit(
            logging.INFO,
            "pass_completed",
            correlation_id,
            pass_number=pass_number,
            passes_total=passes_total,
            html_length=html_length,
            latency_ms=round(latency_ms, 2),
        )

    def generation_failed(
        self,
        correlation_id: str,
        error_code: str,
        pass_number: int,
        passes_completed: int,
        detail: Optional[str] = None,
        refunded: bool = False,
    ) -> None:
        self._emit(
            logging.ERROR,
            "generation_failed",
            correlation_id,
            error_code=error_code,
            pass_number=pass_number,
            passes_completed=passes_completed,
            detail=detail,
            refunded=refunded,
        )

    # ---------------------------------------------------------------------------
    # CREDITS / SECURITY / STREAMS
    # ---------------------------------------------------------------------------

    def credit_event(
        self,
        correlation_id: str,
        account_id: str,
        action: str,
        amount: int,
        balance_after: Optional[int] = None,
        success: bool = True,
    ) -> None:
        self._emit(
            logging.INFO if success else logging.WARNING,
            "credit_event",
            correlation_id,
            account_id=account_id,
            action=action,
            amount=amount,
            balance_after=balance_after,
            success=success,
        )

    def security_event(
        self,
        correlation_id: str,
        account_id: str,
        pattern_ids: List[str],
        source: str = "prompt",
    ) -> None:
        """Injection patterns were neutralized. Pattern ids and count only."""
        self._emit(
            logging.WARNING,
            "security_event",
            correlation_id,
            account_id=account_id,
            source=source,
            pattern_ids=sorted(set(pattern_ids)),
            match_count=len(pattern_ids),
        )

    def stream_event(self, correlation_id: str, action: str, **fields: Any) -> None:
        self._emit(logging.INFO, "stream_event", correlation_id, action=action, **fields)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
generation_logger = GenerationLogger()
