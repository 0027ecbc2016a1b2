"""
Generation Service - entry point for starting, inspecting and cancelling generations.

start_generation() runs every gate before any credit moves:

    1. prompt validation         EMPTY_PROMPT / PROMPT_TOO_LONG
    2. sanitization              request + history user turns
    3. tier -> mode              UPGRADE_REQUIRED
    4. balance pre-check         CREDITS_EXHAUSTED (read-only)
    5. project lock              GENERATION_IN_PROGRESS
    6. project idle check        GENERATION_IN_PROGRESS
    7. brief synthesis           never fails (default brief)
    8. prompt assembly
    9. atomic charge             CREDITS_EXHAUSTED on a lost race
   10. PENDING session           durable inputs for resume

Any failure after step 5 releases the lock. A failure after step 9 but
before the session exists refunds the charge. Rate limiting happens before
this service is called.

The lock lives in memory and expires, so step 6 asks the sessions table
too. A project is busy while one of its sessions waits to be opened (until
its open deadline) or streams with a fresh heartbeat. A resumable
INTERRUPTED session, or a live one whose worker stopped beating, is
superseded by the new request. PENDING sessions of the account that were
never opened in time are failed and refunded before the balance check.

start_edit() is the follow-up path for a project that already has a page:
one pass at the edit cost that returns line-range edit blocks. Requests that
ask for a new design go through start_generation() instead.

The HTML passes themselves run later, when a reader opens the session's
stream (see app.generation.streaming).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.ai.monitoring import generation_logger
from app.ai.prompts.edit_prompts import EDIT_SYSTEM_PROMPT
from app.core.config import settings
from app.core.errors import ErrorCode, GenerationError
from app.generation import policy
from app.generation.brief import BriefSynthesizer, brief_synthesizer
from app.generation.edit_engine import is_edit_request
from app.generation.orchestrator import RefinementOrchestrator, refinement_orchestrator
from app.generation.prompt import build_prompt, sanitize_history
from app.generation.prompt_assembler import assemble
from app.models.generation_session import (
    LIVE_STATUSES,
    GenerationSession,
    SessionKind,
    SessionStatus,
)
from app.services.credit_service import CreditService, credit_service
from app.services.generation_lock import GenerationLockRegistry, generation_lock
from app.services.project_store import ProjectStore, project_store
from app.services.session_repository import SessionRepository, session_repository

logger = logging.getLogger("genui.services.generation")


@dataclass
class StartedGeneration:
    """What the caller needs to attach to the new session's stream."""
    session_id: uuid.UUID
    status: str
    mode: str
    passes_total: int
    credit_cost: int
    new_balance: int
    brief_is_fallback: bool
    kind: str = SessionKind.GENERATE.value

    def describe(self) -> str:
        return (
            f"session {self.session_id}: {self.kind} {self.mode} x{self.passes_total}, "
            f"cost {self.credit_cost}, balance {self.new_balance}"
        )


class GenerationService:
    def __init__(
        self,
        credits: Optional[CreditService] = None,
        locks: Optional[GenerationLockRegistry] = None,
        projects: Optional[ProjectStore] = None,
        repository: Optional[SessionRepository] = None,
        briefs: Optional[BriefSynthesizer] = None,
        orchestrator: Optional[RefinementOrchestrator] = None,
        open_timeout_seconds: Optional[int] = None,
    ):
        self._credits = credits or credit_service
        self._locks = locks or generation_lock
        self._projects = projects or project_store
        self._repository = repository or session_repository
        self._briefs = briefs or brief_synthesizer
        self._orchestrator = orchestrator or refinement_orchestrator
        self._open_timeout = open_timeout_seconds

    @property
    def open_timeout(self) -> timedelta:
        seconds = (
            self._open_timeout
            if self._open_timeout is not None
            else settings.SESSION_OPEN_TIMEOUT_SECONDS
        )
        return timedelta(seconds=seconds)

    async def start_generation(
        self,
        account_id: uuid.UUID,
        tier: str,
        project_id: uuid.UUID,
        prompt: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        include_current_html: bool = True,
    ) -> StartedGeneration:
        """
        Args:
            include_current_html: Show the project's committed page to pass 1
                as the document to modify. Off for "start over" requests.

        Raises:
            GenerationError: any of the validation or policy codes above
        """
        # ---------------------------------------------------------------------
        # STEP 1-2: Validate and sanitize (no side effects, no model calls)
        # ---------------------------------------------------------------------
        validated = build_prompt(prompt)

        # Session id doubles as lock owner and correlation id
        session_id = uuid.uuid4()
        correlation_id = str(session_id)

        project = self._projects.get(project_id, account_id)
        history_source = conversation_history if conversation_history is not None else project.conversation_history
        history, history_injections = sanitize_history(history_source)

        injections = [m.pattern_id for m in validated.injections]
        injections += [m.pattern_id for m in history_injections]
        if injections:
            generation_logger.security_event(correlation_id, str(account_id), injections)

        # ---------------------------------------------------------------------
        # STEP 3-4: Policy
        # ---------------------------------------------------------------------
        account_tier = policy.parse_tier(tier)
        mode = policy.mode_for(account_tier)
        cost = policy.cost_for(mode)
        passes_total = policy.passes_for_mode(mode)
        self.expire_unopened_sessions(account_id)
        self._credits.check_balance(account_id, cost)

        # ---------------------------------------------------------------------
        # STEP 5-6: One active generation per project
        # ---------------------------------------------------------------------
        project_key = str(project_id)
        self._claim_project(project_id, correlation_id)

        charged = False
        try:
            # -----------------------------------------------------------------
            # STEP 7-8: Brief and system prompt
            # -----------------------------------------------------------------
            brief = await self._briefs.synthesize(validated.sanitized, correlation_id)
            current_html = project.html if include_current_html else None
            system_prompt = assemble(brief, current_html=current_html)

            # -----------------------------------------------------------------
            # STEP 9: Charge
            # -----------------------------------------------------------------
            charge = self._credits.charge_if_affordable(account_id, cost, correlation_id)
            if not charge.ok:
                raise GenerationError(
                    ErrorCode.CREDITS_EXHAUSTED, f"lost charge race, balance={charge.new_balance}"
                )
            charged = True

            # -----------------------------------------------------------------
            # STEP 10: Durable session
            # -----------------------------------------------------------------
            record = self._repository.create(
                id=session_id,
                project_id=project_id,
                account_id=account_id,
                kind=SessionKind.GENERATE.value,
                tier=account_tier.value,
                mode=mode.value,
                credit_cost=cost,
                passes_total=passes_total,
                passes_completed=0,
                status=SessionStatus.PENDING.value,
                system_prompt=system_prompt,
                sanitized_request=validated.sanitized,
                conversation_history=history,
                brief_is_fallback=brief.is_fallback,
                open_deadline=datetime.now(timezone.utc) + self.open_timeout,
            )
        except BaseException:
            self._locks.release(project_key, owner=correlation_id)
            if charged:
                self._credits.refund(account_id, cost, correlation_id)
            raise

        generation_logger.generation_started(
            correlation_id,
            account_id=str(account_id),
            project_id=project_key,
            tier=account_tier.value,
            passes_total=passes_total,
            credit_cost=cost,
            prompt_length=validated.length,
        )

        started = StartedGeneration(
            session_id=record.id,
            status=record.status,
            mode=mode.value,
            passes_total=passes_total,
            credit_cost=cost,
            new_balance=charge.new_balance,
            brief_is_fallback=brief.is_fallback,
        )
        logger.info(started.describe())
        return started

    async def start_edit(
        self,
        account_id: uuid.UUID,
        tier: str,
        project_id: uuid.UUID,
        instruction: str,
    ) -> StartedGeneration:
        """
        Start a line-range edit of the project's committed page.

        A project without a page, or an instruction asking to start over, is
        routed to a full generation that ignores the current page.

        Raises:
            GenerationError: the same validation and policy codes as
                start_generation()
        """
        validated = build_prompt(instruction)
        project = self._projects.get(project_id, account_id)
        if not is_edit_request(instruction, has_existing_html=bool(project.html)):
            logger.info(f"Edit on project {project_id} routed to a new design")
            return await self.start_generation(
                account_id, tier, project_id, instruction, include_current_html=False
            )

        session_id = uuid.uuid4()
        correlation_id = str(session_id)
        if validated.injections:
            generation_logger.security_event(
                correlation_id, str(account_id), [m.pattern_id for m in validated.injections]
            )

        # Edits need a tier that can generate, but cost the same on every tier
        account_tier = policy.parse_tier(tier)
        mode = policy.mode_for(account_tier)
        cost = policy.EDIT_COST
        self.expire_unopened_sessions(account_id)
        self._credits.check_balance(account_id, cost)

        project_key = str(project_id)
        self._claim_project(project_id, correlation_id)

        charged = False
        try:
            charge = self._credits.charge_if_affordable(account_id, cost, correlation_id)
            if not charge.ok:
                raise GenerationError(
                    ErrorCode.CREDITS_EXHAUSTED, f"lost charge race, balance={charge.new_balance}"
                )
            charged = True

            record = self._repository.create(
                id=session_id,
                project_id=project_id,
                account_id=account_id,
                kind=SessionKind.EDIT.value,
                tier=account_tier.value,
                mode=mode.value,
                credit_cost=cost,
                passes_total=policy.EDIT_PASSES,
                passes_completed=0,
                status=SessionStatus.PENDING.value,
                system_prompt=EDIT_SYSTEM_PROMPT,
                sanitized_request=validated.sanitized,
                conversation_history=[],
                base_html=project.html,
                open_deadline=datetime.now(timezone.utc) + self.open_timeout,
            )
        except BaseException:
            self._locks.release(project_key, owner=correlation_id)
            if charged:
                self._credits.refund(account_id, cost, correlation_id)
            raise

        generation_logger.generation_started(
            correlation_id,
            account_id=str(account_id),
            project_id=project_key,
            tier=account_tier.value,
            passes_total=policy.EDIT_PASSES,
            credit_cost=cost,
            prompt_length=validated.length,
        )

        started = StartedGeneration(
            session_id=record.id,
            status=record.status,
            mode=mode.value,
            passes_total=policy.EDIT_PASSES,
            credit_cost=cost,
            new_balance=charge.new_balance,
            brief_is_fallback=False,
            kind=SessionKind.EDIT.value,
        )
        logger.info(started.describe())
        return started

    def expire_unopened_sessions(self, account_id: Optional[uuid.UUID] = None) -> int:
        """
        Fail and refund PENDING sessions nobody opened before their deadline.

        Returns:
            Number of sessions that were past their deadline
        """
        now = datetime.now(timezone.utc)
        expired = 0
        for record in self._repository.unfinished(account_id=account_id):
            if self._orchestrator.expire_unopened(record, now):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} unopened session(s)")
        return expired

    def get_session(self, session_id: uuid.UUID, account_id: uuid.UUID) -> GenerationSession:
        """
        Raises:
            GenerationError(SESSION_NOT_FOUND): missing or owned by another account
        """
        record = self._repository.load_owned(session_id, account_id)
        if record is None:
            raise GenerationError(ErrorCode.SESSION_NOT_FOUND, str(session_id))
        if self._orchestrator.expire_unopened(record):
            record = self._repository.load_owned(session_id, account_id)
        return record

    def cancel(self, session_id: uuid.UUID, account_id: uuid.UUID) -> GenerationSession:
        """Idempotent. Cancelling a finished session changes nothing."""
        self.get_session(session_id, account_id)
        self._orchestrator.cancel(session_id)
        return self.get_session(session_id, account_id)

    # ---------------------------------------------------------------------------
    # PROJECT CLAIM
    # ---------------------------------------------------------------------------

    def _claim_project(self, project_id: uuid.UUID, owner: str) -> None:
        """
        Take the project lock for `owner` and check no stored session still
        runs on the project. The lock is released again if the check fails.

        Raises:
            GenerationError(GENERATION_IN_PROGRESS)
        """
        project_key = str(project_id)
        if not self._locks.acquire(project_key, owner=owner):
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"project {project_key} is locked")
        try:
            self._ensure_project_idle(project_id)
        except BaseException:
            self._locks.release(project_key, owner=owner)
            raise

    def _ensure_project_idle(self, project_id: uuid.UUID) -> None:
        now = datetime.now(timezone.utc)
        stale_after = timedelta(seconds=self._locks.ttl)

        for record in self._repository.unfinished(project_id=project_id):
            if record.is_terminal(now) or self._orchestrator.expire_unopened(record, now):
                continue
            if record.status == SessionStatus.PENDING.value:
                raise GenerationError(
                    ErrorCode.GENERATION_IN_PROGRESS, f"session {record.id} is waiting to be opened"
                )
            if record.status in LIVE_STATUSES and (
                self._orchestrator.is_running(record.id) or not record.heartbeat_stale(stale_after, now)
            ):
                raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"session {record.id} is streaming")

            # Resumable INTERRUPTED session, or a live one whose worker died
            logger.info(f"Session {record.id} superseded on project {project_id}")
            self._orchestrator.cancel(record.id)


generation_service = GenerationService()
