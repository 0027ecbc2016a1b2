"""
Refinement Orchestrator - drives a session through its HTML passes.

The orchestrator is reader-driven: run() is an async generator, and the
passes advance only while somebody iterates it. That keeps a single writer
per session and makes "the client went away" observable as the generator
being closed or cancelled.

Pass inputs:
- pass 1: assembled system prompt + sanitized history + sanitized request
- pass k > 1: fixed refine instruction + the full snapshot of pass k-1
- edit sessions (one pass): edit instruction + the numbered committed page;
  the answer is edit blocks, applied to that page

After every pass the cleaned HTML is stored as an immutable snapshot and
committed to the project BEFORE the next pass is requested.

While a pass streams, every chunk refreshes the project lock and the session
row is touched at least every heartbeat interval, so neither the lock TTL
nor the stale-session check can free the project under a running pass.

Failure policy:
- no completed pass: FAILED, charge refunded once
- TOKEN_LIMIT_EXCEEDED on pass k > 1: COMPLETE with the last good snapshot,
  the pass error recorded
- any other upstream failure on pass k > 1: FAILED, last good snapshot stays
  committed, no refund
- reader disconnects: INTERRUPTED with a resume window, partial pass dropped
- explicit cancel (checked between chunks): INTERRUPTED, no resume window
- stream never opened before the open deadline: FAILED, refunded
- edit response with neither edit blocks nor a document: EDIT_FAILED
"""

import asyncio
import logging
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

from app.ai.monitoring import generation_logger
from app.ai.prompts.refine_prompts import REFINE_SYSTEM_PROMPT, build_refine_request
from app.ai.providers import AIProvider, ProviderError, get_provider
from app.core.config import settings
from app.core.errors import ERROR_MESSAGES, ErrorCode, GenerationError
from app.generation.events import EventType, Sequencer, StreamEvent
from app.generation.edit_engine import apply_edit_blocks, build_edit_request, parse_edit_response
from app.models.generation_session import GenerationSession, SessionStatus
from app.services.credit_service import CreditService, credit_service
from app.services.generation_lock import GenerationLockRegistry, generation_lock
from app.services.project_store import ProjectStore, project_store
from app.services.session_repository import SessionRepository, session_repository

logger = logging.getLogger("genui.generation.orchestrator")

LIVE = [SessionStatus.STREAMING.value, SessionStatus.REFINING.value]
CLAIMABLE = [
    SessionStatus.PENDING.value,
    SessionStatus.INTERRUPTED.value,
    *LIVE,
]


def extract_html(content: Optional[str]) -> Optional[str]:
    """
    Clean a pass output down to the document.

    Strips markdown code fences and anything before <!DOCTYPE / <html.
    Returns None when no document can be found.
    """
    if not content:
        return None

    content = content.strip()

    # Remove markdown code blocks if present
    if content.startswith("```html"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]

    if content.endswith("```"):
        content = content[:-3]

    content = content.strip()

    lowered = content.lower()
    start = lowered.find("<!doctype")
    if start == -1:
        start = lowered.find("<html")
    if start == -1:
        return None
    return content[start:]


def status_for_pass(pass_number: int) -> str:
    return SessionStatus.STREAMING.value if pass_number == 1 else SessionStatus.REFINING.value


def terminal_event(record: GenerationSession, seq: int) -> StreamEvent:
    """Rebuild the terminal event of a finished session from stored state."""
    base = {
        "status": record.status,
        "passes_completed": record.passes_completed,
        "passes_total": record.passes_total,
    }
    if record.status == SessionStatus.COMPLETE.value:
        if record.pass_error_code:
            code = ErrorCode(record.pass_error_code)
            base["pass_error"] = {"code": code.value, "message": ERROR_MESSAGES[code]}
        return StreamEvent(seq, EventType.COMPLETE, None, base)

    code = ErrorCode(record.error_code or ErrorCode.INTERNAL_ERROR.value)
    base["error"] = {"code": code.value, "message": ERROR_MESSAGES[code]}
    if record.status == SessionStatus.INTERRUPTED.value:
        return StreamEvent(seq, EventType.INTERRUPTED, None, base)
    base["refunded"] = record.refunded
    return StreamEvent(seq, EventType.FAILED, None, base)


@dataclass
class RunHandle:
    """In-process marker of a session that currently has a reader."""
    session_id: str
    cancel_requested: bool = False


class RefinementOrchestrator:
    """
    Usage:
        async for event in refinement_orchestrator.run(session_id, start_seq=1):
            send(event)
    """

    def __init__(
        self,
        repository: Optional[SessionRepository] = None,
        projects: Optional[ProjectStore] = None,
        credits: Optional[CreditService] = None,
        locks: Optional[GenerationLockRegistry] = None,
        provider: Optional[AIProvider] = None,
        resume_timeout_seconds: Optional[int] = None,
        heartbeat_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._repository = repository or session_repository
        self._projects = projects or project_store
        self._credits = credits or credit_service
        self._locks = locks or generation_lock
        self._provider = provider
        self._resume_timeout = resume_timeout_seconds
        self._heartbeat = heartbeat_seconds
        self._clock = clock
        self._runs: Dict[str, RunHandle] = {}

    @property
    def provider(self) -> AIProvider:
        if self._provider is None:
            self._provider = get_provider(settings.GENERATION_PROVIDER)
        return self._provider

    @property
    def resume_timeout(self) -> timedelta:
        seconds = (
            self._resume_timeout
            if self._resume_timeout is not None
            else settings.SESSION_RESUME_TIMEOUT_SECONDS
        )
        return timedelta(seconds=seconds)

    @property
    def heartbeat_interval(self) -> float:
        """Seconds between two session row touches while a pass streams."""
        if self._heartbeat is not None:
            return self._heartbeat
        return settings.GENERATION_LOCK_TTL_SECONDS / 3

    def is_running(self, session_id: uuid.UUID) -> bool:
        return str(session_id) in self._runs

    # ---------------------------------------------------------------------------
    # RUN
    # ---------------------------------------------------------------------------

    async def run(self, session_id: uuid.UUID, start_seq: int) -> AsyncIterator[StreamEvent]:
        """
        Claim the session and drive its remaining passes.

        Raises:
            GenerationError(SESSION_NOT_FOUND): no such session
            GenerationError(GENERATION_IN_PROGRESS): another reader or another
                session of the project holds the lock
        """
        key = str(session_id)
        record = self._repository.load(session_id)
        if record is None:
            raise GenerationError(ErrorCode.SESSION_NOT_FOUND, key)
        if key in self._runs:
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"session {key} already has a reader")

        project_key = str(record.project_id)
        if not self._locks.acquire(project_key, owner=key):
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"project {project_key} is locked")

        first_pass = record.passes_completed + 1
        claimed = self._repository.transition(
            session_id,
            CLAIMABLE,
            status=status_for_pass(first_pass),
            error_code=None,
            resume_deadline=None,
        )
        if not claimed:
            self._locks.release(project_key, owner=key)
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"session {key} is no longer claimable")

        handle = RunHandle(session_id=key)
        self._runs[key] = handle
        seq = Sequencer(start_seq)
        snapshot = record.last_snapshot
        previous_html = snapshot.html if snapshot else None
        pass_number = first_pass

        generation_logger.stream_event(key, "run_started", pass_number=first_pass, start_seq=start_seq)

        try:
            while pass_number <= record.passes_total:
                if handle.cancel_requested:
                    yield self._finish_cancelled(record, seq)
                    return

                self._locks.acquire(project_key, owner=key)
                self._repository.update(session_id, status=status_for_pass(pass_number))
                last_beat = self._clock()

                event = seq.event(EventType.PASS_STARTED, pass_number, passes_total=record.passes_total)
                seq.delivered = event.seq
                yield event

                system_prompt, messages = self._pass_input(record, pass_number, previous_html)
                temperature, max_tokens = self._sampling(record)
                started = time.time()
                buffer: List[str] = []
                truncated = False

                try:
                    async with aclosing(
                        self.provider.stream(
                            messages,
                            system_prompt=system_prompt,
                            temperature=temperature,
                            max_tokens=max_tokens,
                        )
                    ) as chunks:
                        async for chunk in chunks:
                            if handle.cancel_requested:
                                break
                            last_beat = self._keep_alive(record, seq.delivered, last_beat)
                            if chunk.text:
                                buffer.append(chunk.text)
                                event = seq.event(EventType.CHUNK, pass_number, text=chunk.text)
                                seq.delivered = event.seq
                                yield event
                            if chunk.truncated:
                                truncated = True
                except ProviderError as e:
                    yield self._finish_failed(record, seq, pass_number, e.code, e.message)
                    return

                if handle.cancel_requested:
                    yield self._finish_cancelled(record, seq)
                    return

                if truncated:
                    yield self._finish_failed(
                        record, seq, pass_number, ErrorCode.TOKEN_LIMIT_EXCEEDED, "output hit max tokens"
                    )
                    return

                html, blocks_applied = self._pass_output(record, "".join(buffer))
                if html is None:
                    if record.is_edit:
                        code, detail = ErrorCode.EDIT_FAILED, "response held no edit blocks and no document"
                    else:
                        code, detail = ErrorCode.STREAM_ERROR, "pass produced no HTML document"
                    yield self._finish_failed(record, seq, pass_number, code, detail)
                    return

                complete_seq = seq.next()
                self._repository.add_snapshot(session_id, pass_number, html, complete_seq)
                self._projects.commit_html(record.project_id, html)
                generation_logger.pass_completed(
                    key, pass_number, record.passes_total, len(html), (time.time() - started) * 1000
                )
                previous_html = html

                data = {"passes_completed": pass_number}
                if record.is_edit:
                    # Chunks of an edit are blocks, not the page
                    data.update(html=html, blocks_applied=blocks_applied)
                event = StreamEvent(complete_seq, EventType.PASS_COMPLETE, pass_number, data)
                seq.delivered = event.seq
                yield event
                pass_number += 1

            yield self._finish_complete(record, seq)

        except (GeneratorExit, asyncio.CancelledError):
            self._interrupt(record, seq.delivered)
            raise
        except Exception as e:
            logger.exception(f"Session {key} crashed on pass {pass_number}: {e}")
            yield self._finish_failed(record, seq, pass_number, ErrorCode.INTERNAL_ERROR, str(e))
        finally:
            self._runs.pop(key, None)

    # ---------------------------------------------------------------------------
    # CANCEL
    # ---------------------------------------------------------------------------

    def cancel(self, session_id: uuid.UUID) -> None:
        """
        End a session as INTERRUPTED with no resume window.

        A running session is flagged and stops at its next chunk boundary.
        A session without a reader is finished here. Terminal sessions are
        left untouched.
        """
        key = str(session_id)
        handle = self._runs.get(key)
        if handle is not None:
            handle.cancel_requested = True
            generation_logger.stream_event(key, "cancel_requested")
            return

        record = self._repository.load(session_id)
        if record is None or record.is_terminal():
            return

        now = datetime.now(timezone.utc)
        won = self._repository.transition(
            session_id,
            CLAIMABLE,
            status=SessionStatus.INTERRUPTED.value,
            error_code=ErrorCode.STREAM_INTERRUPTED.value,
            resume_deadline=now,
            terminal_seq=record.last_seq + 1,
            completed_at=now,
        )
        self._locks.release(str(record.project_id), owner=key)
        if won:
            generation_logger.stream_event(key, "cancelled", passes_completed=record.passes_completed)

    # ---------------------------------------------------------------------------
    # OPEN DEADLINE
    # ---------------------------------------------------------------------------

    def expire_unopened(self, record: GenerationSession, now: Optional[datetime] = None) -> bool:
        """
        Fail a PENDING session whose stream was not opened before its deadline.

        The charge is refunded once, by whichever caller wins the transition
        out of PENDING.

        Returns:
            True if the session was past its open deadline
        """
        now = now or datetime.now(timezone.utc)
        if not record.open_window_expired(now):
            return False

        key = str(record.id)
        terminal_seq = record.last_seq + 1
        won = self._repository.transition(
            record.id,
            [SessionStatus.PENDING.value],
            status=SessionStatus.FAILED.value,
            error_code=ErrorCode.SESSION_EXPIRED.value,
            refunded=True,
            terminal_seq=terminal_seq,
            last_seq=terminal_seq,
            completed_at=now,
        )
        if won:
            self._credits.refund(record.account_id, record.credit_cost, key)
            generation_logger.generation_failed(
                key,
                ErrorCode.SESSION_EXPIRED.value,
                pass_number=1,
                passes_completed=0,
                detail="stream not opened before the open deadline",
                refunded=True,
            )
        self._locks.release(str(record.project_id), owner=key)
        return True

    # ---------------------------------------------------------------------------
    # ENDINGS
    # ---------------------------------------------------------------------------

    def _finish_complete(self, record: GenerationSession, seq: Sequencer) -> StreamEvent:
        terminal_seq = seq.next()
        self._repository.transition(
            record.id,
            LIVE,
            status=SessionStatus.COMPLETE.value,
            terminal_seq=terminal_seq,
            last_seq=terminal_seq,
            completed_at=datetime.now(timezone.utc),
        )
        self._locks.release(str(record.project_id), owner=str(record.id))
        self._projects.record_exchange(record.project_id, record.sanitized_request)
        generation_logger.stream_event(str(record.id), "completed", passes_total=record.passes_total)
        return self._stored_terminal(record.id, terminal_seq, seq)

    def _finish_failed(
        self,
        record: GenerationSession,
        seq: Sequencer,
        pass_number: int,
        code: ErrorCode,
        detail: Optional[str],
    ) -> StreamEvent:
        passes_completed = pass_number - 1
        terminal_seq = seq.next()
        now = datetime.now(timezone.utc)

        values = {"terminal_seq": terminal_seq, "last_seq": terminal_seq, "completed_at": now}
        refund = False
        if passes_completed == 0:
            values.update(status=SessionStatus.FAILED.value, error_code=code.value, refunded=True)
            refund = True
        elif code == ErrorCode.TOKEN_LIMIT_EXCEEDED:
            values.update(status=SessionStatus.COMPLETE.value, pass_error_code=code.value)
        else:
            values.update(status=SessionStatus.FAILED.value, error_code=code.value)

        won = self._repository.transition(record.id, LIVE, **values)
        if won and refund:
            self._credits.refund(record.account_id, record.credit_cost, str(record.id))
        self._locks.release(str(record.project_id), owner=str(record.id))
        if won and values["status"] == SessionStatus.COMPLETE.value:
            self._projects.record_exchange(record.project_id, record.sanitized_request)

        generation_logger.generation_failed(
            str(record.id),
            code.value,
            pass_number=pass_number,
            passes_completed=passes_completed,
            detail=detail,
            refunded=won and refund,
        )
        return self._stored_terminal(record.id, terminal_seq, seq)

    def _finish_cancelled(self, record: GenerationSession, seq: Sequencer) -> StreamEvent:
        terminal_seq = seq.next()
        now = datetime.now(timezone.utc)
        self._repository.transition(
            record.id,
            LIVE,
            status=SessionStatus.INTERRUPTED.value,
            error_code=ErrorCode.STREAM_INTERRUPTED.value,
            resume_deadline=now,
            terminal_seq=terminal_seq,
            last_seq=terminal_seq,
            completed_at=now,
        )
        self._locks.release(str(record.project_id), owner=str(record.id))
        generation_logger.stream_event(str(record.id), "cancelled")
        return self._stored_terminal(record.id, terminal_seq, seq)

    def _interrupt(self, record: GenerationSession, delivered: int) -> None:
        """Reader went away mid-run: keep the session resumable for a while."""
        deadline = datetime.now(timezone.utc) + self.resume_timeout
        won = self._repository.transition(
            record.id,
            LIVE,
            status=SessionStatus.INTERRUPTED.value,
            error_code=ErrorCode.STREAM_INTERRUPTED.value,
            resume_deadline=deadline,
            last_seq=max(delivered, record.last_seq),
        )
        self._locks.release(str(record.project_id), owner=str(record.id))
        if won:
            generation_logger.stream_event(
                str(record.id), "disconnected", last_seq=delivered, resume_deadline=deadline.isoformat()
            )

    def _stored_terminal(self, session_id: uuid.UUID, terminal_seq: int, seq: Sequencer) -> StreamEvent:
        stored = self._repository.load(session_id)
        event = terminal_event(stored, stored.terminal_seq or terminal_seq)
        seq.delivered = event.seq
        return event

    # ---------------------------------------------------------------------------
    # HEARTBEAT
    # ---------------------------------------------------------------------------

    def _keep_alive(self, record: GenerationSession, delivered: int, last_beat: float) -> float:
        """
        Called for every chunk. Refreshes the project lock and, once per
        heartbeat interval, touches the session row.

        Returns:
            Clock reading of the latest row touch
        """
        key = str(record.id)
        if not self._locks.acquire(str(record.project_id), owner=key):
            logger.warning(f"Session {key} lost the lock on project {record.project_id}")

        now = self._clock()
        if now - last_beat < self.heartbeat_interval:
            return last_beat
        self._repository.update(record.id, last_seq=max(delivered, record.last_seq))
        return now

    # ---------------------------------------------------------------------------
    # INPUTS
    # ---------------------------------------------------------------------------

    @staticmethod
    def _pass_input(
        record: GenerationSession, pass_number: int, previous_html: Optional[str]
    ) -> Tuple[str, List[Dict[str, str]]]:
        if record.is_edit:
            request = build_edit_request(record.base_html or "", record.sanitized_request)
            return record.system_prompt, [{"role": "user", "content": request}]
        if pass_number == 1:
            messages = [dict(turn) for turn in (record.conversation_history or [])]
            messages.append({"role": "user", "content": record.sanitized_request})
            return record.system_prompt, messages
        return REFINE_SYSTEM_PROMPT, [{"role": "user", "content": build_refine_request(previous_html)}]

    @staticmethod
    def _sampling(record: GenerationSession) -> Tuple[float, int]:
        """(temperature, max_tokens) of the upstream call."""
        if record.is_edit:
            return settings.EDIT_TEMPERATURE, settings.EDIT_MAX_TOKENS
        return settings.GENERATION_TEMPERATURE, settings.GENERATION_MAX_TOKENS

    @staticmethod
    def _pass_output(record: GenerationSession, content: str) -> Tuple[Optional[str], int]:
        """
        The document a pass produced and, for edits, how many blocks were applied.

        An edit answer without usable blocks is still accepted when it holds a
        whole document. Returns (None, 0) when there is nothing to commit.
        """
        if not record.is_edit:
            return extract_html(content), 0
        result = apply_edit_blocks(record.base_html or "", parse_edit_response(content))
        if result.success:
            return result.html, result.applied_count
        return extract_html(content), 0


refinement_orchestrator = RefinementOrchestrator()
