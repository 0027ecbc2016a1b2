"""
Streaming Transport - delivers session events to a reader, with resume.

open(session_id)
    First read of a PENDING session. Starts pass 1.
    A PENDING session past its open deadline is failed and refunded instead,
    and the reader receives that FAILED event.

resume(session_id, cursor)
    `cursor` is the last sequence number the client saw.
    1. If a committed snapshot exists that the client has not been told
       about (cursor < snapshot.seq), send it once as a `snapshot` event.
    2. If the session can continue, run the remaining passes with sequence
       numbers above both the stored last_seq and the cursor.
    3. If the session is terminal, send its terminal event unless the
       client already has it (cursor >= terminal_seq).

Resumption uses stored state only, so it works after a process restart. A
session stored as STREAMING/REFINING with no reader in this process is
treated as interrupted and picked up.
"""

import logging
import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from app.ai.monitoring import generation_logger
from app.core.errors import ErrorCode, GenerationError
from app.generation.events import EventType, StreamEvent
from app.generation.orchestrator import (
    LIVE,
    RefinementOrchestrator,
    refinement_orchestrator,
    terminal_event,
)
from app.models.generation_session import GenerationSession, SessionStatus
from app.services.session_repository import SessionRepository, session_repository

logger = logging.getLogger("genui.generation.streaming")


class StreamingTransport:
    def __init__(
        self,
        orchestrator: Optional[RefinementOrchestrator] = None,
        repository: Optional[SessionRepository] = None,
    ):
        self._orchestrator = orchestrator or refinement_orchestrator
        self._repository = repository or session_repository

    def can_continue(self, record: GenerationSession, now: Optional[datetime] = None) -> bool:
        """Whether resume() would run passes rather than replay a terminal event."""
        if record.status == SessionStatus.PENDING.value:
            return True
        if record.status == SessionStatus.INTERRUPTED.value:
            return record.resume_window_open(now)
        if record.status in LIVE:
            return not self._orchestrator.is_running(record.id)
        return False

    def check_readable(self, record: GenerationSession) -> None:
        """
        Fail fast, before a streaming response is started.

        Raises:
            GenerationError(GENERATION_IN_PROGRESS): the session already has a reader
        """
        if record.status in LIVE and self._orchestrator.is_running(record.id):
            raise GenerationError(
                ErrorCode.GENERATION_IN_PROGRESS, f"session {record.id} already has a reader"
            )

    async def open(self, session_id: uuid.UUID) -> AsyncIterator[StreamEvent]:
        """
        Start delivering a PENDING session. Any other session is resumed from
        the beginning (cursor 0).
        """
        record = self._load(session_id)
        if record.status != SessionStatus.PENDING.value:
            async with aclosing(self.resume(session_id, cursor=0)) as events:
                async for event in events:
                    yield event
            return

        generation_logger.stream_event(str(session_id), "opened")
        async with aclosing(self._orchestrator.run(session_id, start_seq=record.last_seq + 1)) as events:
            async for event in events:
                yield event

    async def resume(self, session_id: uuid.UUID, cursor: int) -> AsyncIterator[StreamEvent]:
        """
        Continue delivery after the last event the client saw.

        The latest snapshot is re-sent only when cursor < snapshot.seq, the
        seq of that pass's pass_complete event. A cursor at or past it means
        the client received every chunk of the pass and its pass_complete, so
        it already holds the whole document. This is why a client that
        resumes with the stored last_seq right after a pass_complete gets no
        snapshot, while one whose cursor stops inside the pass gets it once.

        A cursor past everything stored is not an error: there is nothing to
        re-send, and new events still get sequence numbers above it.
        """
        record = self._load(session_id)
        cursor = max(cursor, 0)
        generation_logger.stream_event(
            str(session_id), "resumed", cursor=cursor, status=record.status, last_seq=record.last_seq
        )

        snapshot = record.last_snapshot
        if snapshot is not None and cursor < snapshot.seq:
            yield StreamEvent(
                seq=snapshot.seq,
                type=EventType.SNAPSHOT,
                pass_number=snapshot.pass_number,
                data={"html": snapshot.html},
            )

        now = datetime.now(timezone.utc)
        if self.can_continue(record, now):
            start_seq = max(record.last_seq, cursor) + 1
            async with aclosing(self._orchestrator.run(session_id, start_seq=start_seq)) as events:
                async for event in events:
                    yield event
            return

        if not record.is_terminal(now):
            # Live with a reader in this process; check_readable() normally
            # rejects this before streaming starts.
            raise GenerationError(ErrorCode.GENERATION_IN_PROGRESS, f"session {session_id} has a reader")

        terminal_seq = record.terminal_seq
        if terminal_seq is None:
            # Resume window expired without anyone coming back
            terminal_seq = record.last_seq + 1
            self._repository.update(session_id, terminal_seq=terminal_seq)
        if cursor < terminal_seq:
            yield terminal_event(record, terminal_seq)

    def _load(self, session_id: uuid.UUID) -> GenerationSession:
        record = self._repository.load(session_id)
        if record is None:
            raise GenerationError(ErrorCode.SESSION_NOT_FOUND, str(session_id))
        if self._orchestrator.expire_unopened(record):
            # Opened too late: the reader gets the stored FAILED event
            record = self._repository.load(session_id)
        return record


streaming_transport = StreamingTransport()
