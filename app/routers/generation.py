"""
Generation router - start, stream, inspect and cancel generations.

Endpoints:
- POST /generate                           start a session (202)
- GET  /generate/{session_id}/stream       Server-Sent Events; ?cursor=N or a
                                           Last-Event-ID header resumes
- GET  /generate/{session_id}              session status
- POST /generate/{session_id}/cancel       idempotent cancel
"""

import json
import logging
import uuid
from contextlib import aclosing
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import StreamingResponse

from app.core.errors import ErrorCode, GenerationError
from app.deps import (
    enforce_generate_rate_limit,
    get_current_account,
    get_generation_service,
    get_streaming_transport,
)
from app.generation.events import StreamEvent
from app.generation.streaming import StreamingTransport
from app.models.account import Account
from app.models.generation_session import GenerationSession
from app.schemas.generation import (
    CancelResponse,
    GenerateRequest,
    GenerateResponse,
    SessionResponse,
    SnapshotInfo,
)
from app.services.generation_service import GenerationService, StartedGeneration

logger = logging.getLogger("genui.routers.generation")

router = APIRouter(prefix="/generate", tags=["generation"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # nginx: do not buffer the stream
}


def _stream_url(session_id: uuid.UUID) -> str:
    return f"/generate/{session_id}/stream"


def _session_response(record: GenerationSession, transport: StreamingTransport) -> SessionResponse:
    return SessionResponse(
        session_id=record.id,
        project_id=record.project_id,
        kind=record.kind,
        status=record.status,
        tier=record.tier,
        mode=record.mode,
        credit_cost=record.credit_cost,
        passes_total=record.passes_total,
        passes_completed=record.passes_completed,
        error_code=record.error_code,
        pass_error_code=record.pass_error_code,
        refunded=record.refunded,
        last_seq=record.last_seq,
        resumable=transport.can_continue(record),
        resume_deadline=record.resume_deadline,
        open_deadline=record.open_deadline,
        snapshots=[
            SnapshotInfo(pass_number=s.pass_number, seq=s.seq, html_length=len(s.html))
            for s in record.snapshots
        ],
        created_at=record.created_at,
        completed_at=record.completed_at,
    )


def generate_response(started: StartedGeneration) -> GenerateResponse:
    return GenerateResponse(
        session_id=started.session_id,
        kind=started.kind,
        status=started.status,
        mode=started.mode,
        passes_total=started.passes_total,
        credit_cost=started.credit_cost,
        new_balance=started.new_balance,
        stream_url=_stream_url(started.session_id),
    )


def _resume_cursor(cursor: Optional[int], last_event_id: Optional[str]) -> Optional[int]:
    """
    Where a reconnect resumes from.

    An explicit ?cursor wins. Browsers' EventSource reconnects with only the
    Last-Event-ID header, which carries the `id` of the last frame received.
    None means a first read.
    """
    if cursor is not None or not last_event_id:
        return cursor
    try:
        value = int(last_event_id.strip())
    except ValueError:
        value = -1
    if value < 0:
        raise GenerationError(ErrorCode.VALIDATION_ERROR, f"bad Last-Event-ID {last_event_id!r}")
    return value


async def _sse(events: AsyncIterator[StreamEvent], session_id: uuid.UUID) -> AsyncIterator[str]:
    """
    Frame events as SSE.

    The response status is already sent once the first frame goes out, so a
    GenerationError raised mid-stream becomes an `error` frame instead.
    """
    async with aclosing(events) as stream:
        try:
            async for event in stream:
                yield event.to_sse()
        except GenerationError as e:
            correlation_id = str(session_id)
            logger.warning(f"Stream {session_id} ended with {e.code.value}: {e.detail}")
            yield f"event: error\ndata: {json.dumps(e.to_response(correlation_id))}\n\n"


# ---------------------------------------------------------------------------
# START
# ---------------------------------------------------------------------------
@router.post(
    "",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a generation",
)
async def start_generation(
    request: GenerateRequest,
    account: Account = Depends(enforce_generate_rate_limit),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Validate, sanitize, charge and create a PENDING session.

    The HTML passes run when the client opens `stream_url`.
    """
    history = (
        [message.model_dump() for message in request.conversation_history]
        if request.conversation_history is not None
        else None
    )
    started = await service.start_generation(
        account_id=account.id,
        tier=account.tier,
        project_id=request.project_id,
        prompt=request.prompt,
        conversation_history=history,
    )
    return generate_response(started)


# ---------------------------------------------------------------------------
# STREAM
# ---------------------------------------------------------------------------
@router.get("/{session_id}/stream", summary="Stream or resume a generation (SSE)")
async def stream_generation(
    session_id: uuid.UUID,
    cursor: Optional[int] = Query(default=None, ge=0, description="Last event seq received"),
    last_event_id: Optional[str] = Header(default=None, alias="Last-Event-ID"),
    account: Account = Depends(get_current_account),
    service: GenerationService = Depends(get_generation_service),
    transport: StreamingTransport = Depends(get_streaming_transport),
):
    resume_from = _resume_cursor(cursor, last_event_id)
    record = service.get_session(session_id, account.id)
    transport.check_readable(record)

    events = (
        transport.open(session_id) if resume_from is None else transport.resume(session_id, resume_from)
    )
    return StreamingResponse(
        _sse(events, session_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ---------------------------------------------------------------------------
# INSPECT / CANCEL
# ---------------------------------------------------------------------------
@router.get("/{session_id}", response_model=SessionResponse, summary="Get a generation session")
def get_generation(
    session_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    service: GenerationService = Depends(get_generation_service),
    transport: StreamingTransport = Depends(get_streaming_transport),
):
    return _session_response(service.get_session(session_id, account.id), transport)


@router.post("/{session_id}/cancel", response_model=CancelResponse, summary="Cancel a generation")
def cancel_generation(
    session_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    service: GenerationService = Depends(get_generation_service),
):
    record = service.cancel(session_id, account.id)
    return CancelResponse(session_id=record.id, status=record.status)
