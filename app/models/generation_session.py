"""
Generation session model - one end-to-end generation request.

A session is created only after the request was validated, sanitized and
charged. From then on the orchestrator moves it through its status machine
and the streaming transport records how far delivery got, so that a
reconnecting client (or a restarted process) can pick up from stored state
alone.

Status machine:
    PENDING -> STREAMING(pass=1)
    PENDING -> FAILED                  (stream not opened before open_deadline)
    STREAMING/REFINING(pass=k) -> REFINING(pass=k+1)   when k < passes_total
    STREAMING/REFINING(pass=k) -> COMPLETE             when k == passes_total
    any live status -> INTERRUPTED   (client went away, or explicit cancel)
    any live status -> FAILED        (upstream error or truncation)
    INTERRUPTED -> STREAMING/REFINING (reconnect before resume_deadline)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    STREAMING = "STREAMING"
    REFINING = "REFINING"
    COMPLETE = "COMPLETE"
    INTERRUPTED = "INTERRUPTED"
    FAILED = "FAILED"


class SessionKind(str, Enum):
    GENERATE = "GENERATE"  # full page from a prompt, one or more passes
    EDIT = "EDIT"  # line-range edit blocks applied to the committed page


# Statuses in which a pass may be running
LIVE_STATUSES = {SessionStatus.STREAMING.value, SessionStatus.REFINING.value}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class GenerationSession(Base):
    """SQLAlchemy ORM model for the 'generation_sessions' table."""

    __tablename__ = "generation_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # ---------------------------------------------------------------------------
    # POLICY (fixed at creation)
    # ---------------------------------------------------------------------------
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionKind.GENERATE.value
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    credit_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    passes_total: Mapped[int] = mapped_column(Integer, nullable=False)
    passes_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.PENDING.value, index=True
    )

    # ---------------------------------------------------------------------------
    # DURABLE INPUTS
    # ---------------------------------------------------------------------------
    # Everything pass 1 needs is stored so a resume after restart can rebuild
    # the exact same upstream request.
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    sanitized_request: Mapped[str] = mapped_column(Text, nullable=False)
    conversation_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    brief_is_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # base_html: EDIT sessions only, the committed page the edit applies to
    base_html: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ---------------------------------------------------------------------------
    # OUTCOME
    # ---------------------------------------------------------------------------
    # error_code: Why the session failed or was interrupted
    error_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    # pass_error_code: A refinement pass failed but the session still completed
    pass_error_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ---------------------------------------------------------------------------
    # DELIVERY
    # ---------------------------------------------------------------------------
    # last_seq: Highest event sequence number handed to a reader
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # terminal_seq: Sequence number of the single terminal event
    terminal_seq: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # open_deadline: A PENDING session must be opened before this instant
    open_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # resume_deadline: INTERRUPTED sessions are resumable until this instant
    resume_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    snapshots: Mapped[List["GenerationSnapshot"]] = relationship(
        "GenerationSnapshot",
        back_populates="session",
        order_by="GenerationSnapshot.pass_number",
        cascade="all, delete-orphan",
    )

    # ---------------------------------------------------------------------------
    # HELPERS
    # ---------------------------------------------------------------------------

    def is_terminal(self, now: Optional[datetime] = None) -> bool:
        """COMPLETE, FAILED, or INTERRUPTED with its resume window closed."""
        if self.status in (SessionStatus.COMPLETE.value, SessionStatus.FAILED.value):
            return True
        if self.status == SessionStatus.INTERRUPTED.value:
            return not self.resume_window_open(now)
        return False

    def resume_window_open(self, now: Optional[datetime] = None) -> bool:
        deadline = as_utc(self.resume_deadline)
        if deadline is None:
            return False
        return (now or datetime.now(timezone.utc)) < deadline

    def open_window_expired(self, now: Optional[datetime] = None) -> bool:
        """PENDING and nobody opened the stream before open_deadline."""
        if self.status != SessionStatus.PENDING.value:
            return False
        deadline = as_utc(self.open_deadline)
        if deadline is None:
            return False
        return (now or datetime.now(timezone.utc)) >= deadline

    def heartbeat_stale(self, timeout: timedelta, now: Optional[datetime] = None) -> bool:
        """
        A live session whose row has not been touched for `timeout`.

        A running pass rewrites the row well inside the lock TTL, so a stale
        live row belongs to a worker that died mid-pass.
        """
        if self.status not in LIVE_STATUSES:
            return False
        touched = as_utc(self.updated_at)
        if touched is None:
            return True
        return (now or datetime.now(timezone.utc)) - touched >= timeout

    @property
    def is_edit(self) -> bool:
        return self.kind == SessionKind.EDIT.value

    @property
    def last_snapshot(self) -> Optional["GenerationSnapshot"]:
        return self.snapshots[-1] if self.snapshots else None

    def __repr__(self) -> str:
        return (
            f"<GenerationSession {self.id} status={self.status} "
            f"passes={self.passes_completed}/{self.passes_total}>"
        )


class GenerationSnapshot(Base):
    """
    Full HTML output of one completed pass. Immutable once written.

    `seq` is the sequence number of the pass_complete event, which is how the
    resume path decides whether the reader has already seen this snapshot.
    """

    __tablename__ = "generation_snapshots"
    __table_args__ = (
        UniqueConstraint("session_id", "pass_number", name="uq_snapshot_session_pass"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("generation_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pass_number: Mapped[int] = mapped_column(Integer, nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    session: Mapped["GenerationSession"] = relationship(
        "GenerationSession", back_populates="snapshots"
    )
