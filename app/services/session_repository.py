"""
Session Repository - durable state of generation sessions.

Each method runs in its own short transaction. Loaded sessions come back
detached with their snapshots already loaded, so the orchestrator can read
them across awaits without holding a database session open for the length of
a stream.

Status changes that race (claiming a session for a reader, cancelling,
finishing) go through transition(), a conditional UPDATE on the current
status, so only one caller wins.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.db.session import SessionLocal
from app.models.generation_session import (
    LIVE_STATUSES,
    GenerationSession,
    GenerationSnapshot,
    SessionStatus,
)

# Statuses a session can still leave on its own
UNFINISHED_STATUSES = LIVE_STATUSES | {
    SessionStatus.PENDING.value,
    SessionStatus.INTERRUPTED.value,
}


class SessionRepository:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create(self, **fields: Any) -> GenerationSession:
        with self._session_factory() as db:
            record = GenerationSession(**fields)
            db.add(record)
            db.commit()
            session_id = record.id
        return self.load(session_id)

    def load(self, session_id: uuid.UUID) -> Optional[GenerationSession]:
        with self._session_factory() as db:
            return db.scalar(
                select(GenerationSession)
                .where(GenerationSession.id == session_id)
                .options(selectinload(GenerationSession.snapshots))
                .execution_options(populate_existing=True)
            )

    def load_owned(
        self, session_id: uuid.UUID, account_id: uuid.UUID
    ) -> Optional[GenerationSession]:
        record = self.load(session_id)
        if record is None or record.account_id != account_id:
            return None
        return record

    def unfinished(
        self,
        project_id: Optional[uuid.UUID] = None,
        account_id: Optional[uuid.UUID] = None,
    ) -> List[GenerationSession]:
        """
        Sessions not yet COMPLETE or FAILED, oldest first.

        INTERRUPTED sessions are returned whether or not their resume window
        is still open; callers decide with is_terminal().
        """
        query = (
            select(GenerationSession)
            .where(GenerationSession.status.in_(sorted(UNFINISHED_STATUSES)))
            .options(selectinload(GenerationSession.snapshots))
            .order_by(GenerationSession.created_at)
        )
        if project_id is not None:
            query = query.where(GenerationSession.project_id == project_id)
        if account_id is not None:
            query = query.where(GenerationSession.account_id == account_id)
        with self._session_factory() as db:
            return list(db.scalars(query).all())

    def update(self, session_id: uuid.UUID, **values: Any) -> None:
        with self._session_factory() as db:
            db.execute(
                update(GenerationSession)
                .where(GenerationSession.id == session_id)
                .values(updated_at=datetime.now(timezone.utc), **values)
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def transition(
        self, session_id: uuid.UUID, from_statuses: Iterable[str], **values: Any
    ) -> bool:
        """
        Apply `values` only if the session is currently in one of `from_statuses`.

        Returns:
            True if this caller made the change
        """
        with self._session_factory() as db:
            result = db.execute(
                update(GenerationSession)
                .where(
                    GenerationSession.id == session_id,
                    GenerationSession.status.in_(list(from_statuses)),
                )
                .values(updated_at=datetime.now(timezone.utc), **values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1

    def add_snapshot(
        self, session_id: uuid.UUID, pass_number: int, html: str, seq: int
    ) -> None:
        """Persist a pass result and advance passes_completed in one transaction."""
        with self._session_factory() as db:
            db.add(
                GenerationSnapshot(
                    session_id=session_id, pass_number=pass_number, html=html, seq=seq
                )
            )
            db.execute(
                update(GenerationSession)
                .where(GenerationSession.id == session_id)
                .values(
                    passes_completed=pass_number,
                    last_seq=seq,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()


session_repository = SessionRepository()
