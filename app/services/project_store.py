"""
Project Store - the generation core's narrow view of projects.

Reads the committed document and conversation history, writes the committed
document after every pass, and records the finished exchange. Project CRUD
lives elsewhere.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import ErrorCode, GenerationError
from app.db.session import SessionLocal
from app.models.project import Project

logger = logging.getLogger("genui.services.project_store")

# Assistant turn recorded in history once a generation completes. The
# document itself travels as the CURRENT HTML context block instead.
ASSISTANT_TURN = "Generated an updated version of the page."


@dataclass(frozen=True)
class ProjectView:
    id: uuid.UUID
    account_id: uuid.UUID
    html: Optional[str]
    conversation_history: List[Dict[str, str]] = field(default_factory=list)


class ProjectStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def get(self, project_id: uuid.UUID, account_id: uuid.UUID) -> ProjectView:
        """
        Raises:
            GenerationError(PROJECT_NOT_FOUND): missing, or owned by someone else
        """
        with self._session_factory() as db:
            project = db.scalar(
                select(Project).where(Project.id == project_id, Project.account_id == account_id)
            )
            if project is None:
                raise GenerationError(ErrorCode.PROJECT_NOT_FOUND, f"project {project_id}")
            return ProjectView(
                id=project.id,
                account_id=project.account_id,
                html=project.html,
                conversation_history=list(project.conversation_history or []),
            )

    def commit_html(self, project_id: uuid.UUID, html: str) -> None:
        with self._session_factory() as db:
            db.execute(update(Project).where(Project.id == project_id).values(html=html))
            db.commit()
        logger.debug(f"Committed {len(html)} chars to project {project_id}")

    def record_exchange(self, project_id: uuid.UUID, user_text: str) -> None:
        """Append the finished request and a short assistant turn to the history."""
        with self._session_factory() as db:
            project = db.get(Project, project_id)
            if project is None:
                return
            history = list(project.conversation_history or [])
            history.append({"role": "user", "content": user_text})
            history.append({"role": "assistant", "content": ASSISTANT_TURN})
            # Reassign so SQLAlchemy sees the JSON column change
            project.conversation_history = history
            db.commit()


project_store = ProjectStore()
