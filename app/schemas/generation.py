"""
Pydantic schemas for the generation API.

Request bodies reject unknown keys (extra="forbid"). Prompt length and
emptiness are NOT checked here: the generation core owns those rules and
answers with EMPTY_PROMPT / PROMPT_TOO_LONG instead of a generic 422.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============== REQUESTS ==============

class ConversationMessage(BaseModel):
    """One prior turn of the project conversation."""
    model_config = ConfigDict(extra="forbid")

    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=100_000)


class GenerateRequest(BaseModel):
    """Body of POST /generate."""
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "project_id": "7d0f4c1e-2b9a-4a53-9d55-0c7d3c3b6f10",
                "prompt": "A landing page for a specialty coffee roaster",
                "conversation_history": [],
            }
        },
    )

    project_id: uuid.UUID
    prompt: str
    # None means "use the history stored on the project"
    conversation_history: Optional[List[ConversationMessage]] = None


class EditRequest(BaseModel):
    """Body of POST /edit."""
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "project_id": "7d0f4c1e-2b9a-4a53-9d55-0c7d3c3b6f10",
                "instruction": "Make the hero headline bigger",
            }
        },
    )

    project_id: uuid.UUID
    instruction: str


# ============== RESPONSES ==============

class GenerateResponse(BaseModel):
    """202 response: the session exists and is charged; attach to stream_url."""
    session_id: uuid.UUID
    kind: str = "GENERATE"
    status: str
    mode: str
    passes_total: int
    credit_cost: int
    new_balance: int
    stream_url: str


class SnapshotInfo(BaseModel):
    pass_number: int
    seq: int
    html_length: int


class SessionResponse(BaseModel):
    """GET /generate/{session_id}. No prompts or HTML bodies."""
    session_id: uuid.UUID
    project_id: uuid.UUID
    kind: str = "GENERATE"
    status: str
    tier: str
    mode: str
    credit_cost: int
    passes_total: int
    passes_completed: int
    error_code: Optional[str] = None
    pass_error_code: Optional[str] = None
    refunded: bool
    last_seq: int
    resumable: bool
    resume_deadline: Optional[datetime] = None
    open_deadline: Optional[datetime] = None
    snapshots: List[SnapshotInfo] = []
    created_at: datetime
    completed_at: Optional[datetime] = None


class CancelResponse(BaseModel):
    session_id: uuid.UUID
    status: str
    cancel_requested: bool = True
