"""
Edit router - follow-up changes to a project's existing page.

Endpoints:
- POST /edit    start an edit session (202); stream it at the returned
                stream_url like any generation

A project without a page, or an instruction asking to start over, gets a
full generation instead; `kind` in the response tells which one started.
Edits share the generation rate limit.
"""

import logging

from fastapi import APIRouter, Depends, status

from app.deps import enforce_generate_rate_limit, get_generation_service
from app.models.account import Account
from app.routers.generation import generate_response
from app.schemas.generation import EditRequest, GenerateResponse
from app.services.generation_service import GenerationService

logger = logging.getLogger("genui.routers.edit")

router = APIRouter(prefix="/edit", tags=["edit"])


@router.post(
    "",
    response_model=GenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Edit the current page",
)
async def start_edit(
    request: EditRequest,
    account: Account = Depends(enforce_generate_rate_limit),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Validate, sanitize, charge and create a PENDING edit session.

    The edit runs when the client opens `stream_url`; its pass_complete event
    carries the edited page.
    """
    started = await service.start_edit(
        account_id=account.id,
        tier=account.tier,
        project_id=request.project_id,
        instruction=request.instruction,
    )
    logger.debug(f"Edit request on project {request.project_id}: {started.kind}")
    return generate_response(started)
