"""Vote endpoints: platform webhook and reward status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.database import get_session
from vipsync.dependencies import get_vote_service
from vipsync.votes.schemas import VoteStatusResponse, VoteWebhookPayload, VoteWebhookResponse
from vipsync.votes.service import VoteEvent, VoteService

router = APIRouter(prefix="/api/v1/vote", tags=["Votes"])


async def authorized_vote_service(
    authorization: str | None = Header(default=None),
    service: VoteService = Depends(get_vote_service),
) -> VoteService:
    """Reject callers without the shared secret before the body is read."""
    service.authorize(authorization)
    return service


@router.post("/webhook", response_model=VoteWebhookResponse)
async def vote_webhook(
    request: Request,
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_session),
    service: VoteService = Depends(authorized_vote_service),
):
    try:
        body = VoteWebhookPayload.model_validate_json(await request.body())
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    event = VoteEvent(
        user_id=body.user,
        kind=body.type,
        query=body.query,
        bot=body.bot,
        is_weekend=body.is_weekend,
    )
    result = await service.ingest(db, authorization, event)
    return VoteWebhookResponse(ignored=result.ignored)


@router.get("/status", response_model=VoteStatusResponse, response_model_by_alias=True)
async def vote_status(
    id: str = Query(min_length=1),
    db: AsyncSession = Depends(get_session),
    service: VoteService = Depends(get_vote_service),
):
    """Vote state for a user. Reading an uncollected vote collects it."""
    status = await service.get_status(db, id)
    return VoteStatusResponse(
        has_voted=status.has_voted,
        has_collected=status.has_collected,
        type=status.kind,
        query=status.query,
    )
