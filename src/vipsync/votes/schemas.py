"""Pydantic models for vote endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VoteWebhookPayload(BaseModel):
    """Top.gg webhook body."""

    user: str = Field(min_length=1)
    type: str | None = None
    query: Any = None
    bot: str | None = None
    is_weekend: bool = Field(default=False, alias="isWeekend")

    model_config = ConfigDict(populate_by_name=True)


class VoteWebhookResponse(BaseModel):
    success: bool = True
    ignored: bool = False


class VoteStatusResponse(BaseModel):
    has_voted: bool = Field(serialization_alias="hasVoted")
    has_collected: bool = Field(serialization_alias="hasCollected")
    type: str | None = None
    query: str | None = None
