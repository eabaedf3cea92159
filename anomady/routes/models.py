"""Pydantic request bodies for API endpoints.

The save payload is GameStatePayload in anomady.models; it is shared with
the game state engine.
"""

from pydantic import BaseModel, Field


class BoonBody(BaseModel):
    attribute: str
    value: int


class ShardStatusBody(BaseModel):
    is_active_for_new_games: bool


class LikeBody(BaseModel):
    is_liked: bool


class NarrationBody(BaseModel):
    prompt: str = Field(min_length=1)
    model_name: str | None = None
