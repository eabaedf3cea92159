"""Core domain models.

Storage functions return these types and the game state engine operates on
them. Pydantic is used for validation and serialisation at every data
boundary; request bodies live in anomady.routes.models.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

TurnRole = Literal["player", "narrator"]

STAT_BONUSES = (
    "max_integrity_bonus",
    "max_willpower_bonus",
    "aptitude_bonus",
    "resilience_bonus",
)


class Turn(BaseModel):
    """One exchange unit in the conversation history."""

    role: TurnRole
    content: str


class Session(BaseModel):
    """Persisted game state of one player in one theme."""

    player_id: str
    theme_id: str
    player_identifier: str = ""
    raw_history: list[Turn] = Field(default_factory=list)
    cumulative_summary: str = ""
    world_lore: str = ""
    prompt_mode: str = "initial"
    narrative_language: str = "en"
    dashboard_snapshot: dict[str, Any] = Field(default_factory=dict)
    indicator_snapshot: dict[str, Any] = Field(default_factory=dict)
    suggested_actions: list[str] = Field(default_factory=list)
    panel_states: dict[str, Any] = Field(default_factory=dict)
    pending_choice: bool = False
    compaction_in_flight: bool = False
    compaction_job_id: str | None = None
    model_used: str = ""
    created_at: str = ""
    updated_at: str = ""


class ProgressRecord(BaseModel):
    """Leveling state of one player in one theme. Survives session resets."""

    player_id: str
    theme_id: str
    level: int = Field(default=1, ge=1)
    current_xp: int = Field(default=0, ge=0)
    max_integrity_bonus: int = 0
    max_willpower_bonus: int = 0
    aptitude_bonus: int = 0
    resilience_bonus: int = 0
    acquired_trait_keys: list[str] = Field(default_factory=list)
    updated_at: str = ""


class WorldShard(BaseModel):
    """An unlocked lore fragment. Immutable apart from its active toggle."""

    id: int
    player_id: str
    theme_id: str
    shard_key: str
    title: str
    content: str
    unlock_condition: str
    is_active_for_new_games: bool = True
    created_at: str = ""


class ThemeInteraction(BaseModel):
    player_id: str
    theme_id: str
    is_playing: bool = False
    is_liked: bool = False
    last_played_at: str | None = None


class ThemeData(BaseModel):
    """Localized theme facts needed by the game state engine."""

    theme_id: str
    name: str
    base_lore: str = ""


# ---------------------------------------------------------------------------
# Save payload
# ---------------------------------------------------------------------------

class ProgressSnapshot(BaseModel):
    """Authoritative progression state sent by the client."""

    level: int = Field(ge=1)
    current_xp: int = Field(ge=0)
    acquired_trait_keys: list[str] = Field(default_factory=list)
    max_integrity_bonus: int | None = Field(default=None, ge=0)
    max_willpower_bonus: int | None = Field(default=None, ge=0)
    aptitude_bonus: int | None = Field(default=None, ge=0)
    resilience_bonus: int | None = Field(default=None, ge=0)


class LoreUnlock(BaseModel):
    """A world shard proposed by the narrator this turn.

    Accepts the narrator's own field names (key_suggestion,
    unlock_condition_description) as well as the short ones. Completeness
    is checked by the shard registry, not here.
    """

    key: str = Field(default="", validation_alias=AliasChoices("key", "key_suggestion"))
    title: str = ""
    content: str = ""
    unlock_condition: str = Field(
        default="",
        validation_alias=AliasChoices("unlock_condition", "unlock_condition_description"),
    )


class GameStatePayload(BaseModel):
    """Everything the client sends on save."""

    theme_id: str = Field(min_length=1)
    player_identifier: str = ""
    game_history: list[Turn]
    dashboard_snapshot: dict[str, Any]
    indicator_snapshot: dict[str, Any]
    prompt_mode: str = Field(min_length=1)
    narrative_language: str = Field(min_length=1)
    suggested_actions: list[str] = Field(default_factory=list)
    panel_states: dict[str, Any] = Field(default_factory=dict)
    pending_choice: bool = False
    model_name: str | None = None
    progress: ProgressSnapshot | None = None
    xp_delta: int | None = Field(default=None, ge=0)
    new_lore_unlock: LoreUnlock | None = None

    @field_validator("theme_id", "prompt_mode", "narrative_language")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value
