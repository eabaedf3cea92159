"""History buffer reconciliation and compaction sizing.

The client only ever sends its own view of the history. Length is the only
signal available for telling "the client is ahead of a compacted buffer"
apart from "the client started a new game", so the rules are, in order:

  1. No stored session         → adopt incoming, empty summary, base lore.
  2. incoming ≥ stored          → continuation, keep summary and lore.
  3. incoming ≤ recent_window   → reset, clear summary, base lore.
  4. anything else (a shrink past the recent window) → also a reset, but
     logged as an anomaly because the histories may simply have diverged.
"""

import logging
import math
from typing import Literal

from pydantic import BaseModel

from anomady.models import Session, Turn

logger = logging.getLogger(__name__)

SUMMARY_SEPARATOR = "\n\n---\n\n"

ReconcileKind = Literal["new", "continuation", "reset", "ambiguous_shrink"]


class Reconciliation(BaseModel):
    kind: ReconcileKind
    history: list[Turn]
    summary: str
    lore: str

    @property
    def is_reset(self) -> bool:
        return self.kind in ("reset", "ambiguous_shrink")


def reconcile(
    stored: Session | None,
    incoming: list[Turn],
    base_lore: str,
    recent_window: int,
) -> Reconciliation:
    """Decide how an incoming client history relates to the stored one."""
    if stored is None:
        return Reconciliation(kind="new", history=list(incoming), summary="", lore=base_lore)

    stored_len = len(stored.raw_history)
    incoming_len = len(incoming)

    if incoming_len >= stored_len:
        return Reconciliation(
            kind="continuation",
            history=list(incoming),
            summary=stored.cumulative_summary,
            lore=stored.world_lore,
        )

    if incoming_len <= recent_window:
        logger.debug(
            "session reset player=%s theme=%s stored=%d incoming=%d",
            stored.player_id, stored.theme_id, stored_len, incoming_len,
        )
        return Reconciliation(kind="reset", history=list(incoming), summary="", lore=base_lore)

    # TODO: compare turn contents against the stored tail to tell a real
    # restart from a client that fell out of sync, instead of resetting.
    logger.warning(
        "ambiguous history shrink treated as reset player=%s theme=%s stored=%d incoming=%d",
        stored.player_id, stored.theme_id, stored_len, incoming_len,
    )
    return Reconciliation(kind="ambiguous_shrink", history=list(incoming), summary="", lore=base_lore)


def needs_compaction(history_len: int, max_buffer: int) -> bool:
    return history_len >= max_buffer


def chunk_length(history_len: int, max_buffer: int, chunk_size: int) -> int:
    """How many of the oldest turns one compaction removes.

    Normally exactly chunk_size. A buffer so long that one chunk would not
    bring it under max_buffer gets the smallest multiple of chunk_size
    that does.
    """
    if history_len < max_buffer:
        return 0
    excess = history_len - max_buffer + 1
    return min(history_len, chunk_size * max(1, math.ceil(excess / chunk_size)))


def append_summary(summary: str, snippet: str) -> str:
    """Summaries are append-only; snippets are joined with a rule."""
    snippet = snippet.strip()
    if not snippet:
        return summary
    if not summary:
        return snippet
    return f"{summary}{SUMMARY_SEPARATOR}{snippet}"


def recent_tail(history: list[Turn], window: int) -> list[Turn]:
    """The most recent `window` turns, the only part returned to clients."""
    if window <= 0:
        return []
    return history[-window:]
