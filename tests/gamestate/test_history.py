import logging

import pytest

from anomady.gamestate import (
    SUMMARY_SEPARATOR,
    append_summary,
    chunk_length,
    recent_tail,
    reconcile,
)
from anomady.gamestate.history import needs_compaction
from anomady.models import Session, Turn

BASE = "base lore"


def turns(n: int) -> list[Turn]:
    return [Turn(role="player" if i % 2 == 0 else "narrator", content=f"t{i}") for i in range(n)]


def stored(n: int, summary="A", lore="L1") -> Session:
    return Session(
        player_id="p1", theme_id="grim_warden", raw_history=turns(n),
        cumulative_summary=summary, world_lore=lore,
    )


# ── reconcile ───────────────────────────────────────────────


def test_no_stored_session():
    rec = reconcile(None, turns(3), BASE, 10)
    assert rec.kind == "new"
    assert rec.summary == ""
    assert rec.lore == BASE
    assert len(rec.history) == 3


@pytest.mark.parametrize("stored_len,incoming_len", [(5, 5), (5, 6), (30, 31), (0, 0)])
def test_continuation_keeps_summary_and_lore(stored_len, incoming_len):
    rec = reconcile(stored(stored_len), turns(incoming_len), BASE, 10)
    assert rec.kind == "continuation"
    assert rec.summary == "A"
    assert rec.lore == "L1"
    assert len(rec.history) == incoming_len


@pytest.mark.parametrize("stored_len,incoming_len", [(5, 2), (30, 10), (11, 0)])
def test_short_incoming_is_reset(stored_len, incoming_len):
    rec = reconcile(stored(stored_len), turns(incoming_len), BASE, 10)
    assert rec.kind == "reset"
    assert rec.is_reset
    assert rec.summary == ""
    assert rec.lore == BASE
    assert len(rec.history) == incoming_len


def test_ambiguous_shrink_is_reset_and_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="anomady.gamestate.history"):
        rec = reconcile(stored(20), turns(15), BASE, 10)
    assert rec.kind == "ambiguous_shrink"
    assert rec.is_reset
    assert rec.summary == ""
    assert rec.lore == BASE
    assert "ambiguous history shrink" in caplog.text


# ── compaction sizing ───────────────────────────────────────


def test_needs_compaction_at_max_buffer():
    assert not needs_compaction(24, 25)
    assert needs_compaction(25, 25)


@pytest.mark.parametrize("length,expected", [
    (24, 0),
    (25, 15),
    (31, 15),
    (39, 15),
    (40, 30),
    (60, 45),
])
def test_chunk_length(length, expected):
    n = chunk_length(length, 25, 15)
    assert n == expected
    if n:
        assert length - n < 25


# ── summary & tail ──────────────────────────────────────────


def test_append_summary():
    assert append_summary("", "first") == "first"
    assert append_summary("A", "snippet") == f"A{SUMMARY_SEPARATOR}snippet"
    assert append_summary("A", "   ") == "A"
    assert SUMMARY_SEPARATOR == "\n\n---\n\n"


def test_recent_tail():
    history = turns(15)
    assert recent_tail(history, 10) == history[5:]
    assert recent_tail(history[:3], 10) == history[:3]
    assert recent_tail(history, 0) == []
