"""Background compaction: write-back, degradation, crash recovery, races."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from anomady import storage
from anomady.errors import CollaboratorError
from anomady.gamestate import CompactionScheduler, delete_game_state, save_game_state, write_back
from anomady.llm import HttpLLM
from anomady.models import GameStatePayload, Session, Turn
from anomady.narrative import Summarizer

BASE_LORE = "The Warden keeps the last lantern lit at the edge of the Ashen March."


def history(n: int) -> list[dict]:
    return [
        {"role": "player" if i % 2 == 0 else "narrator", "content": f"turn {i}"} for i in range(n)
    ]


def payload(n: int) -> GameStatePayload:
    return GameStatePayload.model_validate({
        "theme_id": "grim_warden",
        "game_history": history(n),
        "dashboard_snapshot": {},
        "indicator_snapshot": {},
        "prompt_mode": "default",
        "narrative_language": "en",
    })


def seed(n: int, summary="A", lore="L1") -> None:
    session = Session(
        player_id="p1", theme_id="grim_warden",
        raw_history=[Turn.model_validate(t) for t in history(n)],
        cumulative_summary=summary, world_lore=lore,
        created_at="2024-01-01T00:00:00+00:00", updated_at="2024-01-01T00:00:00+00:00",
    )
    with storage.transaction() as conn:
        storage.insert_session(conn, session)


class FakeCollaborators:
    """Async stand-ins for the summarizer and lore evolver."""

    def __init__(self, snippets=None, lore=None, summary_error=None, lore_error=None):
        self.snippets = list(snippets or ["snippet"])
        self.lore = lore or "L2"
        self.summary_error = summary_error
        self.lore_error = lore_error
        self.summarized: list[list[dict]] = []
        self.evolved: list[tuple] = []
        self.gate: asyncio.Event | None = None

    async def summarize(self, turns, language):
        self.summarized.append(turns)
        if self.gate is not None:
            gate, self.gate = self.gate, None
            await gate.wait()
        if self.summary_error:
            raise self.summary_error
        return self.snippets.pop(0)

    async def evolve_lore(self, turns, current_lore, base_lore, theme_name, language):
        self.evolved.append((current_lore, base_lore, theme_name, language))
        if self.lore_error:
            raise self.lore_error
        return self.lore

    def scheduler(self) -> CompactionScheduler:
        return CompactionScheduler(self.summarize, self.evolve_lore)


# ── Happy path ──────────────────────────────────────────────


async def test_compaction_after_31st_turn():
    seed(30)
    fakes = FakeCollaborators()
    scheduler = fakes.scheduler()

    result = save_game_state("p1", payload(31), scheduler=scheduler)
    assert result.compaction_job is not None
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(stored.raw_history) == 16
    assert stored.raw_history[0].content == "turn 15"
    assert stored.cumulative_summary == "A\n\n---\n\nsnippet"
    assert stored.world_lore == "L2"
    assert stored.compaction_in_flight is False
    assert stored.compaction_job_id is None

    assert len(fakes.summarized[0]) == 15
    assert fakes.evolved == [("L1", BASE_LORE, "Grim Warden", "en")]


async def test_save_does_not_wait_for_compaction():
    fakes = FakeCollaborators()
    fakes.gate = asyncio.Event()
    scheduler = fakes.scheduler()

    save_game_state("p1", payload(25), scheduler=scheduler)
    await asyncio.sleep(0)
    assert scheduler.pending == 1
    assert storage.load_session("p1", "grim_warden").compaction_in_flight is True

    fakes.gate.set()
    await scheduler.drain()
    assert len(storage.load_session("p1", "grim_warden").raw_history) == 10


async def test_compaction_rearms_when_buffer_still_full():
    fakes = FakeCollaborators(snippets=["s1", "s2"])
    gate = fakes.gate = asyncio.Event()
    scheduler = fakes.scheduler()

    save_game_state("p1", payload(25), scheduler=scheduler)
    await asyncio.sleep(0)
    # The client keeps playing while the first chunk is being summarized
    save_game_state("p1", payload(40), scheduler=scheduler)
    gate.set()
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(fakes.summarized) == 2
    assert len(stored.raw_history) == 10
    assert stored.raw_history[0].content == "turn 30"
    assert stored.cumulative_summary == "s1\n\n---\n\ns2"
    assert stored.compaction_in_flight is False


async def test_oversized_buffer_uses_multiple_chunks():
    fakes = FakeCollaborators()
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(60), scheduler=scheduler)
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(fakes.summarized[0]) == 45
    assert len(stored.raw_history) == 15
    assert len(stored.raw_history) < 25


# ── Collaborator failures ───────────────────────────────────


async def test_summarizer_failure_keeps_summary():
    seed(30)
    fakes = FakeCollaborators(summary_error=CollaboratorError("down"))
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(31), scheduler=scheduler)
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert stored.cumulative_summary == "A"
    assert stored.world_lore == "L2"
    assert len(stored.raw_history) == 16
    assert stored.compaction_in_flight is False


async def test_lore_failure_keeps_lore():
    seed(30)
    fakes = FakeCollaborators(lore_error=CollaboratorError("down"))
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(31), scheduler=scheduler)
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert stored.cumulative_summary == "A\n\n---\n\nsnippet"
    assert stored.world_lore == "L1"
    assert stored.compaction_in_flight is False


async def test_both_collaborators_failing_keeps_history():
    seed(30)
    fakes = FakeCollaborators(
        summary_error=CollaboratorError("down"), lore_error=CollaboratorError("down"),
    )
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(31), scheduler=scheduler)
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(stored.raw_history) == 31
    assert stored.cumulative_summary == "A"
    assert stored.world_lore == "L1"
    assert stored.compaction_in_flight is False


# ── Crash & recovery ────────────────────────────────────────


async def test_crash_clears_flag():
    seed(30)
    fakes = FakeCollaborators(summary_error=RuntimeError("segfault in summarizer"))
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(31), scheduler=scheduler)
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert stored.compaction_in_flight is False
    assert stored.compaction_job_id is None
    assert len(stored.raw_history) == 31

    # The session can be compacted again afterwards
    fakes.summary_error = None
    result = save_game_state("p1", payload(32), scheduler=scheduler)
    assert result.compaction_job is not None
    await scheduler.drain()
    assert len(storage.load_session("p1", "grim_warden").raw_history) == 17


async def test_cancelled_compaction_clears_flag():
    fakes = FakeCollaborators()
    fakes.gate = asyncio.Event()
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(25), scheduler=scheduler)
    await asyncio.sleep(0)

    for task in list(scheduler._tasks):
        task.cancel()
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert stored.compaction_in_flight is False
    assert len(stored.raw_history) == 25


async def test_failed_recovery_is_critical_not_fatal(monkeypatch, caplog):
    seed(30)
    fakes = FakeCollaborators(summary_error=RuntimeError("boom"))
    scheduler = fakes.scheduler()
    save_game_state("p1", payload(31), scheduler=scheduler)

    def broken(*args):
        raise OSError("database unavailable")

    monkeypatch.setattr(storage, "clear_compaction_flag", broken)
    await scheduler.drain()
    assert any(r.levelname == "CRITICAL" for r in caplog.records)

    # Ordinary saves still work; only new compactions are blocked
    monkeypatch.undo()
    result = save_game_state("p1", payload(33), scheduler=scheduler)
    assert result.compaction_job is None
    assert len(storage.load_session("p1", "grim_warden").raw_history) == 33


def test_startup_release_unsticks_session():
    save_game_state("p1", payload(25))
    assert storage.release_all_compaction_flags() == 1
    assert storage.load_session("p1", "grim_warden").compaction_in_flight is False


# ── Races with the client ───────────────────────────────────


async def test_reset_during_compaction_is_not_overwritten():
    fakes = FakeCollaborators()
    gate = fakes.gate = asyncio.Event()
    scheduler = fakes.scheduler()

    save_game_state("p1", payload(25), scheduler=scheduler)
    await asyncio.sleep(0)
    result = save_game_state("p1", payload(2), scheduler=scheduler)
    assert result.reconciliation == "reset"
    gate.set()
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(stored.raw_history) == 2
    assert stored.cumulative_summary == ""
    assert stored.world_lore == BASE_LORE
    assert stored.compaction_in_flight is False


def test_write_back_ignores_foreign_job():
    result = save_game_state("p1", payload(25))
    job = result.compaction_job.model_copy(update={"job_id": "someone-else"})
    assert write_back(job, "snippet", "L9") is None

    stored = storage.load_session("p1", "grim_warden")
    assert len(stored.raw_history) == 25
    assert stored.compaction_in_flight is True
    assert stored.compaction_job_id == result.compaction_job.job_id


def test_write_back_after_delete_is_noop():
    result = save_game_state("p1", payload(25))
    delete_game_state("p1", "grim_warden")
    assert write_back(result.compaction_job, "snippet", "L9") is None
    assert storage.load_session("p1", "grim_warden") is None


async def test_ambiguous_shrink_revokes_running_compaction():
    seed(24, summary="OLD", lore="OLD-LORE")
    fakes = FakeCollaborators()
    gate = fakes.gate = asyncio.Event()
    scheduler = fakes.scheduler()

    save_game_state("p1", payload(25), scheduler=scheduler)
    await asyncio.sleep(0)
    # Same first 15 turns as the armed chunk, but a shrink past the recent window
    result = save_game_state("p1", payload(20), scheduler=scheduler)
    assert result.reconciliation == "ambiguous_shrink"
    assert storage.load_session("p1", "grim_warden").compaction_job_id is None
    gate.set()
    await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert len(stored.raw_history) == 20
    assert stored.cumulative_summary == ""
    assert stored.world_lore == BASE_LORE
    assert stored.compaction_in_flight is False


# ── Real summarizer over a failing transport ────────────────


def _broken_json_response() -> MagicMock:
    resp = MagicMock()
    resp.status_code = 200
    resp.raise_for_status = MagicMock()
    resp.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
    return resp


@pytest.mark.parametrize("post", [
    AsyncMock(side_effect=httpx.ReadError("connection reset")),
    AsyncMock(return_value=_broken_json_response()),
])
async def test_summarizer_transport_failure_degrades(post):
    summarize = Summarizer(HttpLLM(provider_url="http://llm.local", model="m"))

    async def evolve_lore(turns, current_lore, base_lore, theme_name, language):
        return "EVOLVED"

    scheduler = CompactionScheduler(summarize, evolve_lore)
    with patch("httpx.AsyncClient.post", post):
        save_game_state("p1", payload(25), scheduler=scheduler)
        await scheduler.drain()

    stored = storage.load_session("p1", "grim_warden")
    assert stored.world_lore == "EVOLVED"
    assert stored.cumulative_summary == ""
    assert len(stored.raw_history) == 10
    assert stored.compaction_in_flight is False
