import pytest

from anomady import storage
from anomady.errors import ConflictError
from anomady.models import Session, Turn


def _session(player="p1", theme="grim_warden", turns=3, **kw) -> Session:
    history = [
        Turn(role="player" if i % 2 == 0 else "narrator", content=f"turn {i}") for i in range(turns)
    ]
    return Session(
        player_id=player, theme_id=theme, raw_history=history,
        created_at="2024-01-01T00:00:00+00:00", updated_at="2024-01-01T00:00:00+00:00", **kw,
    )


def test_insert_and_load_round_trip():
    s = _session(
        player_identifier="Vex", cumulative_summary="A", world_lore="L1",
        dashboard_snapshot={"hp": 5}, suggested_actions=["look"], pending_choice=True,
    )
    with storage.transaction() as conn:
        storage.insert_session(conn, s)
    loaded = storage.load_session("p1", "grim_warden")
    assert loaded == s


def test_load_missing_returns_none():
    assert storage.load_session("p1", "nope") is None


def test_insert_duplicate_raises_conflict():
    with storage.transaction() as conn:
        storage.insert_session(conn, _session())
    with pytest.raises(ConflictError):
        with storage.transaction() as conn:
            storage.insert_session(conn, _session())


def test_update_keeps_created_at():
    with storage.transaction() as conn:
        storage.insert_session(conn, _session())
    changed = _session(turns=5, cumulative_summary="B")
    changed.created_at = "2030-01-01T00:00:00+00:00"
    with storage.transaction() as conn:
        storage.update_session(conn, changed)
    loaded = storage.load_session("p1", "grim_warden")
    assert len(loaded.raw_history) == 5
    assert loaded.cumulative_summary == "B"
    assert loaded.created_at == "2024-01-01T00:00:00+00:00"


def test_delete_session():
    with storage.transaction() as conn:
        storage.insert_session(conn, _session())
    with storage.transaction() as conn:
        assert storage.delete_session(conn, "p1", "grim_warden") is True
        assert storage.delete_session(conn, "p1", "grim_warden") is False
    assert storage.load_session("p1", "grim_warden") is None


# ── Compaction flag ─────────────────────────────────────────


def test_clear_compaction_flag_requires_matching_job():
    with storage.transaction() as conn:
        storage.insert_session(
            conn, _session(compaction_in_flight=True, compaction_job_id="job-1"),
        )
    assert storage.clear_compaction_flag("p1", "grim_warden", "job-2") is False
    assert storage.load_session("p1", "grim_warden").compaction_in_flight is True

    assert storage.clear_compaction_flag("p1", "grim_warden", "job-1") is True
    loaded = storage.load_session("p1", "grim_warden")
    assert loaded.compaction_in_flight is False
    assert loaded.compaction_job_id is None


def test_release_all_compaction_flags():
    with storage.transaction() as conn:
        storage.insert_session(conn, _session(compaction_in_flight=True, compaction_job_id="a"))
        storage.insert_session(
            conn, _session(theme="salt_reavers", compaction_in_flight=True, compaction_job_id="b"),
        )
        storage.insert_session(conn, _session(player="p2"))
    assert storage.release_all_compaction_flags() == 2
    assert storage.load_session("p1", "grim_warden").compaction_in_flight is False
    assert storage.load_session("p1", "salt_reavers").compaction_in_flight is False
