"""Game state engine: history reconciliation, atomic saves, compaction.

Save flow for one (player, theme):
  1. Validate the payload (shape via pydantic, history cap, known theme).
  2. In one transaction:
     a. Reconcile the incoming history against the stored one
        (new / continuation / reset / ambiguous shrink, see history.py).
     b. Arm compaction if the buffer reached max_buffer and none is in
        flight: set compaction_in_flight and a fresh compaction_job_id.
     c. Upsert the session row.
     d. Merge progression (snapshot > XP delta > zeroed default).
     e. Unlock the proposed world shard (duplicates are no-ops).
     f. Touch the theme interaction (is_playing, last_played_at).
  3. After commit, hand the armed job to the CompactionScheduler and
     return without waiting.

Compaction (compaction.py) summarizes the oldest chunk, appends the
snippet to the cumulative summary, replaces the world lore with the
evolved document and drops the chunk from the buffer in a separate,
later transaction. A supervisor clears the in-flight flag if it crashes.

Defaults (app settings, history block):
  max_buffer          25   compaction trigger
  chunk_size          15   turns removed per compaction
  recent_window       10   reset window and size of returned history
  max_history_turns  200   hard payload cap (turns)
  max_turn_chars   20000   hard payload cap (characters per turn)
"""

from .compaction import (  # noqa: F401
    CompactionJob,
    CompactionScheduler,
    arm_job,
    write_back,
)
from .core import (  # noqa: F401
    LoadResult,
    SaveResult,
    delete_game_state,
    load_game_state,
    save_game_state,
    session_view,
)
from .history import (  # noqa: F401
    SUMMARY_SEPARATOR,
    Reconciliation,
    append_summary,
    chunk_length,
    reconcile,
    recent_tail,
)
