"""SQLite-backed storage for game states, progression, world shards and
theme interactions, plus JSON app settings and read-only theme presets.

Data layout:
  data/
    anomady.db           game_states, theme_progress, world_shards,
                         theme_interactions tables
    config.json          App settings (LLM connection, history limits)
  presets/
    themes/<id>.json     Localized theme name + base lore

Write helpers that take a `conn` run inside a caller-owned transaction
(see `transaction()`); a save commits session, progress, shard and
interaction writes together. Helpers without `conn` open their own.

Config: get_config() returns defaults merged with stored values.
update_config() merges llm_connection and history key-by-key.
"""

# Re-export all public symbols so `from anomady import storage` keeps working.

from .core import (  # noqa: F401
    connect,
    data_dir,
    db_path,
    init_storage,
    presets_dir,
    reader,
    themes_dir,
    transaction,
    utcnow,
)

from .sessions import (  # noqa: F401
    clear_compaction_flag,
    delete_session,
    get_session,
    insert_session,
    load_session,
    release_all_compaction_flags,
    update_session,
)

from .progress import (  # noqa: F401
    apply_boon,
    get_progress,
    load_progress,
    merge_progress,
)

from .shards import (  # noqa: F401
    delete_shard,
    list_shards,
    reset_shards,
    set_shard_active,
    shaped_themes_summary,
    unlock_shard,
)

from .interactions import (  # noqa: F401
    get_interaction,
    list_interactions,
    mark_not_playing,
    set_liked,
    touch_interaction,
)

from .themes import (  # noqa: F401
    get_theme,
    list_theme_ids,
)

from .config import (  # noqa: F401
    get_config,
    update_config,
)
