"""Read-only theme data from presets/themes/<theme_id>.json.

File format:
  {"name": {"en": "Grim Warden", "cs": "..."},
   "lore": {"en": "Base lore text...", "cs": "..."}}

Lookups fall back to English, then to the theme id (name) or "" (lore).
"""

import json
from pathlib import Path

from anomady.models import ThemeData

from .core import themes_dir

FALLBACK_LANGUAGE = "en"


def _theme_path(theme_id: str) -> Path:
    return themes_dir() / f"{theme_id}.json"


def _localized(values: dict[str, str] | str | None, language: str) -> str:
    if isinstance(values, str):
        return values
    if not values:
        return ""
    return values.get(language) or values.get(FALLBACK_LANGUAGE) or ""


def get_theme(theme_id: str, language: str = FALLBACK_LANGUAGE) -> ThemeData | None:
    """Load a theme's display name and base lore. None if the theme is unknown."""
    if not theme_id or "/" in theme_id or "\\" in theme_id or theme_id.startswith("."):
        return None
    path = _theme_path(theme_id)
    if not path.is_file():
        return None
    data = json.loads(path.read_text())
    return ThemeData(
        theme_id=theme_id,
        name=_localized(data.get("name"), language) or theme_id,
        base_lore=_localized(data.get("lore"), language),
    )


def list_theme_ids() -> list[str]:
    if not themes_dir().is_dir():
        return []
    return sorted(p.stem for p in themes_dir().glob("*.json"))
