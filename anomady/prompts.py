"""Handlebars prompt rendering for the summarizer and lore evolver."""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(
    turns: list[dict[str, Any]],
    language: str,
    theme_name: str | None = None,
    current_lore: str | None = None,
    base_lore: str | None = None,
) -> dict[str, Any]:
    """Assemble template variables for a chunk of history.

    Each turn gets is_player / is_narrator flags for {{#if}} branches, and
    a pre-formatted transcript is provided as `transcript` (> for player,
    bare for narrator).
    """
    enriched = []
    transcript_parts: list[str] = []
    for turn in turns:
        enriched.append({
            "role": turn["role"],
            "content": turn["content"],
            "is_player": turn["role"] == "player",
            "is_narrator": turn["role"] == "narrator",
        })
        if turn["role"] == "player":
            transcript_parts.append(f"> {turn['content']}")
        else:
            transcript_parts.append(turn["content"])
        transcript_parts.append("")

    ctx: dict[str, Any] = {
        "turns": enriched,
        "transcript": "\n".join(transcript_parts).strip(),
        "language": language,
    }
    if theme_name is not None:
        ctx["theme_name"] = theme_name
    lore: dict[str, str] = {}
    if current_lore is not None:
        lore["current"] = current_lore
    if base_lore is not None:
        lore["base"] = base_lore
    if lore:
        ctx["lore"] = lore
    return ctx
