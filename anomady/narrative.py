"""Summarizer and lore evolver, the two LLM collaborators of compaction.

Both render a Handlebars prompt, call the LLM under their own stage name
and return plain text. Any failure (prompt, transport, empty output) is
raised as CollaboratorError; compaction decides what to keep instead.
"""

import logging
from typing import Any

from anomady.errors import CollaboratorError
from anomady.llm import LLM, LLMError
from anomady.prompts import PromptError, build_context, render_prompt

logger = logging.getLogger(__name__)

DEFAULT_SUMMARIZER_PROMPT = """\
You are the chronicler of an interactive text adventure.

## Recent Events
{{#each turns}}
{{#if is_player}}> {{{content}}}{{else}}{{{content}}}{{/if}}

{{/each}}
Summarize these events in a single compact paragraph written in the third \
person. Keep names, places, promises, injuries, items gained or lost and \
unresolved threats. Leave out dice rolls, UI details and anything the story \
has already moved past. Write the summary in the language with code \
"{{language}}". Output the summary text only.\
"""

DEFAULT_LORE_EVOLVER_PROMPT = """\
You maintain the living world document of the text adventure "{{{theme_name}}}".

## Original World Lore
{{{lore.base}}}

## Current World Lore
{{{lore.current}}}

## Recent Events
{{{transcript}}}

Rewrite the Current World Lore so it reflects lasting consequences of the \
Recent Events: changed factions, discovered places, fallen or risen powers, \
revealed secrets. Do not narrate the events themselves and do not mention \
the player's personal inventory. Keep the tone of the Original World Lore \
and keep the document under 400 words. Write in the language with code \
"{{language}}". Output the full updated lore document only.\
"""


def _clean(text: str) -> str:
    text = text.strip()
    # Models like to wrap prose in code fences
    if text.startswith("```") and text.endswith("```"):
        text = text.strip("`").strip()
        first, _, rest = text.partition("\n")
        if rest and first.isalpha():
            text = rest.strip()
    return text


async def _generate(llm: LLM, stage: str, template: str, ctx: dict[str, Any]) -> str:
    try:
        prompt = render_prompt(template, ctx)
    except PromptError as e:
        raise CollaboratorError(f"{stage} prompt failed: {e}") from e
    try:
        raw = await llm(stage, prompt)
    except LLMError as e:
        raise CollaboratorError(f"{stage} call failed: {e}") from e
    text = _clean(raw or "")
    if not text:
        raise CollaboratorError(f"{stage} returned empty output")
    return text


class Summarizer:
    """summarize(turns, language) -> prose snippet."""

    def __init__(self, llm: LLM, template: str = DEFAULT_SUMMARIZER_PROMPT) -> None:
        self._llm = llm
        self._template = template

    async def __call__(self, turns: list[dict[str, Any]], language: str) -> str:
        ctx = build_context(turns, language)
        return await _generate(self._llm, "summarizer", self._template, ctx)


class LoreEvolver:
    """evolve(turns, current_lore, base_lore, theme_name, language) -> lore."""

    def __init__(self, llm: LLM, template: str = DEFAULT_LORE_EVOLVER_PROMPT) -> None:
        self._llm = llm
        self._template = template

    async def __call__(
        self,
        turns: list[dict[str, Any]],
        current_lore: str,
        base_lore: str,
        theme_name: str,
        language: str,
    ) -> str:
        ctx = build_context(
            turns, language,
            theme_name=theme_name,
            current_lore=current_lore or base_lore,
            base_lore=base_lore,
        )
        return await _generate(self._llm, "lore_evolver", self._template, ctx)
