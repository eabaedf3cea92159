"""Background history compaction.

A save that leaves the buffer at or above max_buffer arms compaction in the
same transaction (compaction_in_flight = 1 plus a fresh compaction_job_id)
and hands a CompactionJob to the CompactionScheduler once committed. The
save never waits for it.

The job summarizes the oldest chunk, evolves the world lore, and writes
back in a separate transaction:
  - only if the row still carries the job's id (otherwise a newer owner
    or a deleted/recreated session; nothing is touched),
  - dropping the chunk only if the stored history still starts with it
    (otherwise the session was reset meanwhile; only the flag is cleared),
  - re-arming itself when the remaining buffer is still too long.

Every job runs under a supervisor: if it raises or is cancelled before
its write-back, the supervisor clears the flag (best effort). A failed
recovery is logged as critical; ordinary saves keep working, only new
compactions for that session are blocked.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from anomady import storage
from anomady.errors import CollaboratorError
from anomady.models import Turn

from .history import append_summary, chunk_length, needs_compaction

logger = logging.getLogger(__name__)

SummarizeFn = Callable[[list[dict[str, Any]], str], Awaitable[str]]
EvolveLoreFn = Callable[[list[dict[str, Any]], str, str, str, str], Awaitable[str]]


def new_job_id() -> str:
    return uuid.uuid4().hex


class CompactionJob(BaseModel):
    """Snapshot of everything a compaction needs, taken at arm time."""

    job_id: str = Field(default_factory=new_job_id)
    player_id: str
    theme_id: str
    chunk: list[Turn]
    summary: str = ""
    lore: str = ""
    base_lore: str = ""
    theme_name: str = ""
    language: str = "en"


def arm_job(
    player_id: str,
    theme_id: str,
    history: list[Turn],
    summary: str,
    lore: str,
    base_lore: str,
    theme_name: str,
    language: str,
    max_buffer: int,
    chunk_size: int,
) -> CompactionJob | None:
    """Build a job for `history` if it is long enough to need one."""
    if not needs_compaction(len(history), max_buffer):
        return None
    n = chunk_length(len(history), max_buffer, chunk_size)
    return CompactionJob(
        player_id=player_id,
        theme_id=theme_id,
        chunk=history[:n],
        summary=summary,
        lore=lore,
        base_lore=base_lore,
        theme_name=theme_name,
        language=language,
    )


def write_back(job: CompactionJob, snippet: str | None, lore: str | None) -> CompactionJob | None:
    """Commit a finished compaction. Returns a follow-up job if re-armed."""
    history_cfg = storage.get_config()["history"]
    with storage.transaction() as conn:
        session = storage.get_session(conn, job.player_id, job.theme_id)
        if session is None or session.compaction_job_id != job.job_id:
            logger.info(
                "compaction %s discarded, session player=%s theme=%s changed owner",
                job.job_id, job.player_id, job.theme_id,
            )
            return None

        n = len(job.chunk)
        if session.raw_history[:n] != job.chunk:
            logger.info(
                "compaction %s discarded, history of player=%s theme=%s was replaced",
                job.job_id, job.player_id, job.theme_id,
            )
            session.compaction_in_flight = False
            session.compaction_job_id = None
            storage.update_session(conn, session)
            return None

        remaining = session.raw_history[n:]
        if snippet:
            session.cumulative_summary = append_summary(session.cumulative_summary, snippet)
        session.world_lore = lore or session.world_lore or job.base_lore
        session.raw_history = remaining
        session.updated_at = storage.utcnow()

        follow_up = arm_job(
            job.player_id, job.theme_id, remaining,
            session.cumulative_summary, session.world_lore,
            job.base_lore, job.theme_name, job.language,
            history_cfg["max_buffer"], history_cfg["chunk_size"],
        )
        session.compaction_in_flight = follow_up is not None
        session.compaction_job_id = follow_up.job_id if follow_up else None
        storage.update_session(conn, session)

    logger.info(
        "compaction %s done player=%s theme=%s removed=%d remaining=%d",
        job.job_id, job.player_id, job.theme_id, n, len(remaining),
    )
    return follow_up


class CompactionScheduler:
    """Owns background compaction tasks for the life of the app."""

    def __init__(self, summarize: SummarizeFn, evolve_lore: EvolveLoreFn) -> None:
        self._summarize = summarize
        self._evolve_lore = evolve_lore
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, job: CompactionJob) -> asyncio.Task:
        """Start `job` in the background. Must be called from the event loop."""
        task = asyncio.get_running_loop().create_task(
            self._supervise(job), name=f"compaction-{job.job_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(
            "compaction %s scheduled player=%s theme=%s chunk=%d",
            job.job_id, job.player_id, job.theme_id, len(job.chunk),
        )
        return task

    async def drain(self) -> None:
        """Wait until no compaction (including follow-ups) is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _supervise(self, job: CompactionJob) -> None:
        try:
            follow_up = await self.run(job)
        except asyncio.CancelledError:
            self.recover(job)
            raise
        except Exception:
            logger.exception(
                "compaction %s crashed player=%s theme=%s", job.job_id, job.player_id, job.theme_id,
            )
            self.recover(job)
            return
        if follow_up is not None:
            self.schedule(follow_up)

    async def run(self, job: CompactionJob) -> CompactionJob | None:
        """Summarize, evolve lore and write back. Collaborator failures degrade."""
        chunk = [t.model_dump() for t in job.chunk]

        snippet: str | None = None
        try:
            snippet = await self._summarize(chunk, job.language)
        except CollaboratorError as e:
            logger.warning("summarizer failed for compaction %s: %s", job.job_id, e)

        lore: str | None = None
        try:
            lore = await self._evolve_lore(
                chunk, job.lore or job.base_lore, job.base_lore, job.theme_name, job.language,
            )
        except CollaboratorError as e:
            logger.warning("lore evolver failed for compaction %s: %s", job.job_id, e)

        if snippet is None and lore is None:
            logger.warning(
                "compaction %s produced nothing, keeping history of player=%s theme=%s",
                job.job_id, job.player_id, job.theme_id,
            )
            storage.clear_compaction_flag(job.player_id, job.theme_id, job.job_id)
            return None

        return write_back(job, snippet, lore)

    def recover(self, job: CompactionJob) -> bool:
        """Release the compaction guard after a crash. Never raises."""
        try:
            released = storage.clear_compaction_flag(job.player_id, job.theme_id, job.job_id)
        except Exception:
            logger.critical(
                "could not release compaction flag for player=%s theme=%s (job %s); "
                "session stays un-compactable until the flag is cleared",
                job.player_id, job.theme_id, job.job_id, exc_info=True,
            )
            return False
        if released:
            logger.info("compaction %s recovered, flag released", job.job_id)
        return released
