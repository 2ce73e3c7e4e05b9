"""Typer CLI entrypoint for the exicon batch tools."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
from typing import Annotated, Any, Awaitable, Callable, Optional

import typer

from .batch.jobs import BatchJob, FieldCleanupJob, ReferenceLinkingJob
from .batch.orchestrator import BatchOrchestrator
from .batch.review import ProposalReviewer
from .cache.store import ResultCache
from .cleanup.generator import CLEANUP_FIELDS, CleanupGenerator
from .config import settings
from .core.errors import ExiconError
from .db.proposals import ProposalStore
from .db.repository import DocumentRepository
from .db.session import Database
from .db.tracking import ProcessedTracker
from .linking.detector import MentionDetector
from .linking.linker import TARGET_FIELDS, ReferenceLinker
from .llm.client import LLMClient
from .search.executor import SearchExecutor
from .search.index import SearchIndex

logger = logging.getLogger("exicon.cli")

app = typer.Typer(help="Exicon batch tools", rich_markup_mode=None)


@app.callback()
def cli_callback(
    log_level: Annotated[Optional[str], typer.Option(help="Override LOG_LEVEL")] = None,
) -> None:
    """Configure logging and fail fast on missing credentials."""
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format=settings.log_format,
    )
    _ = settings.openai_api_key.get_secret_value()


# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------

def _run(
    command: Callable[[Database, Optional[SearchIndex]], Awaitable[Any]],
    *,
    needs_index: bool = True,
) -> Any:
    """
    Open the store (and the index when ``needs_index``), run ``command``,
    always dispose.
    """

    async def _main() -> Any:
        database = Database(settings.database_url)
        try:
            index = SearchIndex.open_dir(settings.search_index_dir) if needs_index else None
            return await command(database, index)
        finally:
            await database.dispose()

    try:
        return asyncio.run(_main())
    except ExiconError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=1)


def _new_cache() -> ResultCache:
    return ResultCache(default_ttl=settings.cache.default_ttl_seconds)


async def _run_job(
    database: Database,
    index: SearchIndex,
    job: BatchJob,
    cache: ResultCache,
    max_pages: Optional[int],
    auto_apply: Optional[bool],
) -> None:
    config = settings.batch
    if auto_apply is not None:
        config = config.model_copy(update={"auto_apply": auto_apply})

    orchestrator = BatchOrchestrator(
        database,
        job,
        config,
        cache=cache,
        index=index,
        cache_config=settings.cache,
        listing_page_size=settings.listing_page_size,
    )

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, orchestrator.stop)

    stats = await orchestrator.run(max_pages=max_pages)
    typer.echo(stats.summary())
    if stats.failed_ids:
        typer.echo(f"Failed documents: {', '.join(stats.failed_ids)}")


# ---------------------------------------------------------------------
# Batch Jobs
# ---------------------------------------------------------------------

@app.command("link-references")
def link_references_command(
    field: Annotated[str, typer.Option(help="description or text")] = "description",
    max_pages: Annotated[Optional[int], typer.Option(min=1)] = None,
    auto_apply: Annotated[Optional[bool], typer.Option("--auto-apply/--propose")] = None,
) -> None:
    """Detect exercise mentions and link them as [text](@slug)."""
    if field not in TARGET_FIELDS:
        raise typer.BadParameter(f"field must be one of {', '.join(TARGET_FIELDS)}")

    async def _command(database: Database, index: SearchIndex) -> None:
        cache = _new_cache()
        executor = SearchExecutor(index, database, settings.search, cache=cache)
        detector = MentionDetector(
            LLMClient(),
            settings.linking.vocabulary,
            timeout_seconds=settings.linking.llm_timeout_seconds,
        )
        linker = ReferenceLinker(detector, executor, settings.linking)
        job = ReferenceLinkingJob(linker, target_field=field)
        await _run_job(database, index, job, cache, max_pages, auto_apply)

    _run(_command)


@app.command("cleanup")
def cleanup_command(
    field: Annotated[str, typer.Option(help="description, tags or text")],
    max_pages: Annotated[Optional[int], typer.Option(min=1)] = None,
    auto_apply: Annotated[Optional[bool], typer.Option("--auto-apply/--propose")] = None,
) -> None:
    """Propose LLM cleanups for one exercise field."""
    if field not in CLEANUP_FIELDS:
        raise typer.BadParameter(f"field must be one of {', '.join(CLEANUP_FIELDS)}")

    async def _command(database: Database, index: SearchIndex) -> None:
        generator = CleanupGenerator(LLMClient(), timeout_seconds=settings.llm.timeout_seconds)
        job = FieldCleanupJob(generator, field)
        await _run_job(database, index, job, _new_cache(), max_pages, auto_apply)

    _run(_command)


# ---------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------

def _reviewer(database: Database, index: Optional[SearchIndex] = None) -> ProposalReviewer:
    return ProposalReviewer(
        database,
        index=index,
        cache_config=settings.cache,
        listing_page_size=settings.listing_page_size,
    )


@app.command("approve")
def approve_command(proposal_id: int) -> None:
    """Approve a pending proposal."""

    async def _command(database: Database, index: Optional[SearchIndex]) -> None:
        proposal = await _reviewer(database).approve(proposal_id)
        typer.echo(f"Proposal {proposal.id} approved")

    _run(_command, needs_index=False)


@app.command("reject")
def reject_command(proposal_id: int) -> None:
    """Reject a pending proposal."""

    async def _command(database: Database, index: Optional[SearchIndex]) -> None:
        proposal = await _reviewer(database).reject(proposal_id)
        typer.echo(f"Proposal {proposal.id} rejected")

    _run(_command, needs_index=False)


@app.command("apply-approved")
def apply_approved_command(
    job_type: Annotated[Optional[str], typer.Option(help="Only this job type")] = None,
) -> None:
    """Write all approved proposals to their documents."""

    async def _command(database: Database, index: SearchIndex) -> None:
        stats = await _reviewer(database, index).apply_approved(job_type)
        typer.echo(f"applied={stats.applied} failed={stats.failed}")

    _run(_command)


# ---------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------

@app.command("init-db")
def init_db_command() -> None:
    """Create missing tables."""

    async def _command(database: Database, index: Optional[SearchIndex]) -> None:
        await database.create_all()
        typer.echo("Tables created")

    _run(_command, needs_index=False)


@app.command("reindex")
def reindex_command() -> None:
    """Rebuild the full-text index from the document store."""

    async def _command(database: Database, index: SearchIndex) -> None:
        async with database.session() as session:
            docs = await DocumentRepository(session).all_for_index()
        count = index.rebuild(docs)
        typer.echo(f"Indexed {count} documents")

    _run(_command)


@app.command("assign-slugs")
def assign_slugs_command() -> None:
    """Give every document without a slug a unique one."""

    async def _command(database: Database, index: Optional[SearchIndex]) -> None:
        async with database.session() as session:
            count = await DocumentRepository(session).assign_slugs()
        typer.echo(f"Assigned {count} slugs")

    _run(_command, needs_index=False)


@app.command("reset-tracking")
def reset_tracking_command(job_type: str) -> None:
    """Forget which documents a job has processed."""

    async def _command(database: Database, index: Optional[SearchIndex]) -> None:
        async with database.session() as session:
            removed = await ProcessedTracker(session).reset(job_type)
        typer.echo(f"Removed {removed} tracking records for {job_type}")

    _run(_command, needs_index=False)


@app.command("stats")
def stats_command() -> None:
    """Print document, proposal and tracking counts as JSON."""

    async def _command(database: Database, index: SearchIndex) -> None:
        async with database.session() as session:
            report = {
                "documents": await DocumentRepository(session).count_by_kind_and_status(),
                "proposals": await ProposalStore(session).counts(),
                "processed": await ProcessedTracker(session).counts(),
                "indexed": index.doc_count(),
            }
        typer.echo(json.dumps(report, indent=2, sort_keys=True))

    _run(_command)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
