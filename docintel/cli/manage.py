"""Operator CLI for the docintel ingestion pipeline.

Usage::

    python -m docintel.cli worker                      # all stages
    python -m docintel.cli worker --stage embed-chunk  # one stage only
    python -m docintel.cli upload --tenant acme --file report.pdf
    python -m docintel.cli search --tenant acme "quarterly revenue"
    python -m docintel.cli ask --tenant acme --with-sources "How did revenue change?"
    python -m docintel.cli stats
    python -m docintel.cli dead-letters --stage index
    python -m docintel.cli requeue JOB_ID

``stats``, ``dead-letters`` and ``requeue`` only open the job queue; the
other commands build the full container (providers included).
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import signal
import sys
from pathlib import Path

from docintel.config.loader import load_settings
from docintel.config.settings import Settings
from docintel.models.jobs import JobStage
from docintel.models.qa import QAOutcome
from docintel.providers.storage.sqlite_job_queue import SQLiteJobQueue
from docintel.utils.errors import DocIntelError
from docintel.utils.logging import configure_logging

# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_worker(args: argparse.Namespace, app_settings: Settings) -> int:
    from docintel.main import build_container

    container = build_container(app_settings)
    await container.initialize()

    stages = [JobStage(args.stage)] if args.stage else None
    pool = container.worker_pool(stages)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    pool.start()
    print(f"Started {len(pool.workers)} workers; Ctrl+C to stop.")
    await stop.wait()
    await pool.stop()
    return 0


async def _handle_upload(args: argparse.Namespace, app_settings: Settings) -> int:
    from docintel.main import build_container

    path = Path(args.file)
    if not path.is_file():
        print(f"Error: {path} is not a file", file=sys.stderr)
        return 1
    mime_type = args.mime_type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    container = build_container(app_settings)
    await container.initialize()
    result = await container.service.upload(
        tenant_id=args.tenant,
        filename=path.name,
        data=path.read_bytes(),
        mime_type=mime_type,
        language=args.language,
    )
    label = "Duplicate of" if result.duplicate else "Uploaded"
    print(f"{label} document {result.document_id} (status: {result.status.value})")
    return 0


async def _handle_search(args: argparse.Namespace, app_settings: Settings) -> int:
    from docintel.main import build_container

    container = build_container(app_settings)
    await container.initialize()
    hits = await container.service.search(args.tenant, args.query, k=args.k)
    if not hits:
        print("No matching chunks.")
        return 0

    for rank, hit in enumerate(hits, start=1):
        print(f"{rank:>2}. {hit.score:.3f}  {hit.filename}  {hit.document_id}#{hit.chunk_index}")
        print(f"    {hit.highlight or hit.content[:200]}")
    return 0


async def _handle_ask(args: argparse.Namespace, app_settings: Settings) -> int:
    from docintel.main import build_container

    container = build_container(app_settings)
    await container.initialize()
    result = await container.service.ask(args.question, args.tenant, k=args.k)
    if result.outcome == QAOutcome.SERVICE_UNAVAILABLE:
        print("Error: question answering is unavailable; try again later.", file=sys.stderr)
        return 1

    print(result.answer)
    if args.with_sources and result.citations:
        print("\nSources:")
        for citation in result.citations:
            print(f"  - {citation.document_id}#{citation.chunk_index}: {citation.snippet}")
    return 0


async def _handle_stats(app_settings: Settings) -> int:
    queue = SQLiteJobQueue(db_path=app_settings.sqlite_db_path)
    await queue.initialize()
    stats = await queue.stats()

    print("Queue Statistics")
    print("=" * 40)
    for stage, counts in stats.items():
        summary = ", ".join(f"{state}={count}" for state, count in sorted(counts.items()))
        print(f"  {stage:<12} {summary or 'empty'}")
    return 0


async def _handle_dead_letters(args: argparse.Namespace, app_settings: Settings) -> int:
    queue = SQLiteJobQueue(db_path=app_settings.sqlite_db_path)
    await queue.initialize()
    stage = JobStage(args.stage) if args.stage else None
    letters = await queue.list_dead_letters(stage)
    if not letters:
        print("No dead-lettered jobs.")
        return 0

    for letter in letters:
        print(
            f"{letter.job_id}  {letter.job.stage:<11}  document={letter.job.document_id}  "
            f"attempts={letter.attempt}  failed_at={letter.failed_at.isoformat()}"
        )
        print(f"    reason: {letter.reason}")
    print(f"\n{len(letters)} dead-lettered job(s).")
    return 0


async def _handle_requeue(args: argparse.Namespace, app_settings: Settings) -> int:
    queue = SQLiteJobQueue(db_path=app_settings.sqlite_db_path)
    await queue.initialize()
    if await queue.requeue_dead_letter(args.job_id):
        print(f"Requeued {args.job_id}.")
        return 0
    print(
        f"Error: {args.job_id} is not a dead letter, or a live copy of the job is queued.",
        file=sys.stderr,
    )
    return 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m docintel.cli",
        description="Run and operate the docintel ingestion pipeline.",
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to the YAML defaults file"
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline commands")
    stage_choices = [stage.value for stage in JobStage]

    # -- worker --
    worker_parser = subparsers.add_parser("worker", help="Run pipeline workers until stopped")
    worker_parser.add_argument(
        "--stage", choices=stage_choices, help="Only run workers for this stage"
    )

    # -- upload --
    upload_parser = subparsers.add_parser("upload", help="Upload a file for ingestion")
    upload_parser.add_argument("--tenant", required=True, help="Owning tenant id")
    upload_parser.add_argument("--file", required=True, help="Path to the file")
    upload_parser.add_argument(
        "--mime-type", dest="mime_type", help="Media type (guessed from the name by default)"
    )
    upload_parser.add_argument("--language", help="Declared document language")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search a tenant's indexed chunks")
    search_parser.add_argument("--tenant", required=True, help="Tenant to search")
    search_parser.add_argument("--k", type=int, default=10, help="Number of results")
    search_parser.add_argument("query", help="Search text")

    # -- ask --
    ask_parser = subparsers.add_parser("ask", help="Answer a question from a tenant's documents")
    ask_parser.add_argument("--tenant", required=True, help="Tenant to answer from")
    ask_parser.add_argument("--k", type=int, help="Number of chunks given to the model")
    ask_parser.add_argument(
        "--with-sources", dest="with_sources", action="store_true", help="Print the citations"
    )
    ask_parser.add_argument("question", help="Question text")

    # -- stats --
    subparsers.add_parser("stats", help="Show job counts per stage and state")

    # -- dead-letters --
    dead_parser = subparsers.add_parser("dead-letters", help="List dead-lettered jobs")
    dead_parser.add_argument("--stage", choices=stage_choices, help="Filter by stage")

    # -- requeue --
    requeue_parser = subparsers.add_parser("requeue", help="Requeue a dead-lettered job")
    requeue_parser.add_argument("job_id", help="Id of the dead-lettered job")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point; exits with the handler's status code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        app_settings = load_settings(args.config) if Path(args.config).exists() else Settings()
    except DocIntelError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        if args.command == "worker":
            exit_code = asyncio.run(_handle_worker(args, app_settings))
        elif args.command == "upload":
            exit_code = asyncio.run(_handle_upload(args, app_settings))
        elif args.command == "search":
            exit_code = asyncio.run(_handle_search(args, app_settings))
        elif args.command == "ask":
            exit_code = asyncio.run(_handle_ask(args, app_settings))
        elif args.command == "stats":
            exit_code = asyncio.run(_handle_stats(app_settings))
        elif args.command == "dead-letters":
            exit_code = asyncio.run(_handle_dead_letters(args, app_settings))
        elif args.command == "requeue":
            exit_code = asyncio.run(_handle_requeue(args, app_settings))
        else:
            parser.print_help()
            exit_code = 1
    except DocIntelError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)
