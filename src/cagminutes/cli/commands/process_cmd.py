from __future__ import annotations

import argparse
from pathlib import Path

from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from cagminutes.application.services.processing_service import DocumentProcessingService
from cagminutes.application.services.project_service import ProjectService
from cagminutes.cli.context import CLIContext
from cagminutes.core.errors import ProjectNotInitializedError
from cagminutes.domain.models.outcome import ProcessingMode
from cagminutes.infrastructure.db.gateway import PersistenceGateway
from cagminutes.infrastructure.db.repos.minutes_repo import MinutesRepo
from cagminutes.infrastructure.http.downloader import DownloadManager
from cagminutes.infrastructure.parsers.pdf_text import PdfTextExtractor


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("process", help="Download and scan every listed minutes document")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ProcessingMode],
        default=ProcessingMode.ONCE.value,
        help="'once' skips documents already processed; 'changed' re-fetches them and rescans on a new digest",
    )
    parser.add_argument("--max-workers", type=int, default=None, help="Cap on concurrently processed documents")
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional JSONL run log path (default: <project>/.cagminutes/logs/process.log.jsonl)",
    )
    parser.add_argument(
        "--verbose-docs",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Print a line for each finished document.",
    )
    parser.set_defaults(handler=run)


def run(args: argparse.Namespace, ctx: CLIContext) -> int:
    project_service = ProjectService(ctx.paths)
    if not project_service.is_initialized():
        raise ProjectNotInitializedError(
            f"Project is not initialized. Run 'cagminutes init' first in {ctx.paths.project_root}"
        )
    project_service.init_project()

    log_path = (
        Path(args.log_file).expanduser().resolve()
        if args.log_file
        else (ctx.paths.log_dir / "process.log.jsonl")
    )
    references = MinutesRepo(ctx.paths.db_path).list_references()

    with PersistenceGateway(
        ctx.paths.db_path,
        max_attempts=ctx.settings.db_max_attempts,
        backoff_seconds=ctx.settings.db_backoff_seconds,
    ) as gateway:
        service = DocumentProcessingService(
            gateway=gateway,
            downloader=DownloadManager.from_settings(ctx.paths.download_dir, ctx.settings),
            extractor=PdfTextExtractor(),
            mode=ProcessingMode(args.mode),
            max_workers=args.max_workers or ctx.settings.max_workers,
            log_path=log_path,
        )

        progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            console=ctx.console,
        )

        with progress:
            overall_task = progress.add_task("Processing minutes...", total=max(len(references), 1))

            def _on_progress(event: dict[str, object]) -> None:
                if event.get("event") != "document_done":
                    return
                progress.advance(overall_task, 1)
                status = str(event.get("status", "unknown"))
                if args.verbose_docs or status == "failed":
                    details = [
                        f"status={status}",
                        f"title={escape(str(event.get('title', '')))}",
                        f"refs={event.get('references_found', 0)}",
                    ]
                    if event.get("error"):
                        details.append(f"error={escape(str(event['error']))}")
                    ctx.console.print("[process] " + " ".join(details))

            report = service.run(references, progress_callback=_on_progress)

    lines = [
        f"Documents listed: {len(references)}",
        f"Attempted: {report.attempted}",
        f"  ├─ Scanned: {report.done}",
        f"  ├─ Already processed: {report.skipped}",
        f"  ├─ Unchanged: {report.unchanged}",
        f"  └─ Failed: {report.failed}",
        f"Log file: {log_path}",
    ]
    ctx.console.print(Panel.fit("\n".join(lines), title="Minutes Processing Summary"))
    return 0
