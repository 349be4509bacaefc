from __future__ import annotations

import argparse

from rich.table import Table

from cagminutes.application.services.project_service import ProjectService
from cagminutes.cli.context import CLIContext
from cagminutes.core.errors import ProjectNotInitializedError
from cagminutes.infrastructure.db.gateway import PersistenceGateway


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("lookup", help="Show where CAG references were found")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--reference", help="CAG reference, e.g. 22/CAG/0099")
    target.add_argument("--document", help="Document URL")
    parser.set_defaults(handler=run_lookup)

    processed = subparsers.add_parser("processed", help="List processed documents")
    processed.add_argument("--limit", type=int, default=50)
    processed.set_defaults(handler=run_processed)


def _open_gateway(ctx: CLIContext) -> PersistenceGateway:
    if not ProjectService(ctx.paths).is_initialized():
        raise ProjectNotInitializedError(
            f"Project is not initialized. Run 'cagminutes init' first in {ctx.paths.project_root}"
        )
    return PersistenceGateway(
        ctx.paths.db_path,
        max_attempts=ctx.settings.db_max_attempts,
        backoff_seconds=ctx.settings.db_backoff_seconds,
    )


def run_lookup(args: argparse.Namespace, ctx: CLIContext) -> int:
    with _open_gateway(ctx) as gateway:
        if args.reference:
            locations = gateway.list_locations_for_reference(args.reference.strip())
            title = f"Documents mentioning {args.reference} ({len(locations)})"
        else:
            locations = gateway.list_locations_for_document(args.document.strip())
            title = f"References in document ({len(locations)})"

    table = Table(title=title)
    table.add_column("Reference")
    table.add_column("Pages")
    table.add_column("Document", overflow="fold")
    for location in locations:
        table.add_row(location.reference_id, location.page_ranges, location.document_url)

    ctx.console.print(table)
    return 0


def run_processed(args: argparse.Namespace, ctx: CLIContext) -> int:
    with _open_gateway(ctx) as gateway:
        documents = gateway.list_processed(limit=args.limit)

    table = Table(title=f"Processed documents ({len(documents)})")
    table.add_column("URL", overflow="fold")
    table.add_column("Processed at")
    table.add_column("Digest (sha256)", overflow="fold")
    for document in documents:
        table.add_row(document.url, document.processed_at, document.content_hash)

    ctx.console.print(table)
    return 0
