from __future__ import annotations

import argparse
import csv
from pathlib import Path

from rich.table import Table

from cagminutes.application.services.project_service import ProjectService
from cagminutes.cli.context import CLIContext
from cagminutes.core.errors import ConfigurationError, ProjectNotInitializedError
from cagminutes.domain.models.document import DocumentReference
from cagminutes.infrastructure.db.repos.minutes_repo import MinutesRepo


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("refs", help="Manage the list of minutes documents to process")
    refs_subparsers = parser.add_subparsers(dest="refs_command", required=True)

    imp = refs_subparsers.add_parser("import", help="Import document references from a CSV with url,title columns")
    imp.add_argument("csv_path", type=Path)
    imp.set_defaults(handler=run_import)

    lst = refs_subparsers.add_parser("list", help="List document references")
    lst.add_argument("--limit", type=int, default=50)
    lst.set_defaults(handler=run_list)


def _require_project(ctx: CLIContext) -> None:
    if not ProjectService(ctx.paths).is_initialized():
        raise ProjectNotInitializedError(
            f"Project is not initialized. Run 'cagminutes init' first in {ctx.paths.project_root}"
        )


def read_references_csv(path: Path) -> list[DocumentReference]:
    if not path.exists():
        raise ConfigurationError(f"CSV file not found: {path}")
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or "url" not in reader.fieldnames:
            raise ConfigurationError(f"{path} must have a 'url' column")
        references: list[DocumentReference] = []
        for row in reader:
            url = (row.get("url") or "").strip()
            if not url:
                continue
            title = (row.get("title") or "").strip() or url
            references.append(DocumentReference(url=url, title=title))
    return references


def run_import(args: argparse.Namespace, ctx: CLIContext) -> int:
    _require_project(ctx)
    references = read_references_csv(args.csv_path)
    added = MinutesRepo(ctx.paths.db_path).insert_many(references)
    ctx.console.print(
        f"[green]Imported[/green] {added} new references "
        f"({len(references) - added} already listed)"
    )
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    _require_project(ctx)
    references = MinutesRepo(ctx.paths.db_path).list_references()

    table = Table(title=f"Minutes ({len(references)})")
    table.add_column("Title")
    table.add_column("URL", overflow="fold")
    for reference in references[: args.limit]:
        table.add_row(reference.title, reference.url)

    ctx.console.print(table)
    return 0
