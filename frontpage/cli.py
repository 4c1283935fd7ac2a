"""
Command-line interface for frontpage.

Uses Typer to provide two commands:
- check: run the placement rules over an exported article list
- watch: follow the live homepage selections from the content API
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import AppConfig, load_config
from .context import ContentContext
from .core.errors import MalformedArticleError
from .core.rules import select_homepage_sections
from .core.session import Anonymous, Authenticated
from .core.types import Selections
from .logging_utils import setup_logging

app = typer.Typer(add_completion=False)
console = Console()


@app.command()
def check(
    input: Path = typer.Option(..., "--input", "-i", exists=True, readable=True),
    config: Path | None = typer.Option(None, "--config", "-c", exists=True),
    as_json: bool = typer.Option(False, "--json", help="Print selections as JSON."),
):
    """Apply the homepage placement rules to an article export.

    The input is a JSON list of article documents, or a query response
    object with a "result" list. Exits with status 1 when a hard rule was
    violated and 2 when the input is malformed.
    """
    cfg = load_config(str(config) if config else None)

    try:
        with open(input, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON:[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)
    records = data.get("result", []) if isinstance(data, dict) else data

    try:
        selections = select_homepage_sections(records, cfg.rules)
    except MalformedArticleError as exc:
        console.print(f"[red]Malformed article:[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)

    if as_json:
        console.print_json(json.dumps(selections.to_dict()))
    else:
        render_selections(selections, console)

    if not selections.report.is_valid:
        raise typer.Exit(code=1)


@app.command()
def watch(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True),
    admin: bool = typer.Option(False, "--admin/--reader", help="Use the editorial poll interval."),
    duration: float | None = typer.Option(None, "--duration", help="Stop after this many seconds."),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    polling: bool = typer.Option(False, "--polling", help="Skip the live subscription."),
):
    """Follow homepage selections as content changes."""
    load_dotenv()

    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.logging.level = log_level
    if polling:
        cfg.updates.use_live = False

    try:
        asyncio.run(_watch(cfg, admin, duration))
    except KeyboardInterrupt:
        console.print("Stopped.")


async def _watch(cfg: AppConfig, admin: bool, duration: float | None) -> None:
    logger = setup_logging(cfg.logging)
    session = Authenticated(user_id="cli", role="admin") if admin else Anonymous()

    async with ContentContext(cfg, session=session, logger=logger) as ctx:
        await ctx.watch(
            lambda selections: render_selections(selections, console),
            lambda exc: console.print(f"[yellow]{type(exc).__name__}:[/yellow] {exc}"),
        )
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)


def render_selections(selections: Selections, out: Console) -> None:
    table = Table(title="Homepage")
    table.add_column("Section", style="bold")
    table.add_column("Articles")

    def titles(articles) -> str:
        return "\n".join(escape(a.title) for a in articles) or "-"

    table.add_row("Breaking news", escape(selections.breaking_news.title) if selections.breaking_news else "-")
    table.add_row("Lead story", escape(selections.lead_story.title) if selections.lead_story else "-")
    table.add_row("Featured", titles(selections.featured))
    table.add_row("Latest updates", titles(selections.latest_updates))
    table.add_row("Videos", titles(selections.videos))
    table.add_row("Trending", titles(selections.trending))
    out.print(table)

    report = selections.report
    for error in report.errors:
        out.print(f"[red]{escape(error)}[/red]")
    for change in report.enforced_changes:
        out.print(f"[cyan]{escape(str(change))}[/cyan]")
    for warning in report.warnings:
        out.print(f"[yellow]{escape(warning)}[/yellow]")


if __name__ == "__main__":
    app()
