"""CLI application — Click-based command hierarchy for Pixie.

``pixie run`` starts the assistant; the other commands read Pixie's data
directory and print it, and work while the assistant is running.
"""

from __future__ import annotations

import sys

import click

from pixie.cli.formatters import build_table, get_console, shorten
from pixie.config import PixieConfig
from pixie.errors import ConfigurationError


@click.group()
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, no_color: bool) -> None:
    """Pixie — a personal assistant on Telegram."""
    ctx.ensure_object(dict)
    ctx.obj["no_color"] = no_color


def _load_config() -> PixieConfig:
    try:
        return PixieConfig(require_credentials=False)
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration error: {e}") from e


@cli.command("run")
def run_cmd() -> None:
    """Run the assistant until it is stopped or asks to be restarted."""
    from pixie.main import run_assistant

    sys.exit(run_assistant())


@cli.command("delegates")
@click.pass_context
def delegates_cmd(ctx: click.Context) -> None:
    """List stored delegated-session configs."""
    from pixie.delegation.store import ConfigStore

    config = _load_config()
    configs = ConfigStore(config.assistant.delegates_dir).load_all()
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not configs:
        console.print("No delegates stored.")
        return
    rows = [
        [c.id, shorten(c.description, 40), c.model, c.created_at.strftime("%Y-%m-%d %H:%M:%S")]
        for c in configs
    ]
    console.print(build_table("Delegates", ["ID", "Description", "Model", "Created"], rows))


@cli.command("usage")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of requests to show")
@click.pass_context
def usage_cmd(ctx: click.Context, limit: int) -> None:
    """Show the most recent billed requests."""
    from pixie.usage.request_log import RequestLog

    config = _load_config()
    entries = RequestLog(config.assistant.request_log_path).read(limit=limit)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not entries:
        console.print("No requests logged yet.")
        return
    rows = [
        [
            e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            shorten(e.message_excerpt, 40),
            e.model,
            f"{e.multiplier:g}",
            f"{sum(d.premium_units for d in e.delegate_usage):g}",
            f"{e.total_premium_units:g}",
            e.outcome,
        ]
        for e in entries
    ]
    console.print(
        build_table(
            "Requests",
            ["Time", "Message", "Model", "×", "Delegates", "Total", "Outcome"],
            rows,
        )
    )
    total = sum(e.total_premium_units for e in entries)
    console.print(f"{len(entries)} requests, {total:g} premium units")


@cli.command("notes")
@click.pass_context
def notes_cmd(ctx: click.Context) -> None:
    """List saved notes."""
    from pixie.notes import NoteStore

    config = _load_config()
    notes = NoteStore(config.assistant.notes_dir).all()
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not notes:
        console.print("No notes saved.")
        return
    rows = [
        [n.key, shorten(n.content), n.updated_at.strftime("%Y-%m-%d %H:%M:%S")]
        for n in notes
    ]
    console.print(build_table("Notes", ["Key", "Content", "Updated"], rows))


@cli.command("skills")
@click.pass_context
def skills_cmd(ctx: click.Context) -> None:
    """List installed skills."""
    from pixie.skills.loader import discover_skills

    config = _load_config()
    skills = discover_skills(config.assistant.skills_dir)
    console = get_console(no_color=ctx.obj.get("no_color", False))
    if not skills:
        console.print(f"No skills found in {config.assistant.skills_dir}.")
        return
    rows = [[s.name, shorten(s.description), ", ".join(s.keywords)] for s in skills]
    console.print(build_table("Skills", ["Name", "Description", "Keywords"], rows))
