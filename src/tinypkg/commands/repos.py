"""Check-repos command implementation."""

import click

from tinypkg.commands.common import console, open_engine


@click.command("check-repos")
@click.pass_obj
def check_repos(settings):
    """Check that every configured feed host answers."""
    with open_engine(settings) as engine:
        unreachable = engine.repository_accessibility_check()

    if unreachable:
        console.print(f"[red]{unreachable} repository host(s) unreachable[/red]")
        raise SystemExit(1)
    console.print("[green]✓[/green] All repositories are accessible")
