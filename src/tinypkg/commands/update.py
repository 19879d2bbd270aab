"""Update and upgrade command implementations."""

import click

from tinypkg.commands.common import console, finish, open_engine, progress_bar


@click.command()
@click.pass_obj
def update(settings):
    """Download fresh package lists from every configured feed."""
    with open_engine(settings) as engine:
        with progress_bar("Updating package lists") as sink:
            code = engine.update_lists(sink)
        finish(engine, code, "Package lists updated")


@click.command()
@click.argument("package_name")
@click.pass_obj
def upgrade(settings, package_name: str):
    """Upgrade an installed package to the newest available version."""
    with open_engine(settings) as engine:
        console.print(f"[blue]Upgrading[/blue] {package_name}...")
        with progress_bar(f"Upgrading {package_name}") as sink:
            code = engine.upgrade(package_name, sink)
        finish(engine, code, f"[bold]{package_name}[/bold] is up to date")


@click.command("upgrade-all")
@click.pass_obj
def upgrade_all(settings):
    """Upgrade every installed package."""
    with open_engine(settings) as engine:
        pending = engine.list_upgradable_packages()
        if not pending:
            console.print("[green]All packages are up to date![/green]")
            return

        console.print(f"[blue]Upgrading {len(pending)} package(s)...[/blue]\n")
        with progress_bar("Upgrading") as sink:
            code = engine.upgrade_all(sink)
        finish(engine, code, f"Upgraded {len(pending)} package(s)")
