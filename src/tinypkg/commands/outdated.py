"""List-upgradable command implementation."""

import click
from rich.table import Table

from tinypkg.commands.common import console, open_engine


@click.command("list-upgradable")
@click.pass_obj
def list_upgradable(settings):
    """List installed packages with newer versions available."""
    with open_engine(settings) as engine:
        installed = {pkg.name: pkg.version for pkg in engine.list_installed_packages()}
        upgradable = engine.list_upgradable_packages()

    if not upgradable:
        console.print("[green]All packages are up to date![/green]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Package")
    table.add_column("Current")
    table.add_column("Latest")
    table.add_column("Feed")

    for pkg in upgradable:
        table.add_row(
            pkg.name,
            installed.get(pkg.name, ""),
            f"[green]{pkg.version}[/green]",
            pkg.repository or "",
        )

    console.print(table)
    console.print(f"\n{len(upgradable)} package(s) can be upgraded")
    console.print("[dim]Run 'tinypkg upgrade-all' to upgrade all packages[/dim]")
