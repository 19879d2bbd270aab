"""Info command implementation."""

import click
from rich.panel import Panel

from tinypkg.commands.common import console, open_engine


@click.command()
@click.argument("package_name")
@click.option("--version", "-V", "version", help="Show only this version")
@click.pass_obj
def info(settings, package_name: str, version: str | None):
    """Show every known version of a package."""
    with open_engine(settings) as engine:
        if version is not None:
            found = engine.find_package(package_name, version)
            variants = [found] if found is not None else []
        else:
            variants = [p for p in engine.list_packages() if p.name == package_name]

    if not variants:
        console.print(f"[red]Error:[/red] Unknown package '{package_name}'")
        raise SystemExit(1)

    for pkg in variants:
        lines = [
            f"[bold]Name:[/bold] {pkg.name}",
            f"[bold]Version:[/bold] {pkg.version}",
            f"[bold]Architecture:[/bold] {pkg.architecture}",
            f"[bold]Feed:[/bold] {pkg.repository or '(none)'}",
            f"[bold]Size:[/bold] {pkg.size_kb} KiB",
            f"[bold]Installed:[/bold] {'Yes' if pkg.installed else 'No'}",
        ]
        if pkg.tags:
            lines.append(f"[bold]Tags:[/bold] {pkg.tags}")
        if pkg.description:
            lines.append(f"\n{pkg.description}")

        title = f"[green]{pkg.name}[/green]"
        if pkg.installed:
            title += " (installed)"
        console.print(Panel("\n".join(lines), title=title))
