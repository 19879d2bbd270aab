"""List command implementations."""

import click
from rich.table import Table

from tinypkg.commands.common import console, open_engine
from tinypkg.models.package import PackageSnapshot


def print_packages(packages: list[PackageSnapshot], show_repository: bool = True) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Arch")
    if show_repository:
        table.add_column("Feed")
    table.add_column("Description")

    for pkg in sorted(packages, key=lambda p: (p.name, p.version)):
        row = [pkg.name, pkg.version, pkg.architecture]
        if show_repository:
            row.append(pkg.repository or "[dim](installed)[/dim]")
        row.append(pkg.description.split("\n", 1)[0])
        table.add_row(*row)

    console.print(table)


@click.command("list")
@click.pass_obj
def list_packages(settings):
    """List every known package."""
    with open_engine(settings) as engine:
        packages = engine.list_packages()

    if not packages:
        console.print("No packages known")
        console.print("\nFetch package lists with: tinypkg update")
        return
    print_packages(packages)


@click.command("list-installed")
@click.pass_obj
def list_installed(settings):
    """List installed packages."""
    with open_engine(settings) as engine:
        packages = engine.list_installed_packages()

    if not packages:
        console.print("No packages installed")
        return
    print_packages(packages, show_repository=False)
