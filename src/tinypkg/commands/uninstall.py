"""Remove command implementation."""

import click

from tinypkg.commands.common import console, finish, open_engine, progress_bar


@click.command()
@click.argument("package_name")
@click.pass_obj
def remove(settings, package_name: str):
    """Remove an installed package.

    Packages depending on it are not removed.
    """
    with open_engine(settings) as engine:
        console.print(f"[blue]Removing[/blue] {package_name}...")
        with progress_bar(f"Removing {package_name}") as sink:
            code = engine.remove(package_name, sink)
        finish(engine, code, f"Successfully removed [bold]{package_name}[/bold]")
