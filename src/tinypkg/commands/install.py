"""Install command implementation."""

import click

from tinypkg.commands.common import console, finish, open_engine, progress_bar
from tinypkg.engine import ResultCode


@click.command()
@click.argument("package_name")
@click.option("--force-reinstall", is_flag=True, help="Reinstall even if already installed")
@click.option("--force-depends", is_flag=True, help="Install despite unresolved dependencies")
@click.option("--nodeps", is_flag=True, help="Do not install dependencies")
@click.option("--noaction", is_flag=True, help="Do not write status files")
@click.pass_obj
def install(settings, package_name: str, force_reinstall: bool, force_depends: bool, nodeps: bool, noaction: bool):
    """Install a package and its dependencies.

    PACKAGE_NAME is the name of a package in the configured feeds.
    """
    with open_engine(settings) as engine:
        for name, enabled in (
            ("force_reinstall", force_reinstall),
            ("force_depends", force_depends),
            ("nodeps", nodeps),
            ("noaction", noaction),
        ):
            if enabled:
                engine.set_option(name, True)

        console.print(f"[blue]Installing[/blue] {package_name}...")
        with progress_bar(f"Installing {package_name}") as sink:
            code = engine.install(package_name, sink)

        if code is ResultCode.ALREADY_INSTALLED:
            console.print(f"[yellow]{package_name}[/yellow] is already installed")
            return
        finish(engine, code, f"Successfully installed [bold]{package_name}[/bold]")
