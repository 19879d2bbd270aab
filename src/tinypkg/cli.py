"""CLI entry point for tinypkg."""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from tinypkg import __version__
from tinypkg.commands import info, install, list_cmd, outdated, repos, uninstall, update
from tinypkg.commands.common import CliSettings

console = Console()


def setup_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    logger = logging.getLogger("tinypkg")
    logger.addHandler(handler)
    logger.setLevel(level)


@click.group()
@click.version_option(version=__version__, prog_name="tinypkg")
@click.option(
    "--conf",
    "-f",
    "conf_file",
    type=click.Path(dir_okay=False),
    help="Configuration file to read before the configuration directory",
)
@click.option("--offline-root", "-o", type=click.Path(file_okay=False), help="Operate on an offline root")
@click.option("--dest", "-d", "dest", help="Restrict operations to this destination")
@click.option("--verbose", "-v", count=True, help="More output (repeat for debug)")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors")
@click.pass_context
def main(ctx, conf_file, offline_root, dest, verbose, quiet):
    """tinypkg - A small package manager for embedded Linux targets.

    Manages .ipk packages from configured feeds.

    Examples:

        tinypkg update

        tinypkg install busybox

        tinypkg list-upgradable

        tinypkg upgrade-all
    """
    setup_logging(verbose, quiet)
    ctx.obj = CliSettings(
        conf_file=conf_file,
        offline_root=offline_root,
        dest=dest,
        log_level_set=bool(verbose or quiet),
    )


# Register commands
main.add_command(update.update)
main.add_command(update.upgrade)
main.add_command(update.upgrade_all)
main.add_command(install.install)
main.add_command(uninstall.remove)
main.add_command(list_cmd.list_packages)
main.add_command(list_cmd.list_installed)
main.add_command(outdated.list_upgradable)
main.add_command(info.info)
main.add_command(repos.check_repos)


if __name__ == "__main__":
    main()
