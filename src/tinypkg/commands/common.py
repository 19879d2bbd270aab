"""Helpers shared by the command implementations."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn

from tinypkg.core.config import ConfigError, EngineConfig
from tinypkg.core.lock import LockError
from tinypkg.engine import Engine, EngineInitError, ProgressData, ResultCode

console = Console()

# verbosity option -> log level
VERBOSITY_LEVELS = [logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG]


@dataclass
class CliSettings:
    """Global options given before the command name."""

    conf_file: str | None = None
    offline_root: str | None = None
    dest: str | None = None
    log_level_set: bool = False


@contextmanager
def open_engine(settings: CliSettings) -> Iterator[Engine]:
    """Load configuration and start an engine, exiting on fatal errors."""
    try:
        config = EngineConfig.load(
            conf_file=settings.conf_file,
            offline_root=settings.offline_root,
            dest=settings.dest,
        )
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    if not settings.log_level_set:
        verbosity = min(max(int(config.get_option("verbosity")), 0), len(VERBOSITY_LEVELS) - 1)
        logging.getLogger("tinypkg").setLevel(VERBOSITY_LEVELS[verbosity])

    try:
        engine = Engine(config)
    except (LockError, EngineInitError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    with engine:
        yield engine


@contextmanager
def progress_bar(description: str) -> Iterator:
    """Rich progress bar fed by engine progress callbacks."""
    with Progress(
        "[progress.description]{task.description}",
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=100)

        def sink(data: ProgressData) -> None:
            label = description
            if data.package is not None:
                label = f"{data.action.value.capitalize()} {data.package.name}"
            progress.update(task, completed=data.percentage, description=label)

        yield sink


def finish(engine: Engine, code: ResultCode, success_message: str) -> None:
    """Report an operation's outcome and exit non-zero on failure."""
    if code is ResultCode.SUCCESS:
        console.print(f"[green]✓[/green] {success_message}")
        return

    errors = engine.format_errors()
    if errors:
        console.print(errors, markup=False, highlight=False)
    console.print(f"[red]Error:[/red] {code.value.replace('-', ' ')}")
    raise SystemExit(1)
