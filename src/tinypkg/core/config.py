"""Configuration loading for the package engine."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from tinypkg.core.platform import default_arch_priorities
from tinypkg.models.source import PackageDestination, PackageSource

logger = logging.getLogger(__name__)

DEFAULT_CONF_DIR = Path("/etc/tinypkg")
DEFAULT_LISTS_DIR = Path("/var/lib/tinypkg/lists")
DEFAULT_DEST = ("root", Path("/"))
DEFAULT_ARCH_PRIORITY = 10

# Option name -> (type, default)
OPTIONS = {
    "cache": (str, None),
    "check_signature": (bool, False),
    "require_signature": (bool, False),
    "signature_keyring": (str, None),
    "force_depends": (bool, False),
    "force_reinstall": (bool, False),
    "nodeps": (bool, False),
    "noaction": (bool, False),
    "http_proxy": (str, None),
    "no_proxy": (str, None),
    "offline_root": (str, None),
    "tmp_dir": (str, "/tmp"),
    "verbosity": (int, 1),
    "lock_file": (str, "/var/lock/tinypkg.lock"),
}

OPTION_ALIASES = {"test": "noaction"}

_FALSE_VALUES = {"0", "false", "no", "off"}

_TOKEN = r'(?:"[^"]*"|[^\s"]+)'
_LINE_PATTERN = re.compile(
    rf"^\s*({_TOKEN})(?:\s+({_TOKEN}))?(?:\s+({_TOKEN}))?(?:\s+({_TOKEN}))?\s*$"
)


class ConfigError(Exception):
    """Invalid configuration."""

    pass


class _InvalidFile(Exception):
    """A directive too broken to trust the rest of its file."""


def split_directive(line: str) -> list[str] | None:
    """Split a configuration line into at most four tokens.

    Returns [] for blank and comment lines, None for malformed ones.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return []
    match = _LINE_PATTERN.match(stripped)
    if match is None:
        return None
    return [token.strip('"') for token in match.groups() if token is not None]


def _convert(name: str, kind: type, value) -> object:
    if kind is bool:
        if isinstance(value, bool):
            return value
        return value is None or str(value).strip().lower() not in _FALSE_VALUES
    if value is None:
        raise ValueError(f"option {name} needs a value")
    if kind is int:
        return int(value)
    return str(value)


@dataclass
class _ParseState:
    sources: list[PackageSource] = field(default_factory=list)
    dest_roots: dict[str, Path] = field(default_factory=dict)
    arch_priorities: dict[str, int] = field(default_factory=dict)
    lists_dir: Path | None = None
    options: dict[str, object] = field(default_factory=dict)


@dataclass
class EngineConfig:
    """Sources, destinations, architectures and options for one engine."""

    sources: list[PackageSource]
    destinations: list[PackageDestination]
    arch_priorities: dict[str, int]
    lists_dir: Path
    options: dict[str, object]
    default_dest: PackageDestination
    restrict_to_default_dest: bool = False
    conf_files: list[Path] = field(default_factory=list)
    conf_dir: Path | None = None
    load_args: dict = field(default_factory=dict, repr=False)

    @classmethod
    def load(
        cls,
        conf_file: str | Path | None = None,
        conf_dir: str | Path | None = None,
        offline_root: str | Path | None = None,
        dest: str | None = None,
    ) -> "EngineConfig":
        """Parse the configuration files and fill in defaults.

        `conf_file` is read first, then every *.conf file of `conf_dir`
        (TINYPKG_CONF_DIR, or /etc/tinypkg) in sorted order.
        """
        if conf_dir is None:
            conf_dir = os.environ.get("TINYPKG_CONF_DIR", DEFAULT_CONF_DIR)
        conf_dir = Path(conf_dir)

        files: list[Path] = []
        if conf_file is not None:
            files.append(Path(conf_file))
        if conf_dir.is_dir():
            seen = {f.resolve() for f in files}
            files.extend(f for f in sorted(conf_dir.glob("*.conf")) if f.resolve() not in seen)

        state = _ParseState()
        for path in files:
            _parse_file(path, state)

        options = {name: default for name, (_, default) in OPTIONS.items()}
        options.update(state.options)
        if offline_root is not None:
            options["offline_root"] = str(offline_root)

        config = cls._build(state, options, dest)
        config.conf_files = files
        config.conf_dir = conf_dir
        config.load_args = {
            "conf_file": conf_file,
            "conf_dir": conf_dir,
            "offline_root": offline_root,
            "dest": dest,
        }
        return config

    @classmethod
    def _build(
        cls,
        state: _ParseState,
        options: dict[str, object],
        dest_name: str | None,
    ) -> "EngineConfig":
        root = options.get("offline_root")
        lists_dir = _under_root(state.lists_dir or DEFAULT_LISTS_DIR, root)
        options["lock_file"] = str(_under_root(Path(str(options["lock_file"])), root))

        dest_roots = state.dest_roots or dict([DEFAULT_DEST])
        destinations = [
            PackageDestination(name=name, root_dir=_under_root(path, root), lists_dir=lists_dir)
            for name, path in dest_roots.items()
        ]

        default_dest = destinations[0]
        if dest_name is not None:
            matching = [d for d in destinations if d.name == dest_name]
            if not matching:
                raise ConfigError(f"Unknown destination name: {dest_name}")
            default_dest = matching[0]

        return cls(
            sources=state.sources,
            destinations=destinations,
            arch_priorities=state.arch_priorities or default_arch_priorities(),
            lists_dir=lists_dir,
            options=options,
            default_dest=default_dest,
            restrict_to_default_dest=dest_name is not None,
        )

    @property
    def lock_file(self) -> Path:
        return Path(str(self.options["lock_file"]))

    @property
    def tmp_dir(self) -> Path:
        return Path(str(self.options["tmp_dir"]))

    def get_option(self, name: str) -> object:
        """Current value of an option; KeyError for unknown names."""
        name = OPTION_ALIASES.get(name, name)
        if name not in OPTIONS:
            raise KeyError(name)
        return self.options[name]

    def set_option(self, name: str, value) -> bool:
        """Override an option at runtime. Unknown names are ignored."""
        name = OPTION_ALIASES.get(name, name)
        if name not in OPTIONS:
            logger.warning(f"Ignoring unknown option: {name}")
            return False
        kind, _ = OPTIONS[name]
        try:
            self.options[name] = _convert(name, kind, value)
        except ValueError as e:
            logger.error(f"Invalid value for option {name}: {e}")
            return False
        return True


def _under_root(path: Path, offline_root) -> Path:
    if not offline_root:
        return path
    return Path(str(offline_root)) / path.relative_to(path.anchor)


def _parse_file(path: Path, state: _ParseState) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        logger.error(f"Failed to read configuration file {path}: {e}")
        return

    logger.debug(f"Loading configuration from {path}")
    for lineno, line in enumerate(lines, start=1):
        tokens = split_directive(line)
        if tokens is None:
            logger.error(f"{path}:{lineno}: malformed line, skipping: {line.strip()!r}")
            continue
        if not tokens:
            continue
        try:
            _apply_directive(tokens, state, f"{path}:{lineno}")
        except _InvalidFile as e:
            logger.error(f"{path}:{lineno}: {e}, ignoring the rest of this file")
            return


def _apply_directive(tokens: list[str], state: _ParseState, where: str) -> None:
    kind, args = tokens[0], tokens[1:]

    if kind in ("src", "src/gz"):
        if len(args) < 2:
            raise _InvalidFile(f"{kind} needs a name and a URL")
        name, url = args[0], args[1]
        if any(source.name == name for source in state.sources):
            logger.error(f"{where}: duplicate source declaration {name}, skipping")
            return
        subpath = args[2] if len(args) > 2 else None
        state.sources.append(
            PackageSource(name=name, url=url, subpath=subpath, gzip=kind == "src/gz")
        )

    elif kind == "dest":
        if len(args) < 2:
            raise _InvalidFile("dest needs a name and a root directory")
        name, root = args[0], args[1]
        if name in state.dest_roots:
            logger.error(f"{where}: duplicate destination declaration {name}, skipping")
            return
        state.dest_roots[name] = Path(root)

    elif kind == "lists_dir":
        if not args:
            raise _InvalidFile("lists_dir needs a path")
        # The legacy form carries a storage type before the path
        state.lists_dir = Path(args[-1])

    elif kind == "arch":
        if not args:
            raise _InvalidFile("arch needs a name")
        priority = DEFAULT_ARCH_PRIORITY
        if len(args) > 1:
            try:
                priority = int(args[1])
            except ValueError:
                logger.error(f"{where}: invalid priority {args[1]!r} for arch {args[0]}")
                return
        else:
            logger.debug(f"{where}: no priority given for arch {args[0]}, using {priority}")
        state.arch_priorities[args[0]] = priority

    elif kind == "option":
        if not args:
            raise _InvalidFile("option needs a name")
        _apply_option(args[0], args[1] if len(args) > 1 else None, state, where)

    else:
        logger.error(f"{where}: unknown directive {kind!r}, skipping")


def _apply_option(name: str, value: str | None, state: _ParseState, where: str) -> None:
    name = OPTION_ALIASES.get(name, name)
    if name not in OPTIONS:
        logger.error(f"{where}: unknown option {name!r}, ignoring")
        return
    if name in state.options:
        logger.warning(f"{where}: duplicate option {name}, keeping the first value")
        return
    kind, _ = OPTIONS[name]
    try:
        state.options[name] = _convert(name, kind, value)
    except ValueError as e:
        logger.error(f"{where}: invalid value for option {name}: {e}")
