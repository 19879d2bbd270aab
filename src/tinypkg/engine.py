"""Transaction engine: install, remove, upgrade and list refresh.

One Engine owns the package database, the status store and the lock for
its whole lifetime. Every public operation returns a ResultCode and never
raises for package-level failures; messages logged at ERROR during the
operation are available afterwards from `Engine.errors`.
"""

import gzip
import logging
import shutil
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

from tinypkg.core.checksum import ChecksumError, verify_checksum
from tinypkg.core.config import ConfigError, EngineConfig
from tinypkg.core.control import iter_packages
from tinypkg.core.database import PackageDatabase
from tinypkg.core.downloader import ByteProgress, DownloadError, HttpFetcher, RangeProgress
from tinypkg.core.extractor import InstallFlags, PackageInstaller
from tinypkg.core.lock import LockFile
from tinypkg.core.messages import ErrorCollector, format_error_list
from tinypkg.core.resolver import Clause, ClauseError, DependencyResolver
from tinypkg.core.signature import GpgVerifier, SignatureError
from tinypkg.core.status import StatusStore
from tinypkg.core.upgrade import prepare_upgrade_list
from tinypkg.core.version import compare
from tinypkg.models.package import Package, PackageSnapshot, StateFlag, Status, Want
from tinypkg.models.source import PackageDestination, PackageSource

logger = logging.getLogger(__name__)

# Share of an install spent downloading
DOWNLOAD_SHARE = 75


class EngineInitError(Exception):
    """The engine could not set up its working environment."""

    pass


class ResultCode(Enum):
    SUCCESS = "success"
    ALREADY_INSTALLED = "already-installed"
    NOT_INSTALLED = "not-installed"
    NOT_FOUND = "not-found"
    NOT_AVAILABLE = "not-available"
    DEPENDENCIES_FAILED = "dependencies-failed"
    DOWNLOAD_FAILED = "download-failed"
    UNKNOWN_ERROR = "unknown-error"


class Action(Enum):
    DOWNLOAD = "download"
    INSTALL = "install"
    REMOVE = "remove"


@dataclass(frozen=True)
class ProgressData:
    """One progress notification.

    `package` is None while package lists are being refreshed.
    """

    action: Action
    package: PackageSnapshot | None
    percentage: int


ProgressSink = Callable[[ProgressData], None]


class Fetcher(Protocol):
    def fetch(self, url: str, dest: Path, progress: ByteProgress | None = None) -> Path: ...

    def is_reachable(self, url: str) -> bool: ...


class Installer(Protocol):
    def install_unpacked(self, package: Package, flags: InstallFlags) -> int: ...

    def run_configure_script(self, package: Package) -> int: ...

    def remove_package(self, package: Package) -> int: ...

    def remove_obsolete_files(self, old: Package, new: Package) -> None: ...


class Engine:
    """Package database plus the transactions that mutate it.

    Construction takes the lock, creates a private temporary directory and
    loads every package list and status file. Use as a context manager, or
    call close(); nothing is persisted implicitly on close.
    """

    def __init__(
        self,
        config: EngineConfig,
        fetcher: Fetcher | None = None,
        installer: Installer | None = None,
        verifier: GpgVerifier | None = None,
    ):
        self.config = config
        self._default_fetcher = fetcher is None
        self.fetcher = fetcher or self._make_fetcher()
        self.installer = installer or PackageInstaller()
        self._verifier = verifier
        self._overrides: dict[str, object] = {}

        self._lock = LockFile(config.lock_file)
        self._lock.acquire()

        try:
            config.tmp_dir.mkdir(parents=True, exist_ok=True)
            self.tmp_dir = Path(tempfile.mkdtemp(prefix="tinypkg-", dir=config.tmp_dir))
        except OSError as e:
            self._lock.release()
            raise EngineInitError(f"Creating temp dir in {config.tmp_dir} failed: {e}") from e

        self._collector = ErrorCollector()
        logging.getLogger("tinypkg").addHandler(self._collector)
        self._load()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        """Release the lock and remove the temporary directory."""
        if not self._lock.held:
            return
        logging.getLogger("tinypkg").removeHandler(self._collector)
        try:
            shutil.rmtree(self.tmp_dir)
        except OSError as e:
            logger.warning(f"Failed to remove {self.tmp_dir}: {e}")
        self._lock.release()

    # -- setup -------------------------------------------------------------

    def _make_fetcher(self) -> HttpFetcher:
        return HttpFetcher(
            proxy=self.config.get_option("http_proxy"),
            no_proxy=self.config.get_option("no_proxy"),
        )

    def _load(self) -> None:
        self.database = PackageDatabase(self.config.arch_priorities, self.config.sources)
        for source in self.config.sources:
            self._load_list(source)
        self.status = StatusStore(self.config.destinations)
        self.status.load_into(self.database)
        self.resolver = DependencyResolver(self.database)
        logger.debug(f"Loaded {len(self.database)} packages")

    def _load_list(self, source: PackageSource) -> None:
        path = self.config.lists_dir / source.name
        if not path.exists():
            logger.debug(f"No package list for {source.name}, run update first")
            return
        try:
            with open(path, encoding="utf-8") as f:
                self.database.add_all(iter_packages(f), source)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read package list {path}: {e}")

    def reload(self) -> None:
        """Discard the database and load everything again from disk.

        Configuration files are re-read when the configuration came from
        files; options set at runtime are kept. Raises ConfigError, leaving
        the current database untouched, when the files no longer load.
        """
        if self.config.load_args:
            config = EngineConfig.load(**self.config.load_args)
            for name, value in self._overrides.items():
                config.set_option(name, value)
            self.config = config
            if self._default_fetcher:
                self.fetcher = self._make_fetcher()
        self._load()

    # -- options and messages ---------------------------------------------

    def get_option(self, name: str) -> object:
        return self.config.get_option(name)

    def set_option(self, name: str, value) -> None:
        if not self.config.set_option(name, value):
            return
        self._overrides[name] = value
        if self._default_fetcher and name in ("http_proxy", "no_proxy"):
            self.fetcher = self._make_fetcher()

    @property
    def errors(self) -> list[str]:
        """Errors logged during the most recent operation."""
        return list(self._collector.messages)

    def format_errors(self) -> str:
        return format_error_list(self.errors)

    def _begin(self) -> None:
        self._collector.clear()

    def _option(self, name: str) -> bool:
        return bool(self.config.get_option(name))

    def _dest_filter(self) -> PackageDestination | None:
        return self.config.default_dest if self.config.restrict_to_default_dest else None

    @staticmethod
    def _emit(
        progress: ProgressSink | None,
        action: Action,
        package: Package | None,
        percentage: int,
    ) -> None:
        if progress is not None:
            snapshot = package.snapshot() if package is not None else None
            progress(ProgressData(action=action, package=snapshot, percentage=percentage))

    def _missing(self, name: str) -> ResultCode:
        if next(self.database.variants(name), None) is None:
            logger.error(f"Unknown package '{name}'")
            return ResultCode.NOT_FOUND
        logger.error(f"Package {name} is not installed")
        return ResultCode.NOT_INSTALLED

    # -- install -----------------------------------------------------------

    def install(self, name: str, progress: ProgressSink | None = None) -> ResultCode:
        """Install the best candidate of `name` and its dependencies."""
        self._begin()
        installed = self.database.fetch_installed_by_name(name, self._dest_filter())
        if installed is not None and not self._option("force_reinstall"):
            logger.info(f"Package {name} is already installed")
            return ResultCode.ALREADY_INSTALLED

        package = self.database.fetch_best_candidate(name)
        if package is None:
            if installed is None:
                logger.error(f"Unknown package '{name}'")
                return ResultCode.NOT_FOUND
            logger.error(f"No candidate available to reinstall {name}")
            return ResultCode.NOT_AVAILABLE

        self._emit(progress, Action.INSTALL, package, 0)
        return self._install_with_deps(package, progress, user_requested=True)

    def _install_with_deps(
        self,
        package: Package,
        progress: ProgressSink | None,
        finalize: bool = True,
        user_requested: bool = False,
    ) -> ResultCode:
        """Resolve, download, unpack and (when finalizing) configure and persist.

        Nothing about `package` changes until resolution and every download
        have succeeded.
        """
        deps = self._resolve(package)
        if deps is None:
            return ResultCode.DEPENDENCIES_FAILED

        code = self._download_all(deps + [package], progress)
        if code is not ResultCode.SUCCESS:
            return code

        self._emit(progress, Action.INSTALL, package, DOWNLOAD_SHARE)

        # Dependencies were discovered breadth-first; unpack the deepest first
        for dep in reversed(deps):
            if not self._unpack(dep, auto=True):
                return ResultCode.UNKNOWN_ERROR
        if user_requested:
            package.flags |= StateFlag.USER
        if not self._unpack(package):
            return ResultCode.UNKNOWN_ERROR

        if finalize:
            if not self._configure_unpacked():
                return ResultCode.UNKNOWN_ERROR
            if not self._persist():
                return ResultCode.UNKNOWN_ERROR

        self._emit(progress, Action.INSTALL, package, 100)
        return ResultCode.SUCCESS

    def _resolve(self, package: Package) -> list[Package] | None:
        if self._option("nodeps"):
            return []

        resolution = self.resolver.resolve(package)
        if resolution.ok:
            return resolution.packages

        missing = ", ".join(resolution.unresolved)
        if self._option("force_depends"):
            logger.warning(f"Installing {package.name} despite unresolved dependencies: {missing}")
            return resolution.packages
        logger.error(f"Cannot install {package.name}, unresolved dependencies: {missing}")
        return None

    def _download_all(self, plan: list[Package], progress: ProgressSink | None) -> ResultCode:
        """Fetch every package in order, each getting an equal progress slice."""
        total = len(plan)
        for i, package in enumerate(plan):
            start = DOWNLOAD_SHARE * i // total
            end = DOWNLOAD_SHARE * (i + 1) // total
            code = self._download(package, start, end, progress)
            if code is not ResultCode.SUCCESS:
                return code
        return ResultCode.SUCCESS

    def _download(
        self,
        package: Package,
        start: int,
        end: int,
        progress: ProgressSink | None,
    ) -> ResultCode:
        ranged = RangeProgress(
            start, end, lambda pct: self._emit(progress, Action.DOWNLOAD, package, pct)
        )
        ranged(0, 1)

        if package.local_filename and Path(package.local_filename).exists():
            ranged(1, 1)
            return ResultCode.SUCCESS

        if package.source is None or not package.filename:
            logger.error(f"Package {package.name} is not available from any configured source")
            return ResultCode.NOT_AVAILABLE

        target = self._download_path(package)
        if not (target.exists() and self._checksum_ok(target, package, quiet=True)):
            url = package.source.package_url(package.filename)
            try:
                self.fetcher.fetch(url, target, ranged)
            except DownloadError as e:
                logger.error(f"Failed to download {package.name}: {e}")
                return ResultCode.DOWNLOAD_FAILED
            if not self._checksum_ok(target, package):
                target.unlink(missing_ok=True)
                return ResultCode.DOWNLOAD_FAILED

        package.local_filename = str(target)
        ranged(1, 1)
        return ResultCode.SUCCESS

    def _download_path(self, package: Package) -> Path:
        cache = self.config.get_option("cache")
        directory = Path(str(cache)) if cache else self.tmp_dir
        return directory / Path(package.filename).name

    def _checksum_ok(self, path: Path, package: Package, quiet: bool = False) -> bool:
        try:
            return verify_checksum(path, package)
        except ChecksumError as e:
            if not quiet:
                logger.error(str(e))
            return False

    def _unpack(self, package: Package, auto: bool = False) -> bool:
        """Unpack into the default destination, replacing any older variant."""
        dest = self.config.default_dest
        old = self.database.fetch_installed_by_name(package.name, dest)

        flags = InstallFlags.NONE
        if old is not None:
            same = compare(old.version, package.version) == 0
            flags = InstallFlags.REINSTALL if same else InstallFlags.UPGRADE
            package.flags |= old.flags & (StateFlag.USER | StateFlag.HOLD)
            package.auto_installed = old.auto_installed and not package.user_requested
        else:
            package.auto_installed = auto and not package.user_requested

        package.dest = dest
        status = self.installer.install_unpacked(package, flags)
        if status != 0:
            logger.error(f"Failed to unpack {package.name} (status {status})")
            package.status = Status.HALF_INSTALLED
            return False

        if old is not None:
            self.installer.remove_obsolete_files(old, package)
            old.status = Status.NOT_INSTALLED
            old.want = Want.UNKNOWN
            self.database.mark_removed(old)

        package.status = Status.UNPACKED
        package.want = Want.INSTALL
        package.installed_time = int(time.time())
        return True

    def _configure_unpacked(self) -> bool:
        """Configure every unpacked package in the database."""
        failures = 0
        for package in self.database.fetch_available():
            if package.status != Status.UNPACKED:
                continue
            status = self.installer.run_configure_script(package)
            if status != 0:
                logger.error(f"{package.name}.postinst returned status {status}")
                failures += 1
                continue
            package.status = Status.INSTALLED
            package.flags &= ~StateFlag.PREFER
            self.database.mark_installed(package)
        return failures == 0

    def _persist(self) -> bool:
        self.status.noaction = self._option("noaction")
        return self.status.write_all(self.database)

    # -- remove ------------------------------------------------------------

    def remove(self, name: str, progress: ProgressSink | None = None) -> ResultCode:
        """Remove the installed variant of `name`.

        Installed packages depending on it are left alone.
        """
        self._begin()
        package = self.database.fetch_installed_by_name(name, self._dest_filter())
        if package is None:
            return self._missing(name)

        self._emit(progress, Action.REMOVE, package, 0)
        dependents = self._installed_dependents(name)
        if dependents:
            logger.warning(f"Removing {name}, still needed by: {', '.join(dependents)}")

        self._emit(progress, Action.REMOVE, package, 25)
        status = self.installer.remove_package(package)
        if status != 0:
            logger.error(f"Failed to remove {name} (status {status})")
        else:
            package.status = Status.NOT_INSTALLED
            package.want = Want.DEINSTALL
            package.flags &= ~StateFlag.USER
            package.files_changed = False
            self.database.mark_removed(package)

        self._emit(progress, Action.REMOVE, package, 75)
        persisted = self._persist()
        self._emit(progress, Action.REMOVE, package, 100)

        if status != 0 or not persisted:
            return ResultCode.UNKNOWN_ERROR
        return ResultCode.SUCCESS

    def _installed_dependents(self, name: str) -> list[str]:
        dependents = []
        for package in self.database.fetch_all_installed():
            for text in package.pre_depends + package.depends:
                try:
                    clause = Clause.parse(text)
                except ClauseError:
                    continue
                if any(rel.name == name for rel in clause.alternatives):
                    dependents.append(package.name)
                    break
        return dependents

    # -- upgrade -----------------------------------------------------------

    def upgrade(self, name: str, progress: ProgressSink | None = None) -> ResultCode:
        """Upgrade an installed package to its best candidate, if newer."""
        self._begin()
        installed = self.database.fetch_installed_by_name(name, self._dest_filter())
        if installed is None:
            return self._missing(name)
        return self._upgrade_one(installed, progress, finalize=True)

    def _upgrade_one(
        self,
        installed: Package,
        progress: ProgressSink | None,
        finalize: bool,
    ) -> ResultCode:
        if StateFlag.HOLD in installed.flags:
            logger.info(f"{installed.name} is on hold, not upgrading")
            return ResultCode.SUCCESS

        candidate = self.database.fetch_best_candidate(installed.name)
        if candidate is None or compare(candidate.version, installed.version) <= 0:
            logger.info(f"{installed.name} is already the newest version")
            return ResultCode.SUCCESS

        logger.info(
            f"Upgrading {installed.name} from {installed.version_string} "
            f"to {candidate.version_string}"
        )
        self._emit(progress, Action.INSTALL, candidate, 0)
        return self._install_with_deps(candidate, progress, finalize)

    def upgrade_all(self, progress: ProgressSink | None = None) -> ResultCode:
        """Upgrade every installed package, continuing past failures.

        The configure pass and the status write happen once, at the end,
        whatever happened to individual packages. Progress covers the whole
        run: 0 first, `99 * done / total` after each entry, then 100.
        """
        self._begin()
        active = prepare_upgrade_list(self.database, self._dest_filter())
        failures = 0
        first_failure = None
        self._emit(progress, Action.INSTALL, None, 0)

        entries = list(active)
        for i, package in enumerate(entries):
            # Already replaced while upgrading an earlier entry's dependencies
            if package.is_installed:
                code = self._upgrade_one(package, None, finalize=False)
                if code is not ResultCode.SUCCESS:
                    failures += 1
                    first_failure = first_failure or code
            self._emit(progress, Action.INSTALL, package, 99 * (i + 1) // len(entries))
        active.delete()

        configured = self._configure_unpacked()
        persisted = self._persist()
        self._emit(progress, Action.INSTALL, None, 100)

        if failures:
            logger.error(f"{failures} package(s) failed to upgrade")
            return first_failure
        if not configured or not persisted:
            return ResultCode.UNKNOWN_ERROR
        return ResultCode.SUCCESS

    # -- package lists -----------------------------------------------------

    def update_lists(self, progress: ProgressSink | None = None) -> ResultCode:
        """Fetch every source's package list, then reload the database."""
        self._begin()
        try:
            self.config.lists_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Couldn't create lists directory {self.config.lists_dir}: {e}")
            return ResultCode.UNKNOWN_ERROR

        sources = list(self.config.sources)
        download_failures = 0
        other_failures = 0
        self._emit(progress, Action.DOWNLOAD, None, 0)

        for i, source in enumerate(sources):
            code = self._update_source(source)
            if code is ResultCode.DOWNLOAD_FAILED:
                download_failures += 1
            elif code is not ResultCode.SUCCESS:
                other_failures += 1
            self._emit(progress, Action.DOWNLOAD, None, 100 * (i + 1) // len(sources))

        try:
            self.reload()
        except ConfigError as e:
            logger.error(f"Couldn't reload configuration: {e}")
            return ResultCode.UNKNOWN_ERROR

        if download_failures:
            return ResultCode.DOWNLOAD_FAILED
        if other_failures:
            return ResultCode.UNKNOWN_ERROR
        return ResultCode.SUCCESS

    def _update_source(self, source: PackageSource) -> ResultCode:
        list_path = self.config.lists_dir / source.name
        downloaded = self.tmp_dir / f"{source.name}.{source.list_name}"

        logger.info(f"Downloading {source.list_url}")
        try:
            self.fetcher.fetch(source.list_url, downloaded)
        except DownloadError as e:
            logger.error(f"Failed to update {source.name}: {e}")
            return ResultCode.DOWNLOAD_FAILED

        staged = list_path.with_name(list_path.name + ".new")
        try:
            if source.gzip:
                with gzip.open(downloaded, "rb") as src, open(staged, "wb") as dst:
                    shutil.copyfileobj(src, dst)
            else:
                shutil.copyfile(downloaded, staged)
            staged.replace(list_path)
        except (OSError, EOFError) as e:
            staged.unlink(missing_ok=True)
            logger.error(f"Failed to store package list for {source.name}: {e}")
            return ResultCode.UNKNOWN_ERROR
        finally:
            downloaded.unlink(missing_ok=True)

        required = self._option("require_signature")
        if required or self._option("check_signature"):
            if not self._verify_list(source, list_path, required):
                if required:
                    list_path.unlink(missing_ok=True)
                    return ResultCode.UNKNOWN_ERROR
        return ResultCode.SUCCESS

    def _signature_verifier(self) -> GpgVerifier:
        if self._verifier is None:
            keyring = self.config.get_option("signature_keyring")
            self._verifier = GpgVerifier(str(keyring) if keyring else None)
        return self._verifier

    def _verify_list(self, source: PackageSource, list_path: Path, required: bool) -> bool:
        report = logger.error if required else logger.warning
        signature = self.tmp_dir / f"{source.name}.sig"
        try:
            self.fetcher.fetch(source.signature_url, signature)
            if self._signature_verifier().verify(list_path, signature):
                return True
            report(f"Signature check failed for {source.name}")
        except (DownloadError, SignatureError) as e:
            report(f"Signature check for {source.name} not possible: {e}")
        finally:
            signature.unlink(missing_ok=True)
        return False

    def repository_accessibility_check(self) -> int:
        """Probe each distinct source host once; return how many are unreachable."""
        self._begin()
        probes: dict[str, str] = {}
        for source in self.config.sources:
            parsed = urlparse(source.url)
            if parsed.scheme in ("", "file"):
                probes.setdefault(source.url, f"{source.url.rstrip('/')}/index.html")
            else:
                host = f"{parsed.scheme}://{parsed.netloc}"
                probes.setdefault(host, f"{host}/index.html")

        unreachable = 0
        for host, url in probes.items():
            if not self.fetcher.is_reachable(url):
                logger.error(f"Repository {host} is not accessible")
                unreachable += 1
        return unreachable

    # -- queries -----------------------------------------------------------

    def list_packages(self) -> list[PackageSnapshot]:
        return [package.snapshot() for package in self.database.fetch_available()]

    def list_installed_packages(self) -> list[PackageSnapshot]:
        return [package.snapshot() for package in self.database.fetch_all_installed()]

    def list_upgradable_packages(self) -> list[PackageSnapshot]:
        """Best candidates newer than what is installed."""
        active = prepare_upgrade_list(self.database, self._dest_filter())
        upgradable = []
        for installed in active:
            candidate = self.database.fetch_best_candidate(installed.name)
            if candidate is not None and compare(candidate.version, installed.version) > 0:
                upgradable.append(candidate.snapshot())
        active.delete()
        return upgradable

    def find_package(
        self,
        name: str,
        version: str,
        architecture: str | None = None,
        repository: str | None = None,
    ) -> PackageSnapshot | None:
        package = self.database.fetch_by_name_version(name, version, architecture, repository)
        return package.snapshot() if package is not None else None
