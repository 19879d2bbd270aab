"""Download functionality with progress reporting."""

import logging
import shutil
from collections.abc import Callable
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

logger = logging.getLogger(__name__)

# (bytes downloaded so far, total bytes or 0 when unknown)
ByteProgress = Callable[[int, int], None]

CHUNK_SIZE = 8192


class DownloadError(Exception):
    """Error during download."""

    pass


class RangeProgress:
    """Rescale byte progress into a [start, end] percentage slice."""

    def __init__(self, start: int, end: int, emit: Callable[[int], None]):
        self.start = start
        self.end = end
        self.emit = emit
        self._last: int | None = None

    def __call__(self, downloaded: int, total: int) -> None:
        if total < 1:
            return
        fraction = min(downloaded / total, 1.0)
        percentage = self.start + int(fraction * (self.end - self.start))
        # Rounding can produce the same value twice
        if percentage == self._last:
            return
        self._last = percentage
        self.emit(percentage)


def _host_matches(host: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.strip().lstrip(".")
        if pattern and (host == pattern or host.endswith("." + pattern)):
            return True
    return False


class HttpFetcher:
    """Fetch collaborator backed by httpx, with file:// support for local feeds."""

    def __init__(
        self,
        proxy: str | None = None,
        no_proxy: str | None = None,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.proxy = proxy
        self.no_proxy = [p for p in (no_proxy or "").split(",") if p.strip()]
        self.timeout = timeout
        self.transport = transport

    def _client(self, url: str) -> httpx.Client:
        proxy = self.proxy
        if proxy and _host_matches(urlparse(url).hostname or "", self.no_proxy):
            proxy = None
        return httpx.Client(
            follow_redirects=True,
            timeout=self.timeout,
            proxy=proxy,
            transport=self.transport,
        )

    def fetch(self, url: str, dest: Path, progress: ByteProgress | None = None) -> Path:
        """Download `url` to `dest`.

        The file only appears at `dest` once the transfer completed.
        Raises DownloadError on any failure.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")

        try:
            parsed = urlparse(url)
            if parsed.scheme in ("", "file"):
                self._copy_local(Path(unquote(parsed.path)), partial, progress)
            else:
                self._stream(url, partial, progress)
            partial.replace(dest)
        except DownloadError:
            partial.unlink(missing_ok=True)
            raise
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {url}: {e}") from e

        logger.debug(f"Downloaded {url} to {dest}")
        return dest

    def _copy_local(self, source: Path, target: Path, progress: ByteProgress | None) -> None:
        if not source.is_file():
            raise DownloadError(f"Failed to download {source}: no such file")
        shutil.copyfile(source, target)
        if progress is not None:
            size = target.stat().st_size
            progress(size, size)

    def _stream(self, url: str, target: Path, progress: ByteProgress | None) -> None:
        try:
            with self._client(url) as client:
                with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise DownloadError(
                            f"Failed to download {url}: HTTP {response.status_code}"
                        )

                    total = int(response.headers.get("content-length", 0))
                    downloaded = 0
                    with open(target, "wb") as f:
                        for chunk in response.iter_bytes(chunk_size=CHUNK_SIZE):
                            f.write(chunk)
                            downloaded += len(chunk)
                            if progress is not None:
                                progress(downloaded, total)
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e

    def is_reachable(self, url: str) -> bool:
        """True when the server answers at all, even with an error status."""
        parsed = urlparse(url)
        if parsed.scheme in ("", "file"):
            return Path(unquote(parsed.path)).parent.exists()
        try:
            with self._client(url) as client:
                client.head(url)
        except httpx.HTTPError as e:
            logger.debug(f"{url} is unreachable: {e}")
            return False
        return True
