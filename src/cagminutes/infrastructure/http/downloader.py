from __future__ import annotations

import http.client
import logging
import re
import threading
import urllib.request
from pathlib import Path
from urllib.parse import unquote, urlparse

from cagminutes.core.config import ProcessingSettings
from cagminutes.core.errors import ConfigurationError, DownloadError
from cagminutes.core.files import ensure_directory, write_bytes_atomic
from cagminutes.core.hashing import url_fingerprint

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._\-]+")


class DownloadManager:
    """Fetches documents into a local cache, at most ``max_concurrent`` at a time."""

    def __init__(
        self,
        cache_dir: Path,
        *,
        max_concurrent: int = 3,
        timeout_seconds: float = 60.0,
        user_agent: str = ProcessingSettings.user_agent,
    ) -> None:
        if max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.cache_dir = cache_dir
        self.max_concurrent = max_concurrent
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self._slots = threading.BoundedSemaphore(max_concurrent)

    @classmethod
    def from_settings(cls, cache_dir: Path, settings: ProcessingSettings) -> DownloadManager:
        return cls(
            cache_dir,
            max_concurrent=settings.download_concurrency,
            timeout_seconds=settings.download_timeout_seconds,
            user_agent=settings.user_agent,
        )

    def cache_path_for(self, url: str) -> Path:
        """One cache file per URL: ``<url fingerprint>-<basename>``."""
        fingerprint = url_fingerprint(url)
        name = unquote(Path(urlparse(url).path).name)
        name = _UNSAFE_FILENAME_RE.sub("_", name).strip("._")
        if not name:
            return self.cache_dir / f"{fingerprint}.pdf"
        return self.cache_dir / f"{fingerprint}-{name}"

    def fetch(self, url: str, *, title: str | None = None, refresh: bool = False) -> Path | None:
        """Return the cached file for ``url``, downloading it first if needed.

        Network and file errors are logged and reported as ``None`` so the
        caller can skip the document without failing the batch.
        """
        label = title or url
        with self._slots:
            try:
                return self._fetch_locked(url, label, refresh)
            except (DownloadError, OSError) as exc:
                logger.error("Download failed for %s: %s", label, exc)
                return None

    def _fetch_locked(self, url: str, label: str, refresh: bool) -> Path:
        target = self.cache_path_for(url)
        if target.exists() and not refresh:
            logger.debug("Using cached copy of %s at %s", label, target)
            return target

        logger.info("Downloading %s", label)
        ensure_directory(self.cache_dir)
        try:
            request = urllib.request.Request(url, headers={"User-Agent": self.user_agent})
        except ValueError as exc:
            raise DownloadError(f"Invalid URL {url!r}: {exc}") from exc
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read()
        except http.client.HTTPException as exc:
            raise DownloadError(f"Bad HTTP response: {exc!r}") from exc
        write_bytes_atomic(target, body)
        return target
