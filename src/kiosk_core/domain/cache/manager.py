"""
Local content cache for large media referenced by playlist items.

Each cacheable URL maps to exactly one file named after the SHA-256 of the
URL. Downloads stream into a temporary sibling and are renamed into place
only once complete, so a file at the final path is always whole. A file at
the final path is treated as Ready even across restarts.
"""

import hashlib
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlparse

import requests
from loguru import logger

from .models import CacheEntry, CacheStatus

TEMP_SUFFIX = ".tmp"

DEFAULT_EXTENSIONS = (
    ".mp4",
    ".webm",
    ".avi",
    ".mov",
    ".mkv",
    ".m4v",
    ".flv",
    ".wmv",
    ".mpg",
    ".mpeg",
    ".3gp",
)


class ContentCache:
    """URL-keyed download cache with single-flight downloads.

    All metadata access goes through one lock. Downloads run on daemon
    threads and never raise to callers; failures land on the entry as
    CacheStatus.ERROR.
    """

    def __init__(
        self,
        directory: Path,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        default_extension: str = ".mp4",
        download_timeout: float = 600.0,
        chunk_size: int = 8192,
        http: Optional[requests.Session] = None,
    ):
        self.directory = Path(directory).resolve()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.default_extension = default_extension
        self.download_timeout = download_timeout
        self.chunk_size = chunk_size
        self._http = http or requests.Session()
        self._entries: dict[str, CacheEntry] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._downloads: dict[str, CacheEntry] = {}  # In flight, referenced or not
        self._lock = threading.Lock()

    def is_cacheable(self, url: str) -> bool:
        """Check whether a URL points at media worth caching.

        Only absolute http(s) URLs whose path ends in a known media
        extension qualify.
        """
        if not url:
            return False
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return False
        return parsed.path.lower().endswith(self.extensions)

    def path_for(self, url: str) -> Path:
        """Deterministic final path for a URL."""
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        suffix = Path(urlparse(url).path).suffix.lower()
        if suffix not in self.extensions:
            suffix = self.default_extension
        return self.directory / f"{digest}{suffix}"

    def get_status(self, url: str) -> CacheStatus:
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None:
                return entry.status
        if self.is_cacheable(url) and self.path_for(url).exists():
            return CacheStatus.READY
        return CacheStatus.NOT_CACHED

    def get_local_path(self, url: str) -> Optional[Path]:
        """Return the cached file for a URL, only when it is Ready on disk."""
        if self.get_status(url) != CacheStatus.READY:
            return None
        path = self.path_for(url)
        return path if path.exists() else None

    def get_entry(self, url: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(url)

    def entries(self) -> list[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def request_cache(self, url: str) -> bool:
        """Ensure a download for the URL is in flight or complete.

        Returns immediately. Returns True only when this call started a new
        download; concurrent requests for the same URL share one download.
        """
        if not self.is_cacheable(url):
            return False

        final_path = self.path_for(url)
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None and entry.status in (
                CacheStatus.DOWNLOADING,
                CacheStatus.READY,
            ):
                if entry.status == CacheStatus.DOWNLOADING or final_path.exists():
                    return False

            adopted = self._downloads.get(url)
            if adopted is not None:
                # Dropped by reconcile while still downloading
                self._entries[url] = adopted
                logger.info(f"Re-adopting in-flight download of {url}")
                return False

            now = datetime.now()
            if final_path.exists():
                # Survived from a previous run
                self._entries[url] = CacheEntry(
                    url=url,
                    local_path=final_path,
                    status=CacheStatus.READY,
                    started_at=now,
                    completed_at=now,
                    size_bytes=final_path.stat().st_size,
                )
                return False

            entry = CacheEntry(
                url=url,
                local_path=final_path,
                status=CacheStatus.DOWNLOADING,
                started_at=now,
            )
            self._entries[url] = entry
            thread = threading.Thread(
                target=self._download,
                args=(entry,),
                name=f"cache-download-{final_path.stem[:8]}",
                daemon=True,
            )
            self._threads[url] = thread
            self._downloads[url] = entry

        logger.info(f"Caching {url} -> {final_path.name}")
        thread.start()
        return True

    def _download(self, entry: CacheEntry) -> None:
        temp_path = entry.local_path.with_name(entry.local_path.name + TEMP_SUFFIX)
        size = 0
        try:
            with self._http.get(
                entry.url, stream=True, timeout=self.download_timeout
            ) as response:
                response.raise_for_status()
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
                            size += len(chunk)
            os.replace(temp_path, entry.local_path)
        except (requests.RequestException, OSError) as e:
            logger.error(f"Failed to cache {entry.url}: {e}")
            _unlink_quietly(temp_path)
            with self._lock:
                entry.status = CacheStatus.ERROR
                entry.error = str(e)
                entry.completed_at = datetime.now()
                self._threads.pop(entry.url, None)
                self._downloads.pop(entry.url, None)
            return

        with self._lock:
            self._threads.pop(entry.url, None)
            self._downloads.pop(entry.url, None)
            orphaned = self._entries.get(entry.url) is not entry
            if orphaned:
                # Reconciled away while downloading. Unlinked under the lock so
                # a concurrent request_cache never sees the file as Ready.
                _unlink_quietly(entry.local_path)
            else:
                entry.status = CacheStatus.READY
                entry.size_bytes = size
                entry.completed_at = datetime.now()

        if orphaned:
            logger.info(f"Discarded download no longer referenced: {entry.url}")
        else:
            logger.info(f"Cached {entry.url} ({size / (1024 * 1024):.1f} MB)")

    def reconcile(self, active_urls: Iterable[str]) -> int:
        """Drop every entry and file not referenced by the active URL set.

        Entries still downloading are forgotten here but their transfer keeps
        running: a later request_cache re-adopts it, otherwise the thread
        deletes the finished file. Returns the number of files removed.
        """
        keep_urls = {url for url in active_urls if self.is_cacheable(url)}
        keep_names = {self.path_for(url).name for url in keep_urls}

        with self._lock:
            in_flight = {
                entry.local_path.name + TEMP_SUFFIX for entry in self._downloads.values()
            }
            stale = [url for url in self._entries if url not in keep_urls]
            for url in stale:
                self._entries.pop(url)

        removed = 0
        for path in self.directory.iterdir():
            if not path.is_file() or path.name in keep_names or path.name in in_flight:
                continue
            if path.name.endswith(TEMP_SUFFIX) and path.name[: -len(TEMP_SUFFIX)] in keep_names:
                continue
            if _unlink_quietly(path):
                removed += 1
                logger.info(f"Removed unreferenced cache file: {path.name}")

        if removed or stale:
            logger.info(
                f"Cache reconciled: {len(stale)} entries dropped, {removed} files removed"
            )
        return removed

    def wait_for_downloads(self, timeout: Optional[float] = None) -> None:
        """Block until every in-flight download thread finishes."""
        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            thread.join(timeout)


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not delete {path}: {e}")
        return False
