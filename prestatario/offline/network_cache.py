# =============================================================================
# prestatario/offline/network_cache.py
# Network Cache for the App Shell and Static Assets
# =============================================================================
"""
NetworkCache - network-first HTTP cache with an install/activate life cycle.

Life cycle:
    install   pre-cache the shell assets into the current named cache
              (all or nothing), then activate straight away
    activate  delete every other named cache, take control of fetches
    fetch     intercept requests (see `fetch`)

Directory Structure:
-------------------
network_cache/
├── prestatario-cache-v1/
│   ├── index.json          # url -> status, headers, body file
│   └── <md5>.body
└── prestatario-cache-v0/   # removed on the next activate
"""

from __future__ import annotations
import hashlib
import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse

import requests

from prestatario.errors import NetworkCacheError, NoCachedResponseError
from prestatario.logging import get_logger, LogContext

logger = get_logger(__name__)


@dataclass
class CachedResponse:
    """An HTTP response, live or replayed from the cache."""
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    @classmethod
    def from_requests(cls, response: requests.Response) -> CachedResponse:
        return cls(
            url=response.url,
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )


def _cache_key(url: str) -> str:
    return urldefrag(url)[0]


class NamedCache:
    """One named cache: an index file plus one body file per URL."""

    INDEX_FILE = "index.json"

    def __init__(self, directory: Path):
        self.directory = directory
        self.name = directory.name
        self.directory.mkdir(parents=True, exist_ok=True)
        self._index: Dict[str, Dict[str, Any]] = self._load_index()

    def _load_index(self) -> Dict[str, Dict[str, Any]]:
        index_path = self.directory / self.INDEX_FILE
        if not index_path.exists():
            return {}
        try:
            with open(index_path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Error loading cache index for {self.name}: {e}")
            return {}

    def _save_index(self) -> None:
        with open(self.directory / self.INDEX_FILE, "w") as f:
            json.dump(self._index, f, indent=2)

    def put(self, url: str, response: CachedResponse) -> None:
        key = _cache_key(url)
        body_file = hashlib.md5(key.encode("utf-8")).hexdigest() + ".body"
        (self.directory / body_file).write_bytes(response.content)
        self._index[key] = {
            "status_code": response.status_code,
            "headers": response.headers,
            "body_file": body_file,
            "stored_at": datetime.now().isoformat(),
        }
        self._save_index()

    def match(self, url: str) -> Optional[CachedResponse]:
        key = _cache_key(url)
        entry = self._index.get(key)
        if entry is None:
            return None
        body_path = self.directory / entry["body_file"]
        if not body_path.exists():
            return None
        return CachedResponse(
            url=key,
            status_code=entry["status_code"],
            headers=entry.get("headers", {}),
            content=body_path.read_bytes(),
            from_cache=True,
        )

    def keys(self) -> List[str]:
        return list(self._index.keys())


class CacheStorage:
    """All named caches under one root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def keys(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def has(self, name: str) -> bool:
        return (self.root / name).is_dir()

    def open(self, name: str) -> NamedCache:
        return NamedCache(self.root / name)

    def delete(self, name: str) -> bool:
        path = self.root / name
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        return True

    def match(self, url: str) -> Optional[CachedResponse]:
        """First match across every named cache."""
        for name in self.keys():
            response = self.open(name).match(url)
            if response is not None:
                return response
        return None


class WorkerState(Enum):
    """Life-cycle states of the network cache."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


SyncHandler = Callable[[str], Any]


class NetworkCache:
    """
    Network-first fetches with a cached fallback for the app shell.

    Usage:
        cache = NetworkCache(settings.base_url, CacheStorage(dir), settings.cache_name,
                             excluded_hosts=[settings.supabase_host])
        cache.register()
        response = cache.fetch("/", navigate=True)
    """

    ROOT_DOCUMENT = "/"

    def __init__(
        self,
        base_url: str,
        storage: CacheStorage,
        cache_name: str,
        shell_assets: Iterable[str] = ("/", "/manifest.json"),
        excluded_hosts: Iterable[Optional[str]] = (),
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url
        self.storage = storage
        self.cache_name = cache_name
        self.shell_assets = tuple(shell_assets)
        self.excluded_hosts = {h for h in excluded_hosts if h}
        self.session = session or requests.Session()
        self.timeout = timeout
        self.state = WorkerState.PARSED
        self.controlling = False
        self._sync_handlers: List[SyncHandler] = []

    def _absolute(self, url: str) -> str:
        return urljoin(self.base_url, url)

    # =========================================================================
    # LIFE CYCLE
    # =========================================================================

    def register(self) -> None:
        """Install, then activate without waiting for older instances."""
        self.install()
        self.activate()

    def install(self) -> None:
        """
        Pre-cache the shell assets into the current named cache.

        Raises:
            NetworkCacheError: an asset could not be fetched; nothing is stored
        """
        self.state = WorkerState.INSTALLING
        with LogContext(logger, f"Installing {self.cache_name}"):
            fetched = []
            for asset in self.shell_assets:
                url = self._absolute(asset)
                try:
                    response = self.session.get(url, timeout=self.timeout)
                except requests.RequestException as e:
                    self.state = WorkerState.REDUNDANT
                    raise NetworkCacheError(
                        f"Could not fetch shell asset: {e}", cache_name=self.cache_name, url=url
                    ) from e
                if response.status_code != 200:
                    self.state = WorkerState.REDUNDANT
                    raise NetworkCacheError(
                        f"Shell asset returned HTTP {response.status_code}",
                        cache_name=self.cache_name,
                        url=url,
                    )
                fetched.append((url, CachedResponse.from_requests(response)))

            cache = self.storage.open(self.cache_name)
            for url, response in fetched:
                cache.put(url, response)

        self.state = WorkerState.INSTALLED

    def activate(self) -> List[str]:
        """
        Delete every other named cache and take control of fetches.

        Returns:
            Names of the deleted caches
        """
        if self.state not in (WorkerState.INSTALLED, WorkerState.ACTIVATED):
            raise NetworkCacheError("Cannot activate before install", cache_name=self.cache_name)

        self.state = WorkerState.ACTIVATING
        deleted = []
        for name in self.storage.keys():
            if name != self.cache_name:
                self.storage.delete(name)
                deleted.append(name)
        if deleted:
            logger.info(f"Deleted old caches: {deleted}")

        self.state = WorkerState.ACTIVATED
        self.controlling = True
        return deleted

    # =========================================================================
    # FETCH
    # =========================================================================

    def should_intercept(self, method: str, url: str) -> bool:
        """Only GETs to non-backend hosts, and only once in control."""
        if not self.controlling:
            return False
        if method.upper() != "GET":
            return False
        host = urlparse(self._absolute(url)).hostname
        return host not in self.excluded_hosts

    def fetch(self, url: str, method: str = "GET", navigate: bool = False, **kwargs) -> CachedResponse:
        """
        Fetch a URL through the cache.

        - Non-GET and backend requests go to the network untouched.
        - Other GETs go to the network first; 200 responses are stored.
        - On network failure: the cached match, else the cached root
          document for navigations, else NoCachedResponseError.

        Args:
            url: Absolute URL or path relative to base_url
            method: HTTP method
            navigate: True for page navigations (falls back to the shell)
        """
        absolute = self._absolute(url)
        kwargs.setdefault("timeout", self.timeout)

        if not self.should_intercept(method, absolute):
            response = self.session.request(method, absolute, **kwargs)
            return CachedResponse.from_requests(response)

        try:
            response = self.session.get(absolute, **kwargs)
        except requests.RequestException as e:
            logger.info(f"Network failed for {absolute}, using cache: {e}")
            return self._fallback(absolute, navigate)

        live = CachedResponse.from_requests(response)
        if response.status_code == 200:
            try:
                self.storage.open(self.cache_name).put(absolute, live)
            except OSError as e:
                logger.warning(f"Could not cache {absolute}: {e}")
        return live

    def _fallback(self, url: str, navigate: bool) -> CachedResponse:
        cached = self.storage.match(url)
        if cached is not None:
            return cached

        if navigate:
            shell = self.storage.match(self._absolute(self.ROOT_DOCUMENT))
            if shell is not None:
                logger.info(f"Serving cached app shell for {url}")
                return shell

        raise NoCachedResponseError("Offline and no cached response", url=url)

    # =========================================================================
    # BACKGROUND SYNC
    # =========================================================================

    def add_sync_handler(self, handler: SyncHandler) -> None:
        if handler not in self._sync_handlers:
            self._sync_handlers.append(handler)

    def remove_sync_handler(self, handler: SyncHandler) -> None:
        if handler in self._sync_handlers:
            self._sync_handlers.remove(handler)

    def dispatch_sync(self, tag: str = "sync-queue") -> List[Any]:
        """Deliver a background-sync signal to the registered handlers."""
        logger.info(f"Background sync: {tag}")
        results = []
        for handler in list(self._sync_handlers):
            try:
                results.append(handler(tag))
            except Exception as e:
                logger.error(f"Error in sync handler: {e}", exc_info=True)
        return results
