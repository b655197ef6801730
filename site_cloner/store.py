# site_cloner/store.py
"""
Capture store: the single owner of everything recorded during a session.

Holds the network ledger (one entry per URL, first seen wins), page snapshots,
per-page storage dumps, cookies and streamed messages. State is persisted
through a :class:`~site_cloner.persistence.StateStorage` so a later run can
resume or export it.

All mutation happens on one asyncio event loop, so no locking is needed.
"""
from __future__ import annotations

import os
import time
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set

from site_cloner.classifier import AssetCategory
from site_cloner.errors import PersistenceError
from site_cloner.logger import logger
from site_cloner.models import CapturedRequest, PageSnapshot, StorageSnapshot, StreamMessage
from site_cloner.persistence import StateStorage
from site_cloner.urls import is_same_host, should_skip_asset

__all__ = ["CaptureStore", "STATE_KEY"]

STATE_KEY = "site_cloner_state"

Listener = Callable[[str, Any], None]


class CaptureStore:
    """In-memory ledger of captured requests and pages with rate-limited persistence."""

    def __init__(
        self,
        storage: Optional[StateStorage] = None,
        *,
        allowed_host: Optional[str] = None,
        persist_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        lock_path: Optional[Path] = None,
    ) -> None:
        self._storage = storage
        self.lock_path = lock_path
        self.allowed_host = allowed_host
        self.persist_interval = persist_interval
        self._clock = clock
        self._last_save: Optional[float] = None
        self._listeners: List[Listener] = []
        self.crawl_active = False
        self._reset()

    def _reset(self) -> None:
        self.requests: List[CapturedRequest] = []
        self._request_urls: Set[str] = set()
        self.pages: Dict[str, PageSnapshot] = {}
        self.storage_by_url: Dict[str, StorageSnapshot] = {}
        self.cookies: List[Dict[str, Any]] = []
        self.stream_messages: List[StreamMessage] = []
        self.counts: Counter[str] = Counter()

    def __contains__(self, url: object) -> bool:
        return url in self._request_urls

    # ------------------------------------------------------------------ #
    # Recording                                                          #
    # ------------------------------------------------------------------ #

    def add_listener(self, callback: Listener) -> None:
        """Register a live-feedback callback: ``callback(kind, payload)``."""
        self._listeners.append(callback)

    def _emit(self, kind: str, payload: Any) -> None:
        for callback in self._listeners:
            callback(kind, payload)

    def accepts(self, url: str) -> bool:
        if url in self._request_urls or should_skip_asset(url):
            return False
        if self.allowed_host and not is_same_host(url, self.allowed_host):
            return False
        return True

    async def record_request(self, entry: CapturedRequest) -> bool:
        """Store *entry* unless its URL is known or filtered out. Returns True if stored."""
        if not self.accepts(entry.url):
            return False
        self._request_urls.add(entry.url)
        self.requests.append(entry)
        self._bump(entry.category)
        self._emit("request", entry)
        await self.persist()
        return True

    def _bump(self, category: AssetCategory) -> None:
        self.counts["total"] += 1
        self.counts[category.value] += 1

    async def record_page(
        self,
        url: str,
        snapshot: PageSnapshot,
        cookies: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        """Upsert the snapshot for *url* and merge any newly seen cookies."""
        self.pages[url] = snapshot
        self.storage_by_url[url] = snapshot.storage
        self.record_stream_messages(snapshot.stream_messages)
        self.merge_cookies(cookies)
        self.counts["pages"] = len(self.pages)
        self._emit("page", snapshot)
        await self.persist()

    def merge_cookies(self, cookies: Iterable[Mapping[str, Any]]) -> int:
        """Add cookies whose name is not yet known; existing ones are kept as is."""
        names = {c.get("name") for c in self.cookies}
        added = 0
        for cookie in cookies:
            name = cookie.get("name")
            if name in names:
                continue
            names.add(name)
            self.cookies.append(dict(cookie))
            added += 1
        return added

    def record_stream_messages(self, messages: Iterable[StreamMessage]) -> None:
        self.stream_messages.extend(messages)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    @contextmanager
    def crawl_guard(self) -> Iterator[CaptureStore]:
        """Mark a crawl as running; :meth:`clear` is refused meanwhile.

        With a ``lock_path`` the mark is also a file holding the PID, so a
        store opened by another process over the same state directory sees it.
        """
        self.crawl_active = True
        self._write_lock()
        try:
            yield self
        finally:
            self.crawl_active = False
            self._remove_lock()

    def _write_lock(self) -> None:
        if self.lock_path is None:
            return
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.write_text(str(os.getpid()), encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot write crawl lock %s: %s", self.lock_path, exc)

    def _remove_lock(self) -> None:
        if self.lock_path is None:
            return
        try:
            self.lock_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Cannot remove crawl lock %s: %s", self.lock_path, exc)

    def crawl_running_elsewhere(self) -> bool:
        return not self.crawl_active and self.lock_path is not None and self.lock_path.exists()

    async def clear(self) -> bool:
        """Wipe memory and the persisted copy. Refused while a crawl is active."""
        if self.crawl_active:
            logger.warning("Refusing to clear captured data while a crawl is running")
            return False
        if self.crawl_running_elsewhere():
            logger.warning(
                "Refusing to clear captured data: crawl lock %s is held (delete it if no crawl is running)",
                self.lock_path,
            )
            return False
        self._reset()
        self._last_save = None
        if self._storage is not None:
            try:
                await self._storage.clear_state(STATE_KEY)
            except PersistenceError as exc:
                logger.error("Failed to clear persisted state: %s", exc)
        logger.info("Capture store cleared")
        return True

    async def restore(self) -> bool:
        """Load a previous session. Missing or corrupt state leaves the store empty."""
        if self._storage is None:
            return False
        try:
            data = await self._storage.load_state(STATE_KEY)
            if data is None:
                return False
            self._load_dict(data)
        except (PersistenceError, KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable saved session: %s", exc)
            self._reset()
            return False
        logger.info(
            "Loaded session: %d assets, %d pages", len(self.requests), len(self.pages)
        )
        return True

    async def persist(self, force: bool = False) -> bool:
        """Save state, at most once per ``persist_interval`` unless *force* is set."""
        if self._storage is None:
            return False
        now = self._clock()
        if (
            not force
            and self._last_save is not None
            and now - self._last_save < self.persist_interval
        ):
            return False
        try:
            await self._storage.persist_state(STATE_KEY, self.to_dict())
        except PersistenceError as exc:
            logger.error("Storage error: %s", exc)
            return False
        self._last_save = now
        return True

    async def flush(self) -> bool:
        return await self.persist(force=True)

    # ------------------------------------------------------------------ #
    # (De)serialization                                                  #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": [r.to_dict() for r in self.requests],
            "pages": {url: page.to_dict() for url, page in self.pages.items()},
            "storage": {url: s.to_dict() for url, s in self.storage_by_url.items()},
            "cookies": list(self.cookies),
            "stream_messages": [m.to_dict() for m in self.stream_messages],
        }

    def _load_dict(self, data: Mapping[str, Any]) -> None:
        if not isinstance(data, Mapping):
            raise TypeError(f"saved state must be a mapping, got {type(data).__name__}")
        self._reset()
        for raw in data.get("requests") or []:
            entry = CapturedRequest.from_dict(raw)
            if entry.url in self._request_urls:
                continue
            self._request_urls.add(entry.url)
            self.requests.append(entry)
            self._bump(entry.category)
        for url, raw in (data.get("pages") or {}).items():
            self.pages[url] = PageSnapshot.from_dict(raw)
        for url, raw in (data.get("storage") or {}).items():
            self.storage_by_url[url] = StorageSnapshot.from_dict(raw)
        self.cookies = [dict(c) for c in data.get("cookies") or []]
        self.stream_messages = [StreamMessage.from_dict(m) for m in data.get("stream_messages") or []]
        self.counts["pages"] = len(self.pages)

    # ------------------------------------------------------------------ #
    # Reporting                                                          #
    # ------------------------------------------------------------------ #

    def estimated_size(self) -> int:
        """Rough archive size: response bytes plus serialized page HTML."""
        size = sum(r.byte_size for r in self.requests)
        size += sum(len(p.html) for p in self.pages.values())
        return size

    def summary(self) -> Dict[str, Any]:
        return {
            "pages": len(self.pages),
            "assets": len(self.requests),
            "cookies": len(self.cookies),
            "stream_messages": len(self.stream_messages),
            "estimated_size": self.estimated_size(),
            "counts": {cat.value: self.counts.get(cat.value, 0) for cat in AssetCategory},
        }
