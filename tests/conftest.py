# File: tests/conftest.py
import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from site_cloner.capture import scripts
from site_cloner.config import ClonerConfig
from site_cloner.errors import CaptureTimeoutError, ControlChannelLost, PersistenceError
from site_cloner.models import PageSnapshot
from site_cloner.store import CaptureStore


class MemoryStateStorage:
    """In-memory StateStorage; values go through JSON like the file backend."""

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}
        self.saves = 0
        self.fail = False

    async def persist_state(self, key: str, value: Any) -> None:
        if self.fail:
            raise PersistenceError("disk full")
        self.data[key] = json.loads(json.dumps(value))
        self.saves += 1

    async def load_state(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def clear_state(self, key: str) -> None:
        self.data.pop(key, None)


class FakeBrowser:
    """Scripted BrowserCapability: page payloads are looked up by the tab's current URL."""

    active_tab = "main"

    def __init__(self, payloads: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.payloads = payloads or {}
        self.current: Dict[str, str] = {}
        self.closed: List[str] = []
        self.navigations: List[str] = []
        self.scripts: List[str] = []
        self.cookies: List[Dict[str, Any]] = []
        self.notifications: List[tuple] = []
        self.downloads: Dict[str, bytes] = {}
        self.stream_messages: List[Dict[str, Any]] = []
        self.scroll_height = 0
        self.connected = True
        self.serialize_error: Optional[Exception] = None
        self._next_tab = 0

    async def evaluate_in_page(self, script: str, tab: Optional[str] = None) -> Any:
        tab = tab or self.active_tab
        self.scripts.append(script)
        if script == scripts.SERIALIZE_PAGE_JS:
            if self.serialize_error is not None:
                raise self.serialize_error
            url = self.current.get(tab, "")
            return self.payloads.get(url, {"url": url, "title": "", "html": "<html></html>"})
        if script == scripts.SCROLL_HEIGHT_JS:
            return self.scroll_height
        if script == scripts.DRAIN_STREAMS_JS:
            messages, self.stream_messages = self.stream_messages, []
            return messages
        return True

    async def open_hidden_tab(self, url: str) -> str:
        self._next_tab += 1
        handle = f"tab-{self._next_tab}"
        self.current[handle] = url
        return handle

    async def wait_for_load_complete(self, tab: str, timeout: float) -> None:
        return None

    async def close_tab(self, tab: str) -> None:
        self.closed.append(tab)
        self.current.pop(tab, None)

    async def navigate(self, tab: str, url: str) -> None:
        self.navigations.append(url)
        self.current[tab] = url

    async def get_cookies(self, url: str) -> List[Dict[str, Any]]:
        return list(self.cookies)

    async def notify_user(self, title: str, message: str) -> None:
        self.notifications.append((title, message))

    async def download_file(self, data: bytes, filename: str) -> Path:
        self.downloads[filename] = data
        return Path(filename)

    async def ping(self) -> None:
        if not self.connected:
            raise ControlChannelLost("browser closed")


class ScriptedAgent:
    """
    Stand-in for PageCaptureAgent used by scheduler tests.

    ``links`` maps URL → internal links of its snapshot, ``failures`` maps
    URL → number of transient failures before success, ``fatal`` URLs raise
    ControlChannelLost. URLs in ``gated`` wait for ``gate`` to be set.
    """

    def __init__(
        self,
        links: Optional[Dict[str, List[str]]] = None,
        failures: Optional[Dict[str, int]] = None,
        fatal: Optional[Set[str]] = None,
        gated: Optional[Set[str]] = None,
    ) -> None:
        self.links = links or {}
        self.failures = dict(failures or {})
        self.fatal = fatal or set()
        self.gated = gated or set()
        self.gate = asyncio.Event()
        self.calls: List[str] = []
        self.active = 0
        self.on_capture = None

    async def capture(self, url: str) -> PageSnapshot:
        self.calls.append(url)
        if self.on_capture is not None:
            self.on_capture(url)
        self.active += 1
        try:
            if url in self.gated:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if url in self.fatal:
                raise ControlChannelLost("extension context invalidated")
            if self.failures.get(url, 0) > 0:
                self.failures[url] -= 1
                raise CaptureTimeoutError(f"timeout on {url}")
            return PageSnapshot(
                url=url,
                title=url,
                html="<html><head></head><body></body></html>",
                internal_links=list(self.links.get(url, [])),
            )
        finally:
            self.active -= 1


@pytest.fixture()
def memory_storage() -> MemoryStateStorage:
    return MemoryStateStorage()


@pytest.fixture()
def store(memory_storage) -> CaptureStore:
    return CaptureStore(memory_storage, allowed_host="example.com")


@pytest.fixture()
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture()
def basic_config(tmp_path) -> ClonerConfig:
    """
    Return a fast ClonerConfig for crawl tests: no politeness pause.
    """
    return ClonerConfig(
        base_url="https://example.com/",
        max_depth=1,
        workers=3,
        task_delay=0,
        keep_alive_interval=60,
        state_dir=tmp_path / "state",
        output_dir=tmp_path / "out",
    )
