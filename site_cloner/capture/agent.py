# site_cloner/capture/agent.py
"""
Page capture agent: turns a URL into a :class:`PageSnapshot`.

Two modes are supported:

* **foreground** – navigate the visible tab, wait for the network to settle,
  scroll, snapshot in place;
* **background** – open a hidden tab, wait for load-complete plus a short
  settle delay, snapshot, close the tab. Several background captures can run
  at once without disturbing the visible tab.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, List, Literal, Mapping, Optional

from site_cloner.browser.base import BrowserCapability, TabHandle
from site_cloner.capture import scripts
from site_cloner.capture.settle import SettleDetector
from site_cloner.errors import ClonerError, ControlChannelLost, ScriptEvaluationError
from site_cloner.models import PageSnapshot, StreamMessage

__all__ = ["PageCaptureAgent"]

CaptureMode = Literal["background", "foreground"]


class PageCaptureAgent:
    """Drives a :class:`BrowserCapability` to capture single pages."""

    def __init__(
        self,
        browser: BrowserCapability,
        settle: SettleDetector,
        *,
        mode: CaptureMode = "background",
        stealth: bool = False,
        background_timeout: float = 20.0,
        settle_delay: float = 1.5,
        scroll: bool = True,
        capture_streams: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.browser = browser
        self.settle = settle
        self.mode = mode
        self.stealth = stealth
        self.background_timeout = background_timeout
        self.settle_delay = settle_delay
        self.scroll = scroll
        self.capture_streams = capture_streams
        self._sleep = sleep
        self.logger = logging.getLogger("SiteCloner")

    async def capture(self, url: str) -> PageSnapshot:
        if self.mode == "foreground":
            return await self.capture_foreground(url)
        return await self.capture_background(url)

    async def capture_foreground(self, url: str) -> PageSnapshot:
        tab = self.browser.active_tab
        await self.browser.navigate(tab, url)
        self.settle.monitor.mark()
        if not await self.settle.wait():
            self.logger.debug("Network never went idle on %s, capturing anyway", url)
        await self._prepare(tab)
        if self.scroll:
            await self.auto_scroll(tab)
        return await self._finish(tab, url)

    async def capture_background(self, url: str) -> PageSnapshot:
        tab: Optional[TabHandle] = None
        try:
            tab = await self.browser.open_hidden_tab(url)
            await self.browser.wait_for_load_complete(tab, self.background_timeout)
            await self._prepare(tab)
            await self._sleep(self.settle_delay)
            return await self._finish(tab, url)
        finally:
            if tab is not None:
                await self._close_quietly(tab)

    async def _prepare(self, tab: TabHandle) -> None:
        if self.stealth:
            await self.inject_stealth(tab)
        if self.capture_streams:
            await self.inject_stream_interceptor(tab)

    async def _finish(self, tab: TabHandle, url: str) -> PageSnapshot:
        messages = await self.drain_stream_messages(tab) if self.capture_streams else []
        snapshot = await self.snapshot(tab, url=url)
        snapshot.stream_messages = messages
        return snapshot

    async def _close_quietly(self, tab: TabHandle) -> None:
        try:
            await self.browser.close_tab(tab)
        except ControlChannelLost:
            raise
        except ClonerError as exc:
            self.logger.warning("Failed to close tab %s: %s", tab, exc)

    async def snapshot(self, tab: Optional[TabHandle] = None, *, url: Optional[str] = None) -> PageSnapshot:
        """Run the DOM serializer in *tab* and parse its result."""
        result = await self.browser.evaluate_in_page(scripts.SERIALIZE_PAGE_JS, tab)
        if not isinstance(result, Mapping):
            raise ScriptEvaluationError(
                f"Serializer returned {type(result).__name__} instead of an object"
            )
        return PageSnapshot.from_payload(result, url=url)

    async def auto_scroll(self, tab: Optional[TabHandle] = None) -> int:
        """Scroll through the page to trigger lazy loading. Returns the step count."""
        height = await self.browser.evaluate_in_page(scripts.SCROLL_HEIGHT_JS, tab)
        if not isinstance(height, (int, float)) or height < 400:
            return 0
        step = 600 if self.stealth else 800
        await self.browser.evaluate_in_page(
            scripts.call(
                scripts.AUTO_SCROLL_FN,
                {"totalHeight": height, "step": step, "stealth": self.stealth},
            ),
            tab,
        )
        return math.ceil(height / step)

    async def inject_stealth(self, tab: Optional[TabHandle] = None) -> None:
        await self.browser.evaluate_in_page(scripts.STEALTH_JS, tab)

    async def inject_stream_interceptor(self, tab: Optional[TabHandle] = None) -> None:
        await self.browser.evaluate_in_page(scripts.STREAM_INTERCEPTOR_JS, tab)

    async def drain_stream_messages(self, tab: Optional[TabHandle] = None) -> List[StreamMessage]:
        raw = await self.browser.evaluate_in_page(scripts.DRAIN_STREAMS_JS, tab)
        if not isinstance(raw, list):
            return []
        return [StreamMessage.from_dict(m) for m in raw if isinstance(m, Mapping)]
