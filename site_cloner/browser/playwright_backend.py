# site_cloner/browser/playwright_backend.py
"""
Playwright implementation of :class:`~site_cloner.browser.base.BrowserCapability`.

Every completed response in the browser context is converted to a
:class:`CapturedRequest` and handed to ``on_response`` (normally
``CaptureStore.record_request``); the network activity monitor is marked for
each one so settle detection sees the traffic.
"""
from __future__ import annotations

import asyncio
import base64
import itertools
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Response, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from site_cloner.browser.base import TabHandle
from site_cloner.capture.settle import NetworkActivityMonitor
from site_cloner.errors import (
    CaptureTimeoutError,
    ClonerError,
    ControlChannelLost,
    ScriptEvaluationError,
)
from site_cloner.models import CapturedRequest

__all__ = ["PlaywrightBrowser", "encode_body", "response_to_request"]

ResponseCallback = Callable[[CapturedRequest], Awaitable[Any]]

_TEXT_MARKERS = ("text/", "json", "javascript", "ecmascript", "xml", "svg")


def encode_body(body: Optional[bytes], mime: str) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(content, encoding)``: text for textual types, base64 otherwise."""
    if body is None:
        return None, None
    if any(marker in mime.lower() for marker in _TEXT_MARKERS):
        try:
            return body.decode("utf-8"), None
        except UnicodeDecodeError:
            pass
    return base64.b64encode(body).decode("ascii"), "base64"


async def response_to_request(response: Response) -> CapturedRequest:
    mime = (response.headers.get("content-type") or "").split(";", 1)[0].strip()
    try:
        body: Optional[bytes] = await response.body()
    except PlaywrightError:
        # redirects and aborted requests carry no body
        body = None
    content, encoding = encode_body(body, mime)
    return CapturedRequest(
        url=response.url,
        method=response.request.method,
        status=response.status,
        mime_type=mime,
        byte_size=len(body) if body else 0,
        content=content,
        encoding=encoding,
    )


class PlaywrightBrowser:
    """Chromium driven through ``playwright.async_api``."""

    active_tab: TabHandle = "main"

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: Optional[str] = None,
        download_dir: Path | str = Path("output"),
        monitor: Optional[NetworkActivityMonitor] = None,
        on_response: Optional[ResponseCallback] = None,
        init_scripts: Sequence[str] = (),
        navigation_timeout: float = 30.0,
        notifier: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self.download_dir = Path(download_dir)
        self.monitor = monitor or NetworkActivityMonitor()
        self.on_response = on_response
        self.init_scripts = tuple(init_scripts)
        self.navigation_timeout = navigation_timeout
        self.notifier = notifier
        self.logger = logging.getLogger("SiteCloner")
        self._pw: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._tabs: Dict[TabHandle, Page] = {}
        self._tab_ids = itertools.count(1)

    async def __aenter__(self) -> PlaywrightBrowser:
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self.headless)
        context_kwargs: Dict[str, Any] = {}
        if self.user_agent:
            context_kwargs["user_agent"] = self.user_agent
        self._context = await self._browser.new_context(**context_kwargs)
        for script in self.init_scripts:
            await self._context.add_init_script(script)
        self._context.on("response", self._handle_response)
        self._tabs[self.active_tab] = await self._context.new_page()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None and self._browser.is_connected():
                await self._browser.close()
        except PlaywrightError as err:
            self.logger.debug("Error while closing browser: %s", err)
        finally:
            if self._pw is not None:
                await self._pw.stop()
            self._tabs.clear()

    async def _handle_response(self, response: Response) -> None:
        self.monitor.mark()
        if self.on_response is None:
            return
        entry = await response_to_request(response)
        await self.on_response(entry)

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    def _connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def _translate(self, exc: PlaywrightError, action: str) -> ClonerError:
        if not self._connected():
            return ControlChannelLost(f"Browser session lost during {action}: {exc}")
        if isinstance(exc, PlaywrightTimeoutError):
            return CaptureTimeoutError(f"Timed out during {action}: {exc}")
        return ScriptEvaluationError(f"{action} failed: {exc}")

    def _page(self, tab: Optional[TabHandle]) -> Page:
        if not self._connected() or self._context is None:
            raise ControlChannelLost("Browser is not running")
        try:
            return self._tabs[tab or self.active_tab]
        except KeyError:
            raise ScriptEvaluationError(f"Unknown tab {tab!r}") from None

    # ------------------------------------------------------------------ #
    # BrowserCapability                                                  #
    # ------------------------------------------------------------------ #

    async def evaluate_in_page(self, script: str, tab: Optional[TabHandle] = None) -> Any:
        page = self._page(tab)
        try:
            return await page.evaluate(script)
        except PlaywrightError as exc:
            raise self._translate(exc, "script evaluation") from exc

    async def open_hidden_tab(self, url: str) -> TabHandle:
        if not self._connected() or self._context is None:
            raise ControlChannelLost("Browser is not running")
        try:
            page = await self._context.new_page()
        except PlaywrightError as exc:
            raise self._translate(exc, "opening a tab") from exc
        handle = f"tab-{next(self._tab_ids)}"
        self._tabs[handle] = page
        try:
            await page.goto(url, wait_until="commit", timeout=self.navigation_timeout * 1000)
        except PlaywrightError as exc:
            await self.close_tab(handle)
            raise self._translate(exc, f"opening {url}") from exc
        return handle

    async def wait_for_load_complete(self, tab: TabHandle, timeout: float) -> None:
        page = self._page(tab)
        try:
            await page.wait_for_load_state("load", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise CaptureTimeoutError(f"Tab did not finish loading within {timeout:.0f}s") from exc
        except PlaywrightError as exc:
            raise self._translate(exc, "waiting for load") from exc

    async def close_tab(self, tab: TabHandle) -> None:
        page = self._tabs.pop(tab, None)
        if page is None or page.is_closed():
            return
        try:
            await page.close()
        except PlaywrightError as exc:
            raise self._translate(exc, "closing a tab") from exc

    async def navigate(self, tab: TabHandle, url: str) -> None:
        page = self._page(tab)
        try:
            await page.goto(url, wait_until="commit", timeout=self.navigation_timeout * 1000)
        except PlaywrightError as exc:
            raise self._translate(exc, f"navigating to {url}") from exc

    async def get_cookies(self, url: str) -> List[Dict[str, Any]]:
        if not self._connected() or self._context is None:
            raise ControlChannelLost("Browser is not running")
        try:
            return [dict(c) for c in await self._context.cookies(url)]
        except PlaywrightError as exc:
            raise self._translate(exc, "reading cookies") from exc

    async def notify_user(self, title: str, message: str) -> None:
        self.logger.info("%s: %s", title, message)
        if self.notifier is not None:
            self.notifier(title, message)

    async def download_file(self, data: bytes, filename: str) -> Path:
        target = self.download_dir / filename
        await asyncio.to_thread(_write_bytes, target, data)
        return target

    async def ping(self) -> None:
        if not self._connected():
            raise ControlChannelLost("Browser session is no longer connected")


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
