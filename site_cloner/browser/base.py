# site_cloner/browser/base.py
"""
Capability interface the capture pipeline consumes from a browser backend.

Every method is a suspension point. Timeouts are in seconds. Implementations
raise :class:`~site_cloner.errors.ControlChannelLost` when the automation
session itself is gone, and :class:`~site_cloner.errors.CaptureError`
subclasses for per-page failures.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

TabHandle = str


class BrowserCapability(Protocol):
    active_tab: TabHandle

    async def evaluate_in_page(self, script: str, tab: Optional[TabHandle] = None) -> Any:
        """Run *script* (an expression) in *tab* (default: the active tab)."""
        ...

    async def open_hidden_tab(self, url: str) -> TabHandle: ...

    async def wait_for_load_complete(self, tab: TabHandle, timeout: float) -> None: ...

    async def close_tab(self, tab: TabHandle) -> None: ...

    async def navigate(self, tab: TabHandle, url: str) -> None:
        """Full top-level navigation, never an in-app route change."""
        ...

    async def get_cookies(self, url: str) -> List[Dict[str, Any]]: ...

    async def notify_user(self, title: str, message: str) -> None: ...

    async def download_file(self, data: bytes, filename: str) -> Path: ...

    async def ping(self) -> None:
        """Keep-alive; raises ControlChannelLost if the session is gone."""
        ...
