# site_cloner/browser/__init__.py
"""Browser capability interface and the Playwright-backed implementation."""
from site_cloner.browser.base import BrowserCapability, TabHandle

__all__ = ["BrowserCapability", "TabHandle"]
