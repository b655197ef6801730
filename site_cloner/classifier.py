# site_cloner/classifier.py
"""
Resource classifier: maps a response's MIME type and URL to an asset category.

The same category drives both the live counters in the capture store and the
folder an asset lands in inside the archive, so the function must stay pure.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional

__all__ = ["AssetCategory", "classify"]

_FONT_EXT_RE = re.compile(r"\.(woff2?|ttf|otf|eot)(\?|$)", re.IGNORECASE)


class AssetCategory(str, Enum):
    HTML = "html"
    CSS = "css"
    JS = "js"
    JSON = "json"
    IMG = "img"
    FONT = "font"
    OTHER = "other"


def classify(mime: Optional[str], url: Optional[str] = "") -> AssetCategory:
    """Return the :class:`AssetCategory` for a response. Never raises."""
    mime = (mime or "").lower()
    url = url or ""
    if "html" in mime:
        return AssetCategory.HTML
    if "css" in mime:
        return AssetCategory.CSS
    if "javascript" in mime or "ecmascript" in mime:
        return AssetCategory.JS
    if "json" in mime:
        return AssetCategory.JSON
    if mime.startswith("image/"):
        return AssetCategory.IMG
    if "font" in mime or _FONT_EXT_RE.search(url):
        return AssetCategory.FONT
    return AssetCategory.OTHER
