# site_cloner/models.py
"""
Data models for the SiteCloner capture pipeline.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from site_cloner.classifier import AssetCategory, classify

__all__ = (
    "CapturedRequest",
    "StorageSnapshot",
    "StreamMessage",
    "PageSnapshot",
    "FrontierTask",
    "TaskState",
)


@dataclass(slots=True, frozen=True)
class CapturedRequest:
    """One completed network response. Immutable once stored; keyed by URL."""

    url: str
    method: str = "GET"
    status: int = 200
    mime_type: str = ""
    byte_size: int = 0
    content: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def category(self) -> AssetCategory:
        return classify(self.mime_type, self.url)

    @property
    def is_base64(self) -> bool:
        return self.encoding == "base64"

    def body(self) -> Optional[bytes]:
        """Raw bytes of the response, or None when no content was captured."""
        if self.content is None:
            return None
        if self.is_base64:
            try:
                return base64.b64decode(self.content)
            except (binascii.Error, ValueError):
                return None
        return self.content.encode("utf-8")

    def text(self) -> Optional[str]:
        """Body decoded as UTF-8 text (base64 content is decoded first)."""
        if self.content is None:
            return None
        if not self.is_base64:
            return self.content
        data = self.body()
        return None if data is None else data.decode("utf-8", errors="replace")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CapturedRequest:
        return cls(
            url=str(data["url"]),
            method=str(data.get("method") or "GET"),
            status=int(data.get("status") or 0),
            mime_type=str(data.get("mime_type") or ""),
            byte_size=int(data.get("byte_size") or 0),
            content=data.get("content"),
            encoding=data.get("encoding"),
        )


@dataclass(slots=True)
class StorageSnapshot:
    """Flat copies of ``localStorage`` and ``sessionStorage`` for one page."""

    local: Dict[str, str] = field(default_factory=dict)
    session: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"local": dict(self.local), "session": dict(self.session)}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> StorageSnapshot:
        data = data or {}
        local = data.get("local") or {}
        session = data.get("session") or {}
        return cls(
            local={str(k): str(v) for k, v in dict(local).items()},
            session={str(k): str(v) for k, v in dict(session).items()},
        )


@dataclass(slots=True)
class StreamMessage:
    """A server-sent event observed in a page."""

    url: str
    data: str
    type: str = "message"
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StreamMessage:
        return cls(
            url=str(data.get("url", "")),
            data=str(data.get("data", "")),
            type=str(data.get("type") or "message"),
            timestamp=float(data.get("timestamp") or 0.0),
        )


@dataclass(slots=True)
class PageSnapshot:
    """Serialized state of one page: DOM, storage, inline styles and links."""

    url: str
    title: str = ""
    html: str = ""
    storage: StorageSnapshot = field(default_factory=StorageSnapshot)
    inline_styles: List[str] = field(default_factory=list)
    internal_links: List[str] = field(default_factory=list)
    stream_messages: List[StreamMessage] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], url: Optional[str] = None) -> PageSnapshot:
        """Build a snapshot from the raw result of the in-page serializer."""
        return cls(
            url=str(payload.get("url") or url or ""),
            title=str(payload.get("title") or ""),
            html=str(payload.get("html") or ""),
            storage=StorageSnapshot.from_dict(payload.get("storage")),
            inline_styles=[str(s) for s in payload.get("inlineStyles") or []],
            internal_links=[str(h) for h in payload.get("internalLinks") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "html": self.html,
            "storage": self.storage.to_dict(),
            "inline_styles": list(self.inline_styles),
            "internal_links": list(self.internal_links),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PageSnapshot:
        return cls(
            url=str(data["url"]),
            title=str(data.get("title") or ""),
            html=str(data.get("html") or ""),
            storage=StorageSnapshot.from_dict(data.get("storage")),
            inline_styles=[str(s) for s in data.get("inline_styles") or []],
            internal_links=[str(h) for h in data.get("internal_links") or []],
        )


class TaskState(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass(slots=True)
class FrontierTask:
    """A URL waiting in the crawl queue."""

    url: str
    depth: int
    retry_count: int = 0
