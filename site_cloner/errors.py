# site_cloner/errors.py
"""
Exception hierarchy shared by the capture pipeline.

``CaptureError`` subclasses are per-page and retryable; ``ControlChannelLost``
means the browser session itself is gone and aborts the whole crawl.
"""
from __future__ import annotations


class ClonerError(Exception):
    """Base class for all SiteCloner errors."""


class CaptureError(ClonerError):
    """Transient failure while capturing a single page."""


class CaptureTimeoutError(CaptureError):
    """A page did not reach load-complete within the allowed window."""


class ScriptEvaluationError(CaptureError):
    """An in-page script failed or returned an unusable result."""


class ControlChannelLost(ClonerError):
    """The browser automation context was torn down; unrecoverable."""


class PersistenceError(ClonerError):
    """Saving or loading the capture state failed."""


__all__ = [
    "ClonerError",
    "CaptureError",
    "CaptureTimeoutError",
    "ScriptEvaluationError",
    "ControlChannelLost",
    "PersistenceError",
]
