# site_cloner/preview.py
"""
Local HTTP preview of a built archive.

Pages use declarative shadow DOM and ``fetch`` the mock data, both of which
need an HTTP origin, so opening ``index.html`` from disk is not enough.
Members are served straight from the ZIP without extracting it.
"""
from __future__ import annotations

import logging
import mimetypes
import posixpath
import zipfile
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from aiohttp import web

__all__ = ["create_preview_app", "member_name", "run_preview"]

logger = logging.getLogger("SiteCloner")

ARCHIVE_KEY = web.AppKey("archive", zipfile.ZipFile)

_TEXT_TYPES = ("text/", "application/javascript", "application/json", "application/xml")


def member_name(raw_path: str) -> Optional[str]:
    """Map a request path to an archive member name; None for traversal attempts."""
    parts = raw_path.split("/")
    if any(part == ".." for part in parts):
        return None
    name = posixpath.normpath("/" + raw_path).lstrip("/")
    if name in ("", "."):
        return "index.html"
    if raw_path.endswith("/"):
        return f"{name}/index.html"
    return name


def _content_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


async def _serve_member(request: web.Request) -> web.Response:
    name = member_name(request.match_info.get("path", ""))
    if name is None:
        raise web.HTTPForbidden(text="path traversal rejected")
    archive = request.app[ARCHIVE_KEY]
    try:
        data = archive.read(name)
    except KeyError:
        raise web.HTTPNotFound(text=f"{name} is not in the archive") from None
    ctype = _content_type(name)
    charset = "utf-8" if ctype.startswith(_TEXT_TYPES) else None
    return web.Response(body=data, content_type=ctype, charset=charset)


def create_preview_app(archive_path: Union[str, Path]) -> web.Application:
    """Build an aiohttp application serving the members of *archive_path*."""
    path = Path(archive_path)
    if not path.is_file():
        raise FileNotFoundError(f"Archive not found: {path}")
    if not zipfile.is_zipfile(path):
        raise ValueError(f"Not a ZIP archive: {path}")

    async def archive_ctx(app: web.Application) -> AsyncIterator[None]:
        with zipfile.ZipFile(path) as zf:
            app[ARCHIVE_KEY] = zf
            yield

    app = web.Application()
    app.cleanup_ctx.append(archive_ctx)
    app.router.add_get("/{path:.*}", _serve_member)
    return app


def run_preview(archive_path: Union[str, Path], host: str = "127.0.0.1", port: int = 8000) -> None:
    app = create_preview_app(archive_path)
    logger.info("Preview of %s at http://%s:%d/", archive_path, host, port)
    web.run_app(app, host=host, port=port, print=None)
