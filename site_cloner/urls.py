# File: site_cloner/urls.py
"""site_cloner.urls: нормализация URL, политика пропуска ресурсов и имена файлов в архиве."""

from __future__ import annotations

import hashlib
import re
from typing import Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from site_cloner.logger import logger

__all__: Sequence[str] = (
    "normalize_url",
    "host_of",
    "origin_of",
    "is_same_host",
    "should_skip_asset",
    "url_to_page_slug",
    "asset_filename",
    "ext_from_url",
    "ext_from_mime",
)

_SKIP_EXT_RE = re.compile(r"\.(pdf|zip|exe|dmg|mp4|mp3)(\?|$)", re.IGNORECASE)
_ANALYTICS_MARKERS = (
    "google-analytics",
    "googletagmanager",
    "doubleclick.net",
    "hotjar",
    "segment.io",
)
_UNSAFE_CHARS_RE = re.compile(r"[^\w.-]")
_EXT_RE = re.compile(r"[a-z0-9]{1,5}")

_MIME_EXTENSIONS = {
    "text/html": "html",
    "text/css": "css",
    "text/javascript": "js",
    "application/javascript": "js",
    "application/x-javascript": "js",
    "application/json": "json",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/svg+xml": "svg",
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
    "font/woff2": "woff2",
    "font/woff": "woff",
    "font/ttf": "ttf",
    "font/otf": "otf",
    "application/font-woff": "woff",
    "application/font-woff2": "woff2",
}


def normalize_url(url: str, *, keep_query: bool = False) -> Optional[str]:
    """Нормализует URL страницы для дедупликации.

    - scheme и host в нижнем регистре;
    - фрагмент отбрасывается всегда, query отбрасывается, если не задан keep_query;
    - завершающие слеши пути удаляются (корень сайта → ``https://host``).

    Некорректный или не-http(s) URL даёт None. Функция идемпотентна.
    """
    try:
        parts = urlsplit(url.strip())
        parts.port  # некорректный порт бросает ValueError
    except (ValueError, AttributeError):
        logger.debug("Dropping malformed URL: %r", url)
        return None
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return None
    path = parts.path.rstrip("/")
    query = parts.query if keep_query else ""
    return urlunsplit((scheme, parts.netloc.lower(), path, query, ""))


def host_of(url: str) -> str:
    """Возвращает hostname в нижнем регистре или пустую строку."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def origin_of(url: str) -> str:
    """``scheme://netloc`` для URL (пустая строка для некорректного)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def is_same_host(url: str, host: str) -> bool:
    """True, если host URL совпадает с *host* или является его поддоменом."""
    candidate = host_of(url)
    host = host.lower().lstrip(".")
    if not candidate or not host:
        return False
    return candidate == host or candidate.endswith("." + host)


def should_skip_asset(url: str) -> bool:
    """Политика пропуска: бинарные/медиа-файлы, аналитика и не-http(s) схемы."""
    try:
        scheme = urlsplit(url).scheme.lower()
    except ValueError:
        return True
    if scheme not in ("http", "https"):
        return True
    if _SKIP_EXT_RE.search(url):
        return True
    lowered = url.lower()
    return any(marker in lowered for marker in _ANALYTICS_MARKERS)


def _short_digest(text: str, length: int = 8) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def url_to_page_slug(url: str) -> str:
    """``/docs/intro/`` → ``docs__intro``; корень → ``index``."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return f"page_{_short_digest(url)}"
    slug = _UNSAFE_CHARS_RE.sub("_", path.strip("/").replace("/", "__"))
    return slug or "index"


def asset_filename(url: str, ext: str, *, digest_len: int = 8) -> str:
    """Имя файла ресурса: очищенное имя из пути + короткий хеш URL + расширение.

    Хеш различает одноимённые файлы из разных каталогов (``a/logo.png`` и ``b/logo.png``).
    """
    try:
        name = urlsplit(url).path.rsplit("/", 1)[-1]
    except ValueError:
        name = ""
    stem = name.rsplit(".", 1)[0] if "." in name else name
    stem = _UNSAFE_CHARS_RE.sub("_", stem)[:60] or "index"
    return f"{stem}_{_short_digest(url, digest_len)}.{ext}"


def ext_from_url(url: str) -> Optional[str]:
    """Расширение последнего сегмента пути (без query), если оно похоже на расширение."""
    try:
        name = urlsplit(url).path.rsplit("/", 1)[-1]
    except ValueError:
        return None
    if "." not in name:
        return None
    ext = name.rsplit(".", 1)[1].lower()
    return ext if _EXT_RE.fullmatch(ext) else None


def ext_from_mime(mime: Optional[str]) -> Optional[str]:
    """Расширение по MIME-типу (параметры вроде ``; charset=`` игнорируются)."""
    base = (mime or "").split(";", 1)[0].strip().lower()
    return _MIME_EXTENSIONS.get(base)
