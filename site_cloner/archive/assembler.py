# File: site_cloner/archive/assembler.py
"""site_cloner.archive.assembler: сборка офлайн-архива из содержимого CaptureStore.

Порядок работы:

1. каждому захваченному URL назначается локальный путь в архиве (``AssetMap``);
2. из всех исходных URL строится одно регулярное выражение (длинные первыми);
3. в HTML и CSS абсолютные ссылки заменяются относительными путями;
4. добавляются служебные файлы (mock-обработчик, манифест, sitemap, robots);
5. всё упаковывается в ZIP (deflate) в памяти.
"""

from __future__ import annotations

import asyncio
import json
import logging
import posixpath
import re
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import (
    Any,
    Callable,
    Collection,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Pattern,
    Protocol,
    Set,
    Union,
)

from jinja2 import Environment, PackageLoader, select_autoescape

from site_cloner import __version__
from site_cloner.capture.scripts import CANVAS_MARKER
from site_cloner.classifier import AssetCategory
from site_cloner.models import CapturedRequest, PageSnapshot
from site_cloner.store import CaptureStore
from site_cloner.urls import (
    asset_filename,
    ext_from_mime,
    ext_from_url,
    normalize_url,
    origin_of,
    url_to_page_slug,
)

__all__ = [
    "ArchiveAssembler",
    "AssetMap",
    "DirectorySink",
    "build_asset_map",
    "build_replacement_pattern",
    "combine_inline_styles",
    "inject_head",
    "rewrite_css",
    "rewrite_html",
    "rewrite_references",
    "strip_analytics",
]

logger = logging.getLogger("SiteCloner")

FOLDERS: Dict[AssetCategory, str] = {
    AssetCategory.HTML: "pages",
    AssetCategory.CSS: "assets/css",
    AssetCategory.JS: "assets/js",
    AssetCategory.JSON: "assets/data",
    AssetCategory.IMG: "assets/images",
    AssetCategory.FONT: "assets/fonts",
    AssetCategory.OTHER: "assets/misc",
}
_DEFAULT_EXT: Dict[AssetCategory, str] = {
    AssetCategory.HTML: "html",
    AssetCategory.CSS: "css",
    AssetCategory.JS: "js",
    AssetCategory.JSON: "json",
}

PAGES_DIR = "pages"
MOCK_HANDLER_PATH = "assets/js/_mock_handler.js"
MOCK_DATA_PATH = "assets/data/mock-api-data.json"
COMBINED_CSS_PATH = "assets/css/_inline-styles-combined.css"
STATE_PATH = "network/storage_and_state.json"
SSE_PATH = "network/sse-messages.json"
MANIFEST_PATH = "__manifest.json"
RESERVED_PATHS = frozenset(
    {
        "index.html",
        "sitemap.xml",
        "robots.txt",
        MANIFEST_PATH,
        MOCK_HANDLER_PATH,
        MOCK_DATA_PATH,
        COMBINED_CSS_PATH,
        STATE_PATH,
        SSE_PATH,
    }
)

STYLE_SEPARATOR = "\n\n/* next block */\n\n"

_ASSET_TAIL = r"(?![\w\-.~%])"
_PAGE_TAIL = r"(?=[\"'\s<>)#?]|$)"
# атрибуты и url(), после которых корневой путь считается ссылкой
_ALIAS_CONTEXTS = tuple(
    f"{attr}={quote}" for attr in ("href", "src", "action", "poster") for quote in "\"'"
) + ("url(", "url(\"", "url('")
_ALIAS_HEAD = "(?:" + "|".join(f"(?<={re.escape(c)})" for c in _ALIAS_CONTEXTS) + ")"
_ANALYTICS_RE = re.compile(
    r'<script\b[^>]*src="[^"]*(analytics|googletagmanager|hubspot)[^"]*"[^>]*></script>',
    re.IGNORECASE,
)
_HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
_HEAD_CLOSE_RE = re.compile(r"</head>", re.IGNORECASE)

ProgressCallback = Callable[[int], None]


@dataclass
class AssetMap:
    """Соответствие «исходный URL → путь в архиве» для одного прохода сборки."""

    paths: Dict[str, str] = field(default_factory=dict)
    pages: Dict[str, str] = field(default_factory=dict)
    mock_data: Dict[str, str] = field(default_factory=dict)
    sources: Dict[str, str] = field(default_factory=dict)
    page_sources: Set[str] = field(default_factory=set)


def _is_absolute(text: str) -> bool:
    return text.startswith(("http://", "https://"))


def _page_url_for(url: str, pages: Collection[str]) -> Optional[str]:
    """URL захваченной страницы, которой соответствует HTML-ответ *url*."""
    for keep_query in (True, False):
        clean = normalize_url(url, keep_query=keep_query)
        if clean is not None and clean in pages:
            return clean
    return None


def _extension(entry: CapturedRequest, category: AssetCategory) -> str:
    if category is AssetCategory.JSON:
        return "json"
    return (
        ext_from_url(entry.url)
        or ext_from_mime(entry.mime_type)
        or _DEFAULT_EXT.get(category, "bin")
    )


def _unique_page_path(slug: str, used: Set[str]) -> str:
    path = f"{PAGES_DIR}/{slug}.html"
    counter = 2
    while path in used:
        path = f"{PAGES_DIR}/{slug}_{counter}.html"
        counter += 1
    return path


def _unique_asset_path(url: str, folder: str, ext: str, used: Set[str]) -> str:
    digest_len = 8
    path = f"{folder}/{asset_filename(url, ext, digest_len=digest_len)}"
    while path in used and digest_len < 40:
        digest_len += 4
        path = f"{folder}/{asset_filename(url, ext, digest_len=digest_len)}"
    counter = 2
    base = path
    while path in used:
        stem, _, suffix = base.rpartition(".")
        path = f"{stem}_{counter}.{suffix}"
        counter += 1
    return path


def build_asset_map(
    requests: Iterable[CapturedRequest],
    pages: Mapping[str, PageSnapshot],
    base_url: str = "",
) -> AssetMap:
    """
    Назначает каждому захваченному ресурсу и странице уникальный путь в архиве.

    - страницы → ``pages/<slug>.html`` (повторяющиеся slug получают суффикс);
    - JSON-ответы → ``assets/data/`` и в mock-данные;
    - остальное по категории; ответы без содержимого не попадают в архив.

    Для ресурсов и страниц с того же origin, что и *base_url*, добавляются
    корневые относительные псевдонимы (``/css/site.css``).
    """
    amap = AssetMap()
    used: Set[str] = set(RESERVED_PATHS)
    origin = origin_of(base_url) if base_url else ""

    def add_source(text: str, local: str, *, page: bool) -> None:
        if text in amap.sources:
            return
        amap.sources[text] = local
        if page:
            amap.page_sources.add(text)
        if origin and _is_absolute(text) and origin_of(text) == origin:
            alias = text[len(origin):]
            # голый "/" слишком часто встречается в строках JS и CSS
            if alias.startswith("/") and alias != "/" and alias not in amap.sources:
                amap.sources[alias] = local
                if page:
                    amap.page_sources.add(alias)

    for url in pages:
        path = _unique_page_path(url_to_page_slug(url), used)
        used.add(path)
        amap.pages[url] = path
        add_source(url, path, page=True)
        if not url.endswith("/"):
            add_source(url + "/", path, page=True)

    for entry in requests:
        category = entry.category
        if category is AssetCategory.HTML:
            page_url = _page_url_for(entry.url, amap.pages)
            if page_url is not None:
                add_source(entry.url, amap.pages[page_url], page=True)
                continue
        if entry.content is None or entry.url in amap.paths:
            continue
        if category is AssetCategory.JSON:
            text = entry.text()
            if text is not None:
                amap.mock_data[entry.url] = text
        path = _unique_asset_path(entry.url, FOLDERS[category], _extension(entry, category), used)
        used.add(path)
        amap.paths[entry.url] = path
        add_source(entry.url, path, page=False)
    return amap


def build_replacement_pattern(
    sources: Iterable[str],
    page_sources: Collection[str] = (),
) -> Optional[Pattern[str]]:
    """
    Одно регулярное выражение для всех исходных строк, длинные первыми.

    Абсолютный URL ресурса не должен продолжаться символом имени файла;
    URL страницы должен заканчиваться разделителем или концом текста.
    Корневые псевдонимы (``/path``) совпадают только в значениях ``href``,
    ``src``, ``action``, ``poster`` и внутри ``url(...)``.
    """
    alternatives: List[str] = []
    for text in sorted(set(sources), key=len, reverse=True):
        tail = _PAGE_TAIL if text in page_sources else _ASSET_TAIL
        head = "" if _is_absolute(text) else _ALIAS_HEAD
        alternatives.append(f"{head}{re.escape(text)}{tail}")
    if not alternatives:
        return None
    return re.compile("|".join(alternatives))


def rewrite_references(
    text: str,
    pattern: Optional[Pattern[str]],
    mapping: Mapping[str, str],
    base_dir: str,
) -> str:
    """Заменяет совпадения *pattern* путями из *mapping*, относительными к *base_dir*."""
    if pattern is None or not text:
        return text
    return pattern.sub(lambda m: posixpath.relpath(mapping[m.group(0)], base_dir), text)


def strip_analytics(html: str) -> str:
    return _ANALYTICS_RE.sub("<!-- removed analytics -->", html)


def inject_head(html: str, base_dir: str = PAGES_DIR) -> str:
    """Mock-обработчик сразу после ``<head>``, общий stylesheet перед ``</head>``."""
    mock_src = posixpath.relpath(MOCK_HANDLER_PATH, base_dir)
    css_href = posixpath.relpath(COMBINED_CSS_PATH, base_dir)
    script = f'\n  <script src="{mock_src}"></script>'
    link = f'\n  <link rel="stylesheet" href="{css_href}">'
    html = _HEAD_OPEN_RE.sub(lambda m: m.group(0) + script, html, count=1)
    return _HEAD_CLOSE_RE.sub(lambda m: f"{link}\n{m.group(0)}", html, count=1)


def rewrite_html(
    html: str,
    pattern: Optional[Pattern[str]],
    mapping: Mapping[str, str],
    base_dir: str = PAGES_DIR,
) -> str:
    html = rewrite_references(html, pattern, mapping, base_dir)
    return inject_head(strip_analytics(html), base_dir)


def rewrite_css(
    entry: CapturedRequest,
    pattern: Optional[Pattern[str]],
    mapping: Mapping[str, str],
    base_dir: str = "assets/css",
) -> Optional[str]:
    """Текст таблицы стилей (base64 декодируется) с переписанными url()."""
    text = entry.text()
    if text is None:
        return None
    return rewrite_references(text, pattern, mapping, base_dir)


def combine_inline_styles(pages: Iterable[PageSnapshot]) -> str:
    """Inline-стили всех страниц без повторов, в порядке первого появления."""
    blocks: Dict[str, None] = {}
    for page in pages:
        for style in page.inline_styles:
            text = style.strip()
            if text:
                blocks.setdefault(text, None)
    return STYLE_SEPARATOR.join(blocks)


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ArchiveSink(Protocol):
    async def download_file(self, data: bytes, filename: str) -> Path: ...


class DirectorySink:
    """Сохраняет архив в каталог на диске (экспорт без браузера)."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    async def download_file(self, data: bytes, filename: str) -> Path:
        target = self.directory / filename
        await asyncio.to_thread(self._write, target, data)
        return target

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


class ArchiveAssembler:
    """Собирает ZIP-архив офлайн-копии сайта из :class:`CaptureStore`."""

    def __init__(
        self,
        store: CaptureStore,
        *,
        base_url: str,
        generator_version: str = __version__,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.store = store
        self.base_url = base_url
        self.generator_version = generator_version
        self.on_progress = on_progress
        self.env = Environment(
            loader=PackageLoader("site_cloner", "archive/templates"),
            autoescape=select_autoescape(["html.j2", "xml.j2"]),
        )

    def _render(self, name: str, **context: Any) -> str:
        return self.env.get_template(name).render(**context)

    def collect(self) -> Dict[str, Union[str, bytes]]:
        """Все файлы архива: путь → содержимое."""
        store = self.store
        amap = build_asset_map(store.requests, store.pages, self.base_url)
        pattern = build_replacement_pattern(amap.sources, amap.page_sources)
        files: Dict[str, Union[str, bytes]] = {}

        for url, page in store.pages.items():
            files[amap.pages[url]] = rewrite_html(page.html, pattern, amap.sources)

        for entry in store.requests:
            path = amap.paths.get(entry.url)
            if path is None:
                continue
            base_dir = posixpath.dirname(path)
            category = entry.category
            data: Union[str, bytes, None]
            if category is AssetCategory.CSS:
                data = rewrite_css(entry, pattern, amap.sources, base_dir)
            elif category is AssetCategory.HTML:
                text = entry.text()
                data = None if text is None else rewrite_html(text, pattern, amap.sources, base_dir)
            else:
                data = entry.body()
            if data is None:
                logger.warning("Skipping unreadable asset %s", entry.url)
                continue
            files[path] = data

        files[COMBINED_CSS_PATH] = combine_inline_styles(store.pages.values())
        files[MOCK_DATA_PATH] = _dump(amap.mock_data)
        files[MOCK_HANDLER_PATH] = self._render(
            "mock_handler.js.j2",
            version=self.generator_version,
            data_path=posixpath.relpath(MOCK_DATA_PATH, PAGES_DIR),
            origin=origin_of(self.base_url),
        )
        files["index.html"] = self._render("index.html.j2", entry_page=self._entry_page(amap))
        files["sitemap.xml"] = self._render("sitemap.xml.j2", urls=list(store.pages))
        files["robots.txt"] = self._render("robots.txt.j2", sitemap="sitemap.xml")
        files[STATE_PATH] = _dump(
            {
                "storage": {url: s.to_dict() for url, s in store.storage_by_url.items()},
                "cookies": store.cookies,
                "timestamp": _now_iso(),
            }
        )
        if store.stream_messages:
            files[SSE_PATH] = _dump([m.to_dict() for m in store.stream_messages])
        files[MANIFEST_PATH] = _dump(self._manifest(amap))
        return files

    def _entry_page(self, amap: AssetMap) -> str:
        seed = normalize_url(self.base_url) if self.base_url else None
        path = amap.pages.get(seed or "")
        if path is None:
            path = next(iter(amap.pages.values()), f"{PAGES_DIR}/{url_to_page_slug(self.base_url)}.html")
        return path

    def _manifest(self, amap: AssetMap) -> Dict[str, Any]:
        htmls = [p.html for p in self.store.pages.values()]
        return {
            "date": _now_iso(),
            "generator": "site-cloner",
            "generator_version": self.generator_version,
            "base_url": self.base_url,
            "pages": len(self.store.pages),
            "assets": len(self.store.requests),
            "api_mocks": len(amap.mock_data),
            "has_shadow_dom": any("shadowrootmode" in h for h in htmls),
            "has_canvas_captures": any(CANVAS_MARKER in h for h in htmls),
        }

    def build(self) -> bytes:
        """Собирает ZIP в памяти и возвращает его байты."""
        files = self.collect()
        buffer = BytesIO()
        total = len(files)
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for index, (path, data) in enumerate(files.items(), start=1):
                zf.writestr(path, data)
                if self.on_progress is not None:
                    self.on_progress(round(index / total * 100))
        logger.info("Archive built: %d files, %d bytes", total, buffer.tell())
        return buffer.getvalue()

    def write(self, path: Union[str, Path]) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.build())
        return target

    async def export(self, sink: ArchiveSink) -> Path:
        """Собирает архив вне event loop и передаёт его в *sink*."""
        data = await asyncio.to_thread(self.build)
        filename = f"site_clone_{int(time.time() * 1000)}.zip"
        return await sink.download_file(data, filename)
