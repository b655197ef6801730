# site_cloner/crawler/links.py
"""
Link discovery helpers for the crawl frontier.
"""
from __future__ import annotations

from typing import Iterable, List, Set
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from site_cloner.urls import host_of, normalize_url, origin_of


def discover_links(page_url: str, html: str) -> List[str]:
    """
    Extract same-origin anchor hrefs from serialized HTML.

    Used for snapshots that carry no ``internal_links`` (restored or manual
    ones). Ignores mailto:, javascript:, tel: and external origins.
    """
    soup = BeautifulSoup(html, "html.parser")
    origin = origin_of(page_url)
    links: List[str] = []
    for tag in soup.find_all("a", href=True):
        if not isinstance(tag, Tag):
            continue
        href_val = tag.get("href")
        if not isinstance(href_val, str):
            continue
        raw = href_val.strip()
        if not raw or raw.startswith(("mailto:", "javascript:", "tel:", "#")):
            continue
        try:
            absolute = urljoin(page_url, raw)
        except ValueError:
            continue
        if origin and origin_of(absolute) == origin:
            links.append(absolute)
    return list(dict.fromkeys(links))


def filter_new_links(
    links: Iterable[str],
    known: Set[str],
    seed_host: str,
    *,
    keep_query: bool = False,
) -> List[str]:
    """
    Normalize *links* and return those on *seed_host* not yet in *known*,
    in discovery order and without duplicates. Malformed links are dropped.
    *known* itself is not modified.
    """
    fresh: List[str] = []
    seen: Set[str] = set()
    for link in links:
        clean = normalize_url(link, keep_query=keep_query)
        if clean is None or clean in known or clean in seen:
            continue
        if host_of(clean) != seed_host:
            continue
        seen.add(clean)
        fresh.append(clean)
    return fresh
