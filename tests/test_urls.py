# File: tests/test_urls.py
import pytest

from site_cloner.classifier import AssetCategory, classify
from site_cloner.crawler.links import discover_links, filter_new_links
from site_cloner.urls import (
    asset_filename,
    ext_from_mime,
    ext_from_url,
    is_same_host,
    normalize_url,
    should_skip_asset,
    url_to_page_slug,
)


@pytest.mark.parametrize(
    "mime,url,expected",
    [
        ("text/html; charset=utf-8", "", AssetCategory.HTML),
        ("TEXT/CSS", "", AssetCategory.CSS),
        ("application/javascript", "", AssetCategory.JS),
        ("text/ecmascript", "", AssetCategory.JS),
        ("application/ld+json", "", AssetCategory.JSON),
        ("image/svg+xml", "", AssetCategory.IMG),
        ("font/woff2", "", AssetCategory.FONT),
        ("", "https://x.com/f/inter.woff2", AssetCategory.FONT),
        ("application/octet-stream", "https://x.com/f/icons.TTF?v=3", AssetCategory.FONT),
        (None, None, AssetCategory.OTHER),
        ("application/octet-stream", "https://x.com/blob", AssetCategory.OTHER),
    ],
)
def test_classify(mime, url, expected):
    assert classify(mime, url) is expected
    # pure: same input, same answer
    assert classify(mime, url) is classify(mime, url)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("https://Example.COM/docs/", "https://example.com/docs"),
        ("https://example.com/", "https://example.com"),
        ("https://example.com/a?x=1#frag", "https://example.com/a"),
        ("http://example.com:8080/a//", "http://example.com:8080/a"),
        ("ftp://example.com/a", None),
        ("javascript:void(0)", None),
        ("https://example.com:99999/", None),
        ("not a url", None),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected
    if expected is not None:
        assert normalize_url(expected) == expected


def test_normalize_keep_query():
    assert normalize_url("https://example.com/s/?q=1#x", keep_query=True) == "https://example.com/s?q=1"
    once = normalize_url("https://example.com/s/?q=1", keep_query=True)
    assert normalize_url(once, keep_query=True) == once


def test_skip_policy():
    assert should_skip_asset("https://example.com/file.PDF")
    assert should_skip_asset("https://example.com/video.mp4?x=1")
    assert should_skip_asset("tel:+123")
    assert should_skip_asset("https://www.googletagmanager.com/gtm.js")
    assert not should_skip_asset("https://example.com/pdf-guide")
    assert not should_skip_asset("https://example.com/app.js")


def test_same_host():
    assert is_same_host("https://cdn.example.com/a", "example.com")
    assert is_same_host("https://EXAMPLE.com/a", "example.com")
    assert not is_same_host("https://notexample.com/a", "example.com")


def test_page_slug_and_filenames():
    assert url_to_page_slug("https://example.com") == "index"
    assert url_to_page_slug("https://example.com/docs/intro/") == "docs__intro"
    assert url_to_page_slug("https://example.com/a b") == "a_b"
    a = asset_filename("https://example.com/a/logo.png", "png")
    b = asset_filename("https://example.com/b/logo.png", "png")
    assert a != b and a.startswith("logo_") and a.endswith(".png")
    assert len(asset_filename("https://example.com/a/logo.png", "png", digest_len=12)) == len(a) + 4
    assert ext_from_url("https://example.com/x/app.min.JS?v=1") == "js"
    assert ext_from_url("https://example.com/x/") is None
    assert ext_from_mime("image/svg+xml; charset=utf-8") == "svg"
    assert ext_from_mime(None) is None


def test_discover_links_same_origin_only():
    html = (
        '<a href="/a">A</a><a href="b?x=1">B</a><a href="#top">T</a>'
        '<a href="mailto:x@y.z">M</a><a href="https://other.com/">O</a><a href="/a">dup</a>'
    )
    links = discover_links("https://example.com/docs/", html)
    assert links == ["https://example.com/a", "https://example.com/docs/b?x=1"]


def test_filter_new_links_does_not_mutate_known():
    known = {"https://example.com"}
    fresh = filter_new_links(
        ["https://example.com/", "https://example.com/a/", "https://example.com/a#x", "https://sub.example.com/z"],
        known,
        "example.com",
    )
    assert fresh == ["https://example.com/a"]
    assert known == {"https://example.com"}
