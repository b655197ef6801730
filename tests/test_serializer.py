# File: tests/test_serializer.py
# Page serializer evaluated in a real Chromium page
from __future__ import annotations

import re

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from site_cloner.capture.scripts import CANVAS_MARKER, SERIALIZE_PAGE_JS

ORIGIN = "https://example.com"

PAGE = """<!DOCTYPE html>
<html lang="en"><head><title>Fixture</title>
<style>.crumbs li + li::before { content: "/"; }</style>
</head><body>
<p>line<br>two</p>
<img src="/a.png" alt="pic">
<input name="q" value="x">
<div id="quoted" title='say "hi"'>q</div>
<canvas id="chart" class="chart wide" style="width: 10px;" width="10" height="10"></canvas>
<canvas id="tainted" width="5" height="5"></canvas>
<div id="host">light</div>
<a href="/docs">docs</a>
<a href="/docs">docs again</a>
<a href="https://example.com/about#team">about</a>
<a href="https://other.com/x">other</a>
</body></html>"""

PREPARE_JS = """
(() => {
    const ctx = document.getElementById('chart').getContext('2d');
    ctx.fillStyle = '#f00';
    ctx.fillRect(0, 0, 10, 10);
    document.getElementById('tainted').toDataURL = () => {
        throw new DOMException('Tainted canvases may not be exported.', 'SecurityError');
    };
    document.getElementById('host').attachShadow({ mode: 'open' }).innerHTML = '<span>inside</span>';
    sessionStorage.setItem('tab', '1');
    localStorage.setItem('theme', 'dark');
})()
"""


@pytest_asyncio.fixture()
async def page():
    pw = await async_playwright().start()
    try:
        browser = await pw.chromium.launch()
    except PlaywrightError as exc:
        await pw.stop()
        pytest.skip(f"Chromium is not available: {exc}")
    page = await browser.new_page()

    async def serve(route):
        if route.request.resource_type == "document":
            await route.fulfill(status=200, content_type="text/html", body=PAGE)
        else:
            await route.fulfill(status=404, body="")

    await page.route("**/*", serve)
    await page.goto(f"{ORIGIN}/")
    await page.evaluate(PREPARE_JS)
    yield page
    await browser.close()
    await pw.stop()


@pytest.mark.asyncio()
async def test_markup_serialization(page):
    result = await page.evaluate(SERIALIZE_PAGE_JS)
    html = result["html"]

    assert html.startswith('<html lang="en">')
    assert html.endswith("</html>")
    assert "<p>line<br>two</p>" in html
    assert '<img src="/a.png" alt="pic">' in html
    assert '<input name="q" value="x">' in html
    for tag in ("br", "img", "input"):
        assert f"</{tag}>" not in html
    assert '<div id="quoted" title="say &quot;hi&quot;">q</div>' in html
    assert '<div id="host"><template shadowrootmode="open"><span>inside</span></template>light</div>' in html
    assert result["title"] == "Fixture"
    assert result["url"] == f"{ORIGIN}/"
    assert result["inlineStyles"] == ['.crumbs li + li::before { content: "/"; }']


@pytest.mark.asyncio()
async def test_canvas_becomes_image_or_placeholder(page):
    html = (await page.evaluate(SERIALIZE_PAGE_JS))["html"]

    match = re.search(r'<img src="data:image/png;base64,[^"]+" style="([^"]*)" class="([^"]*)" ([\w-]+)="true">', html)
    assert match is not None
    assert match.group(1) == "width: 10px;"
    assert match.group(2) == "chart wide"
    assert match.group(3) == CANVAS_MARKER
    assert "<canvas" not in html
    assert html.count("<!-- canvas capture failed -->") == 1


@pytest.mark.asyncio()
async def test_storage_and_internal_links(page):
    result = await page.evaluate(SERIALIZE_PAGE_JS)

    assert result["storage"] == {"local": {"theme": "dark"}, "session": {"tab": "1"}}
    assert sorted(result["internalLinks"]) == [f"{ORIGIN}/about#team", f"{ORIGIN}/docs"]


@pytest.mark.asyncio()
async def test_unreadable_storage_degrades_to_empty(page):
    await page.evaluate(
        """() => Object.defineProperty(window, 'localStorage', {
            configurable: true,
            get() { throw new DOMException('Access is denied', 'SecurityError'); },
        })"""
    )

    result = await page.evaluate(SERIALIZE_PAGE_JS)

    assert result["storage"] == {"local": {}, "session": {"tab": "1"}}
