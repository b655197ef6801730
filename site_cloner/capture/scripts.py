# site_cloner/capture/scripts.py
"""
JavaScript evaluated inside captured pages.

Each constant is a self-contained expression suitable for
``BrowserCapability.evaluate_in_page``. Scripts that need parameters are
stored as function expressions and called through :func:`call`.
"""
from __future__ import annotations

import json
from typing import Any

__all__ = [
    "SERIALIZE_PAGE_JS",
    "SCROLL_HEIGHT_JS",
    "AUTO_SCROLL_FN",
    "STEALTH_JS",
    "STREAM_INTERCEPTOR_JS",
    "DRAIN_STREAMS_JS",
    "VOID_ELEMENTS",
    "CANVAS_MARKER",
    "call",
]

VOID_ELEMENTS = (
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
)
CANVAS_MARKER = "data-canvas-capture"


def call(function_js: str, *args: Any) -> str:
    """Build an expression calling *function_js* with JSON-encoded arguments."""
    return f"({function_js})({', '.join(json.dumps(a) for a in args)})"


# Serialized snapshot of the live document. Text nodes are emitted verbatim,
# attribute values only get their double quotes escaped. Shadow roots become
# declarative <template shadowrootmode> blocks inside their host, canvases
# become <img> tags holding a PNG data URL.
SERIALIZE_PAGE_JS = """
(() => {
    const VOID = new Set(%(void)s);
    const esc = (value) => String(value).replace(/"/g, '&quot;');
    const attrs = (el) => Array.from(el.attributes)
        .map(a => ' ' + a.name + '="' + esc(a.value) + '"').join('');

    const serializeNode = (node) => {
        if (node.nodeType === Node.TEXT_NODE) return node.textContent;
        if (node.nodeType === Node.COMMENT_NODE) return '<!--' + node.textContent + '-->';
        if (node.nodeType !== Node.ELEMENT_NODE) return '';

        const tag = node.tagName.toLowerCase();
        if (tag === 'canvas') {
            try {
                const dataUrl = node.toDataURL('image/png');
                return '<img src="' + dataUrl + '" style="' + esc(node.style.cssText) +
                    '" class="' + esc(node.className) + '" %(marker)s="true">';
            } catch (e) {
                return '<!-- canvas capture failed -->';
            }
        }

        let out = '<' + tag + attrs(node) + '>';
        if (node.shadowRoot) {
            out += '<template shadowrootmode="' + node.shadowRoot.mode + '">';
            out += Array.from(node.shadowRoot.childNodes).map(serializeNode).join('');
            out += '</template>';
        }
        if (!VOID.has(tag)) {
            out += Array.from(node.childNodes).map(serializeNode).join('');
            out += '</' + tag + '>';
        }
        return out;
    };

    const root = document.documentElement;
    const html = '<html' + attrs(root) + '>' +
        Array.from(root.childNodes).map(serializeNode).join('') + '</html>';

    const readStorage = () => {
        const res = { local: {}, session: {} };
        try {
            for (let i = 0; i < localStorage.length; i++) {
                const k = localStorage.key(i);
                res.local[k] = localStorage.getItem(k);
            }
        } catch (e) { res.local = {}; }
        try {
            for (let i = 0; i < sessionStorage.length; i++) {
                const k = sessionStorage.key(i);
                res.session[k] = sessionStorage.getItem(k);
            }
        } catch (e) { res.session = {}; }
        return res;
    };

    const origin = window.location.origin;
    return {
        url: window.location.href,
        title: document.title,
        html: html,
        storage: readStorage(),
        inlineStyles: Array.from(document.querySelectorAll('style')).map(s => s.textContent || ''),
        internalLinks: Array.from(new Set(
            Array.from(document.querySelectorAll('a[href]'))
                .map(a => a.href)
                .filter(h => h.startsWith(origin))
        )),
    };
})()
""" % {"void": json.dumps(list(VOID_ELEMENTS)), "marker": CANVAS_MARKER}

SCROLL_HEIGHT_JS = "document.documentElement.scrollHeight"

# Scrolls the page in steps to trigger lazy loading, then returns to the top.
AUTO_SCROLL_FN = """
async ({ totalHeight, step, stealth }) => {
    const sleep = ms => new Promise(r => setTimeout(r, ms));
    const steps = Math.ceil(totalHeight / step);
    for (let i = 0; i <= steps; i++) {
        let y = i * step;
        if (stealth) y += (Math.random() - 0.5) * 200;
        window.scrollTo(0, y);
        let wait = stealth ? 200 + Math.random() * 300 : 250;
        if (stealth && Math.random() > 0.9) wait += 1500;
        await sleep(wait);
    }
    window.scrollTo(0, 0);
    await sleep(500);
    return steps;
}
"""

STEALTH_JS = """
(() => {
    if (window.__clonerStealth) return false;
    window.__clonerStealth = true;
    try {
        Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
        Object.defineProperty(navigator, 'hardwareConcurrency', {
            get: () => Math.floor(Math.random() * 8) + 4,
        });
        Object.defineProperty(navigator, 'deviceMemory', {
            get: () => [4, 8, 16][Math.floor(Math.random() * 3)],
        });
        if (!navigator.plugins.length) {
            const plugins = [{ name: 'Chrome PDF Viewer' }, { name: 'Native Client' }];
            Object.defineProperty(navigator, 'plugins', { get: () => plugins });
        }
    } catch (e) {}
    setInterval(() => {
        document.dispatchEvent(new MouseEvent('mousemove', {
            view: window, bubbles: true, cancelable: true,
            clientX: Math.random() * window.innerWidth,
            clientY: Math.random() * window.innerHeight,
        }));
    }, 3000 + Math.random() * 5000);
    return true;
})()
"""

# Wraps EventSource so every received message is buffered in the page until
# DRAIN_STREAMS_JS collects it.
STREAM_INTERCEPTOR_JS = """
(() => {
    if (window.__clonerStreams) return false;
    window.__clonerStreams = true;
    window.__capturedStreamMessages = window.__capturedStreamMessages || [];
    const RealEventSource = window.EventSource;
    if (!RealEventSource) return false;
    window.EventSource = function (url, options) {
        const es = new RealEventSource(url, options);
        es.addEventListener('message', (e) => {
            window.__capturedStreamMessages.push({
                url: String(url), data: e.data, type: e.type, timestamp: Date.now(),
            });
        });
        return es;
    };
    window.EventSource.prototype = RealEventSource.prototype;
    return true;
})()
"""

DRAIN_STREAMS_JS = """
(() => {
    const messages = window.__capturedStreamMessages || [];
    window.__capturedStreamMessages = [];
    return messages;
})()
"""
