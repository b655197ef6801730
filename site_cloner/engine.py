# File: site_cloner/engine.py
"""site_cloner.engine: orchestration layer, собирает store, браузер, агент и планировщик для CLI."""

from __future__ import annotations

import asyncio
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from site_cloner.archive.assembler import ArchiveAssembler, DirectorySink
from site_cloner.browser.playwright_backend import PlaywrightBrowser
from site_cloner.capture import scripts
from site_cloner.capture.agent import PageCaptureAgent
from site_cloner.capture.settle import NetworkActivityMonitor, SettleDetector
from site_cloner.config import ClonerConfig
from site_cloner.crawler.scheduler import CrawlScheduler
from site_cloner.errors import ClonerError
from site_cloner.logger import logger
from site_cloner.models import PageSnapshot
from site_cloner.persistence import JsonFileStateStorage
from site_cloner.report import CrawlReport
from site_cloner.store import CaptureStore
from site_cloner.urls import host_of, normalize_url, origin_of

__all__ = [
    "LOCK_FILE",
    "build_archive",
    "clear_state",
    "open_store",
    "start_clone",
    "store_status",
    "take_snapshot",
]

StatusCallback = Callable[[str], None]
ProgressCallback = Callable[[int], None]

# пока файл существует, clear_state из другого процесса отказывает
LOCK_FILE = "crawl.lock"


def open_store(
    state_dir: Path,
    *,
    allowed_host: Optional[str] = None,
    persist_interval: float = 5.0,
) -> CaptureStore:
    """CaptureStore поверх JSON-файла в *state_dir*."""
    return CaptureStore(
        JsonFileStateStorage(state_dir),
        allowed_host=allowed_host,
        persist_interval=persist_interval,
        lock_path=Path(state_dir) / LOCK_FILE,
    )


def _store_for(cfg: ClonerConfig) -> CaptureStore:
    allowed = host_of(cfg.seed_url) if cfg.domain_filter else None
    return open_store(cfg.state_dir, allowed_host=allowed, persist_interval=cfg.persist_interval)


def _browser_for(
    cfg: ClonerConfig, store: CaptureStore, monitor: NetworkActivityMonitor
) -> PlaywrightBrowser:
    init_scripts: List[str] = [scripts.STREAM_INTERCEPTOR_JS]
    if cfg.stealth:
        init_scripts.append(scripts.STEALTH_JS)
    return PlaywrightBrowser(
        headless=cfg.headless,
        user_agent=cfg.resolved_user_agent,
        download_dir=cfg.output_dir,
        monitor=monitor,
        on_response=store.record_request,
        init_scripts=init_scripts,
        navigation_timeout=cfg.settle.max_wait,
    )


def _agent_for(
    cfg: ClonerConfig,
    browser: PlaywrightBrowser,
    monitor: NetworkActivityMonitor,
    *,
    mode: Optional[str] = None,
) -> PageCaptureAgent:
    return PageCaptureAgent(
        browser,
        SettleDetector.from_config(monitor, cfg.settle),
        mode=mode or cfg.capture_mode,
        stealth=cfg.stealth,
        background_timeout=cfg.background_timeout,
        settle_delay=cfg.background_settle_delay,
        scroll=cfg.scroll,
    )


@contextmanager
def _cancel_on_sigint(scheduler: CrawlScheduler) -> Iterator[None]:
    """Первый Ctrl-C: мягкая отмена обхода. Второй: обычный KeyboardInterrupt."""
    loop = asyncio.get_running_loop()

    def _handler() -> None:
        loop.remove_signal_handler(signal.SIGINT)
        logger.warning("Ctrl-C: дожидаемся текущих страниц, повторное нажатие прервёт работу")
        scheduler.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, _handler)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # Windows и не-главный поток
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def start_clone(
    cfg: ClonerConfig,
    *,
    archive: bool = True,
    on_status: Optional[StatusCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CrawlReport:
    """Полный цикл: восстановить store, обойти сайт, собрать ZIP."""
    store = _store_for(cfg)
    await store.restore()
    monitor = NetworkActivityMonitor()
    async with _browser_for(cfg, store, monitor) as browser:
        agent = _agent_for(cfg, browser, monitor)
        scheduler = CrawlScheduler(cfg, store, agent, browser, on_status=on_status)
        with _cancel_on_sigint(scheduler):
            report = await scheduler.run()
        if archive and store.pages:
            assembler = ArchiveAssembler(store, base_url=cfg.seed_url, on_progress=on_progress)
            path = await assembler.export(browser)
            report.archive_path = str(path)
            logger.info("Архив сохранён: %s", path)
    return report


async def take_snapshot(cfg: ClonerConfig, url: Optional[str] = None) -> PageSnapshot:
    """Ручной снимок одной страницы в активной вкладке с записью в store."""
    target = normalize_url(url or cfg.seed_url, keep_query=cfg.keep_query)
    if target is None:
        raise ValueError(f"Invalid URL: {url}")
    store = _store_for(cfg)
    await store.restore()
    monitor = NetworkActivityMonitor()
    async with _browser_for(cfg, store, monitor) as browser:
        agent = _agent_for(cfg, browser, monitor, mode="foreground")
        with store.crawl_guard():
            snapshot = await agent.capture(target)
            try:
                cookies = await browser.get_cookies(target)
            except ClonerError as exc:
                logger.warning("fetchCookies failed for %s: %s", target, exc)
                cookies = []
            await store.record_page(target, snapshot, cookies)
    await store.flush()
    logger.info("Снимок %s: %d символов HTML", target, len(snapshot.html))
    return snapshot


def _infer_base_url(store: CaptureStore) -> str:
    first = next(iter(store.pages), "")
    origin = origin_of(first)
    return origin or first


async def build_archive(
    state_dir: Path,
    output_dir: Path,
    *,
    base_url: Optional[str] = None,
    output: Optional[Path] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Path:
    """Собирает архив из сохранённого состояния без обхода."""
    store = open_store(state_dir)
    await store.restore()
    if not store.pages:
        raise ClonerError(f"Нет сохранённых страниц в {state_dir}")
    assembler = ArchiveAssembler(
        store, base_url=base_url or _infer_base_url(store), on_progress=on_progress
    )
    if output is not None:
        return await asyncio.to_thread(assembler.write, output)
    return await assembler.export(DirectorySink(output_dir))


async def store_status(state_dir: Path) -> Dict[str, Any]:
    store = open_store(state_dir)
    await store.restore()
    return store.summary()


async def clear_state(state_dir: Path) -> bool:
    store = open_store(state_dir)
    return await store.clear()
