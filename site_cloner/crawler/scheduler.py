# === FILE: site_cloner/crawler/scheduler.py ===
"""
Crawl scheduler: bounded-depth breadth-first discovery over a pool of
cooperative asyncio workers.

Task lifecycle::

    queued → in_flight → succeeded
                       → retrying → queued        (transient failure, under the cap)
                       → failed                   (cap exceeded)

Losing the browser session (:class:`ControlChannelLost`) stops every worker
at once, in-flight captures included. ``cancel()`` is cooperative: in-flight
captures finish, nothing new starts.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set

from site_cloner.browser.base import BrowserCapability
from site_cloner.config import ClonerConfig
from site_cloner.crawler.links import discover_links, filter_new_links
from site_cloner.errors import CaptureError, ClonerError, ControlChannelLost
from site_cloner.logger import worker_logger
from site_cloner.models import FrontierTask, PageSnapshot, TaskState
from site_cloner.report import CrawlReport
from site_cloner.store import CaptureStore
from site_cloner.urls import host_of, normalize_url

__all__ = ("CrawlScheduler", "PageCapturer")


class PageCapturer(Protocol):
    async def capture(self, url: str) -> PageSnapshot: ...


class CrawlScheduler:
    """Drives page captures from a shared frontier queue and records results in the store."""

    def __init__(
        self,
        config: ClonerConfig,
        store: CaptureStore,
        agent: PageCapturer,
        browser: BrowserCapability,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.agent = agent
        self.browser = browser
        self.concurrency: int = config.effective_workers
        self.max_depth: int = config.max_depth
        self.max_retries: int = config.max_retries
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._on_status = on_status
        self.logger = logging.getLogger("SiteCloner")
        self._queue: Optional[asyncio.Queue[Optional[FrontierTask]]] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._reset_session()

    def _reset_session(self) -> None:
        self.known: Set[str] = set()
        self.visited: Set[str] = set()
        self.failed: Set[str] = set()
        self.states: Dict[str, TaskState] = {}
        self.retries: Dict[str, int] = {}
        self.in_flight = 0
        self.succeeded = 0
        self.seed = ""
        self.seed_host = ""
        self._cancel_requested = False
        self._fatal: Optional[ControlChannelLost] = None
        self._crash: Optional[BaseException] = None
        self._page_times: List[float] = []

    # ------------------------------------------------------------------ #
    # Control                                                            #
    # ------------------------------------------------------------------ #

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def stopping(self) -> bool:
        return self._cancel_requested or self._fatal is not None or self._crash is not None

    def cancel(self) -> None:
        """Request a cooperative stop. In-flight captures are allowed to finish."""
        if self._cancel_requested:
            return
        self._cancel_requested = True
        self.logger.info("Cancel requested")
        self._status("Cancel requested...")
        self._signal_stop()

    def _signal_stop(self) -> None:
        if self._stop_event is None or self._queue is None or self._stop_event.is_set():
            return
        self._stop_event.set()
        # wake idle workers blocked on queue.get()
        for _ in range(self.concurrency):
            self._queue.put_nowait(None)

    def _abort(self, exc: ControlChannelLost) -> None:
        if self._fatal is None:
            self._fatal = exc
            self.logger.error("Browser session lost, aborting crawl: %s", exc)
            self._status("Browser session lost - restart site-cloner to continue")
        self._signal_stop()

    # ------------------------------------------------------------------ #
    # Main loop                                                          #
    # ------------------------------------------------------------------ #

    async def run(self) -> CrawlReport:
        """Crawl from ``config.base_url`` until the frontier is exhausted or stopped."""
        seed = normalize_url(self.config.seed_url, keep_query=self.config.keep_query)
        if seed is None:
            raise ValueError(f"Invalid seed URL: {self.config.seed_url}")
        self._reset_session()
        self.seed = seed
        self.seed_host = host_of(seed)
        self._queue = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self.known.add(seed)
        self._enqueue(FrontierTask(seed, 0))

        self.logger.info(
            "Старт обхода: %s (depth ≤ %d, %d workers)", seed, self.max_depth, self.concurrency
        )
        start = self._clock()
        with self.store.crawl_guard():
            workers = [
                asyncio.create_task(self._worker(i), name=f"crawl-worker-{i}")
                for i in range(self.concurrency)
            ]
            keep_alive = asyncio.create_task(self._keep_alive(), name="crawl-keep-alive")
            join_waiter = asyncio.create_task(self._queue.join())
            stop_waiter = asyncio.create_task(self._stop_event.wait())
            try:
                await asyncio.wait({join_waiter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if self._stop_event.is_set() and self._fatal is None and self._crash is None:
                    # cancel: in-flight tasks finish, idle workers wake on the sentinels
                    await asyncio.gather(*workers, return_exceptions=True)
            finally:
                pending = (*workers, keep_alive, join_waiter, stop_waiter)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
            await self.store.flush()

        report = self._build_report(self._clock() - start)
        self.logger.info("%s за %.2f с", report.summary_line(), report.duration)
        if self._crash is not None:
            raise self._crash
        if report.status != "aborted":
            await self._notify_done(report)
        self._status(report.summary_line())
        return report

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        log = worker_logger(index)
        while not self.stopping:
            task = await self._queue.get()
            try:
                if task is None or self.stopping:
                    return
                log.debug("picked %s (depth %d, attempt %d)", task.url, task.depth, task.retry_count + 1)
                await self._process(task)
            except Exception as exc:
                log.exception("crashed on %s", task.url)
                if self._crash is None:
                    self._crash = exc
                self._signal_stop()
                return
            finally:
                self._queue.task_done()
            if not self.stopping:
                await self._pause()

    async def _process(self, task: FrontierTask) -> None:
        url = task.url
        self.in_flight += 1
        self.states[url] = TaskState.IN_FLIGHT
        self._status(f"Capturing [{self.succeeded + 1}/{self._total()}] {url}")
        started = self._clock()
        try:
            snapshot = await self.agent.capture(url)
            await self._store_page(url, snapshot)
        except ControlChannelLost as exc:
            self.states[url] = TaskState.FAILED
            self._abort(exc)
            return
        except (CaptureError, asyncio.TimeoutError) as exc:
            self._on_failure(task, exc)
            return
        finally:
            self.in_flight -= 1

        self._page_times.append(self._clock() - started)
        self.succeeded += 1
        self.visited.add(url)
        self.states[url] = TaskState.SUCCEEDED
        self._discover(task, snapshot)
        self._report_progress()

    async def _store_page(self, url: str, snapshot: PageSnapshot) -> None:
        try:
            cookies = await self.browser.get_cookies(url)
        except ControlChannelLost:
            raise
        except ClonerError as exc:
            self.logger.warning("fetchCookies failed for %s: %s", url, exc)
            cookies = []
        await self.store.record_page(url, snapshot, cookies)

    def _on_failure(self, task: FrontierTask, exc: BaseException) -> None:
        url = task.url
        if task.retry_count < self.max_retries and not self.stopping:
            self.states[url] = TaskState.RETRYING
            self.retries[url] = task.retry_count + 1
            self.logger.warning(
                "Capture failed for %s (%s), retry %d/%d",
                url, exc, task.retry_count + 1, self.max_retries,
            )
            self._enqueue(FrontierTask(url, task.depth, task.retry_count + 1))
            return
        self.states[url] = TaskState.FAILED
        self.failed.add(url)
        self.visited.add(url)
        self.logger.error("Giving up on %s after %d attempt(s): %s", url, task.retry_count + 1, exc)

    def _discover(self, task: FrontierTask, snapshot: PageSnapshot) -> None:
        if task.depth >= self.max_depth or self.stopping:
            return
        links = snapshot.internal_links or discover_links(snapshot.url or task.url, snapshot.html)
        fresh = filter_new_links(
            links, self.known, self.seed_host, keep_query=self.config.keep_query
        )
        for link in fresh:
            if len(self.known) >= self.config.max_pages:
                self.logger.debug("Page budget of %d reached", self.config.max_pages)
                break
            self.known.add(link)
            self._enqueue(FrontierTask(link, task.depth + 1))

    def _enqueue(self, task: FrontierTask) -> None:
        assert self._queue is not None
        self.states[task.url] = TaskState.QUEUED
        self._queue.put_nowait(task)

    async def _pause(self) -> None:
        if self.config.stealth:
            delay = self._rng.uniform(self.config.stealth_delay_min, self.config.stealth_delay_max)
        else:
            delay = self.config.task_delay
        await self._sleep(delay)

    def _mean_pause(self) -> float:
        if self.config.stealth:
            return (self.config.stealth_delay_min + self.config.stealth_delay_max) / 2
        return self.config.task_delay

    async def _keep_alive(self) -> None:
        while True:
            await asyncio.sleep(self.config.keep_alive_interval)
            try:
                await self.browser.ping()
            except ControlChannelLost as exc:
                self._abort(exc)
                return

    async def _notify_done(self, report: CrawlReport) -> None:
        try:
            await self.browser.notify_user("Crawl Complete", f"Captured {report.pages_captured} pages.")
        except ClonerError as exc:
            self.logger.debug("Completion notice not delivered: %s", exc)

    # ------------------------------------------------------------------ #
    # Progress                                                           #
    # ------------------------------------------------------------------ #

    def _queued(self) -> int:
        return sum(1 for state in self.states.values() if state is TaskState.QUEUED)

    def _total(self) -> int:
        return self.succeeded + self._queued() + self.in_flight

    def progress(self) -> int:
        """Percentage of known work done."""
        total = self._total()
        return round(self.succeeded / total * 100) if total else 100

    def eta(self) -> Optional[float]:
        """Seconds left, from the average page time plus the politeness pause."""
        if not self._page_times:
            return None
        avg = sum(self._page_times) / len(self._page_times) + self._mean_pause()
        remaining = self._queued() + self.in_flight
        return remaining * avg / self.concurrency

    def _report_progress(self) -> None:
        eta = self.eta()
        eta_text = "estimating..." if eta is None else f"{int(eta // 60)}m {int(eta % 60)}s"
        self.logger.debug("Progress %d%%, ETA %s", self.progress(), eta_text)

    def _status(self, message: str) -> None:
        self.logger.debug(message)
        if self._on_status is not None:
            self._on_status(message)

    def _build_report(self, duration: float) -> CrawlReport:
        if self._fatal is not None or self._crash is not None:
            status = "aborted"
        elif self._cancel_requested:
            status = "cancelled"
        else:
            status = "completed"
        error = self._fatal or self._crash
        return CrawlReport(
            status=status,
            seed=self.seed,
            pages_captured=self.succeeded,
            assets_captured=len(self.store.requests),
            visited=sorted(self.visited),
            failed=sorted(self.failed),
            retries=dict(self.retries),
            duration=round(duration, 3),
            error=str(error) if error is not None else None,
        )
