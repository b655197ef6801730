# File: tests/test_scheduler.py
# Crawl scheduler: depth bound, retries, cancellation and fatal aborts
from __future__ import annotations

import asyncio
import random

import pytest

from site_cloner.crawler.scheduler import CrawlScheduler
from site_cloner.models import TaskState

from conftest import ScriptedAgent

SEED = "https://example.com"


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def run_crawl(scheduler: CrawlScheduler):
    return await asyncio.wait_for(scheduler.run(), timeout=5.0)


@pytest.mark.asyncio()
async def test_depth_one_scenario(basic_config, store, fake_browser):
    agent = ScriptedAgent(
        links={
            SEED: [
                "https://example.com/a",
                "https://example.com/b/",
                "https://example.com/b#top",
                "https://other.com/x",
            ],
            "https://example.com/a": ["https://example.com/c"],
        }
    )
    scheduler = CrawlScheduler(basic_config, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    expected = {SEED, "https://example.com/a", "https://example.com/b"}
    assert report.status == "completed"
    assert set(report.visited) == expected
    assert scheduler.known == expected
    assert "https://example.com/c" not in agent.calls
    assert sorted(agent.calls) == sorted(expected)
    assert all(state is TaskState.SUCCEEDED for state in scheduler.states.values())
    assert set(store.pages) == expected
    assert fake_browser.notifications == [("Crawl Complete", "Captured 3 pages.")]


@pytest.mark.asyncio()
async def test_known_always_contains_visited(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"max_depth": 3})
    links = {
        SEED: [f"{SEED}/p{i}" for i in range(4)],
        f"{SEED}/p0": [f"{SEED}/p0/q{i}" for i in range(3)],
        f"{SEED}/p1": [SEED, f"{SEED}/p0"],
        f"{SEED}/p0/q1": [f"{SEED}/deep"],
    }
    agent = ScriptedAgent(links=links, failures={f"{SEED}/p2": 1})
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser)
    observed = []
    agent.on_capture = lambda url: observed.append(scheduler.visited <= scheduler.known)

    report = await run_crawl(scheduler)

    assert observed and all(observed)
    assert scheduler.visited <= scheduler.known
    assert len(agent.calls) == len(set(agent.calls)) + 1  # one retry of p2
    assert f"{SEED}/deep" in report.visited


@pytest.mark.asyncio()
async def test_retry_twice_then_succeed(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"max_depth": 0})
    agent = ScriptedAgent(failures={SEED: 2})
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    assert scheduler.states[SEED] is TaskState.SUCCEEDED
    assert report.retries == {SEED: 2}
    assert report.total_retries == 2
    assert agent.calls == [SEED, SEED, SEED]
    assert report.failed == []


@pytest.mark.asyncio()
async def test_retries_exhausted_marks_failed(basic_config, store, fake_browser):
    broken = f"{SEED}/broken"
    agent = ScriptedAgent(links={SEED: [broken, f"{SEED}/ok"]}, failures={broken: 10})
    scheduler = CrawlScheduler(basic_config, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    assert report.status == "completed"
    assert agent.calls.count(broken) == basic_config.max_retries + 1
    assert scheduler.states[broken] is TaskState.FAILED
    assert report.failed == [broken]
    assert broken in report.visited
    assert broken not in store.pages
    assert report.pages_captured == 2
    assert "1 failed" in report.summary_line()


@pytest.mark.asyncio()
async def test_cancel_with_three_in_flight(basic_config, store, fake_browser):
    children = [f"{SEED}/c{i}" for i in range(5)]
    agent = ScriptedAgent(links={SEED: children}, gated=set(children))
    scheduler = CrawlScheduler(basic_config, store, agent, fake_browser)

    crawl = asyncio.create_task(scheduler.run())
    await _wait_until(lambda: agent.active == 3)
    in_flight = list(agent.calls[1:])

    scheduler.cancel()
    await asyncio.sleep(0)
    agent.gate.set()
    report = await asyncio.wait_for(crawl, timeout=5.0)

    assert report.status == "cancelled"
    assert len(agent.calls) == 4
    assert len(in_flight) == 3
    for url in in_flight:
        assert scheduler.states[url] is TaskState.SUCCEEDED
    untouched = set(children) - set(in_flight)
    assert len(untouched) == 2
    assert all(scheduler.states[url] is TaskState.QUEUED for url in untouched)
    assert set(report.visited) == {SEED, *in_flight}
    assert not store.crawl_active


@pytest.mark.asyncio()
async def test_control_channel_lost_aborts(basic_config, store, fake_browser):
    lost = f"{SEED}/lost"
    agent = ScriptedAgent(links={SEED: [lost]}, fatal={lost})
    scheduler = CrawlScheduler(basic_config, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    assert report.status == "aborted"
    assert "context invalidated" in report.error
    assert scheduler.states[lost] is TaskState.FAILED
    assert agent.calls.count(lost) == 1
    assert fake_browser.notifications == []
    # partial results stay in the store
    assert SEED in store.pages


@pytest.mark.asyncio()
async def test_keep_alive_failure_aborts(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"keep_alive_interval": 0.01})
    agent = ScriptedAgent(gated={SEED})
    fake_browser.connected = False
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    assert report.status == "aborted"
    assert report.pages_captured == 0


@pytest.mark.asyncio()
async def test_page_budget_limits_known(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"max_pages": 3})
    agent = ScriptedAgent(links={SEED: [f"{SEED}/p{i}" for i in range(10)]})
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser)

    report = await run_crawl(scheduler)

    assert len(scheduler.known) == 3
    assert report.pages_captured == 3


@pytest.mark.asyncio()
async def test_foreground_mode_uses_single_worker(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"capture_mode": "foreground", "workers": 5})
    children = [f"{SEED}/c{i}" for i in range(4)]
    agent = ScriptedAgent(links={SEED: children})
    peak = []
    agent.on_capture = lambda url: peak.append(agent.active)
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser)

    await run_crawl(scheduler)

    assert scheduler.concurrency == 1
    assert max(peak) == 0


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.mark.asyncio()
async def test_stealth_pause_uses_jitter_range(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(
        update={"stealth": True, "stealth_delay_min": 0.5, "stealth_delay_max": 1.5}
    )
    sleep = RecordingSleep()
    agent = ScriptedAgent(links={SEED: [f"{SEED}/a", f"{SEED}/b", f"{SEED}/c"]})
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser, rng=random.Random(7), sleep=sleep)

    report = await run_crawl(scheduler)

    assert report.status == "completed"
    expected_rng = random.Random(7)
    assert sleep.delays == [expected_rng.uniform(0.5, 1.5) for _ in range(4)]
    assert all(0.5 <= delay <= 1.5 for delay in sleep.delays)
    assert len(set(sleep.delays)) == 4


@pytest.mark.asyncio()
async def test_plain_pause_uses_task_delay(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"task_delay": 0.25})
    sleep = RecordingSleep()
    agent = ScriptedAgent(links={SEED: [f"{SEED}/a", f"{SEED}/b"]})
    scheduler = CrawlScheduler(cfg, store, agent, fake_browser, sleep=sleep)

    await run_crawl(scheduler)

    assert sleep.delays == [0.25, 0.25, 0.25]


def _scheduler_with_backlog(cfg, store, fake_browser) -> CrawlScheduler:
    scheduler = CrawlScheduler(cfg, store, ScriptedAgent(), fake_browser)
    scheduler._page_times = [2.0]
    scheduler.states = {f"{SEED}/{name}": TaskState.QUEUED for name in "abc"}
    return scheduler


def test_eta_uses_task_delay(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"task_delay": 0.5})
    scheduler = _scheduler_with_backlog(cfg, store, fake_browser)
    assert scheduler.eta() == pytest.approx(3 * 2.5 / 3)


def test_eta_uses_stealth_midpoint(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(
        update={"stealth": True, "task_delay": 0.5, "stealth_delay_min": 1.0, "stealth_delay_max": 3.0}
    )
    scheduler = _scheduler_with_backlog(cfg, store, fake_browser)
    assert scheduler.eta() == pytest.approx(3 * 4.0 / 3)


def test_invalid_seed_rejected(basic_config, store, fake_browser):
    cfg = basic_config.model_copy(update={"base_url": "ftp://example.com"})
    scheduler = CrawlScheduler(cfg, store, ScriptedAgent(), fake_browser)
    with pytest.raises(ValueError):
        asyncio.run(scheduler.run())
