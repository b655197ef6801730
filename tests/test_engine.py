# File: tests/test_engine.py
"""Offline engine commands: archive from saved state, status and clear."""
import json
import os
import zipfile

import pytest

from site_cloner.engine import LOCK_FILE, build_archive, clear_state, open_store, store_status
from site_cloner.errors import ClonerError
from site_cloner.models import CapturedRequest, PageSnapshot


async def _seed_state(state_dir):
    store = open_store(state_dir)
    await store.record_request(
        CapturedRequest(url="https://example.com/style.css", mime_type="text/css", content="body{color:red}")
    )
    await store.record_page(
        "https://example.com/docs",
        PageSnapshot(
            url="https://example.com/docs",
            title="Docs",
            html='<html><head></head><body><link href="https://example.com/style.css"></body></html>',
        ),
    )
    await store.flush()
    return store


@pytest.mark.asyncio()
async def test_build_archive_from_saved_state(tmp_path):
    state = tmp_path / "state"
    await _seed_state(state)

    path = await build_archive(state, tmp_path / "out", output=tmp_path / "site.zip")

    assert path == tmp_path / "site.zip"
    with zipfile.ZipFile(path) as zf:
        manifest = json.loads(zf.read("__manifest.json"))
        assert manifest["base_url"] == "https://example.com"
        assert manifest["pages"] == 1
        page = zf.read("pages/docs.html").decode("utf-8")
        assert "../assets/css/" in page


@pytest.mark.asyncio()
async def test_build_archive_to_output_dir(tmp_path):
    state = tmp_path / "state"
    await _seed_state(state)
    progress = []

    path = await build_archive(
        state, tmp_path / "out", base_url="https://example.com/", on_progress=progress.append
    )

    assert path.parent == tmp_path / "out"
    assert path.name.startswith("site_clone_") and path.suffix == ".zip"
    assert zipfile.is_zipfile(path)
    assert progress and progress[-1] == 100


@pytest.mark.asyncio()
async def test_build_archive_without_pages(tmp_path):
    with pytest.raises(ClonerError):
        await build_archive(tmp_path / "empty", tmp_path / "out")


@pytest.mark.asyncio()
async def test_status_and_clear(tmp_path):
    state = tmp_path / "state"
    await _seed_state(state)

    summary = await store_status(state)
    assert summary["pages"] == 1
    assert summary["assets"] == 1
    assert summary["counts"]["css"] == 1

    assert await clear_state(state) is True
    assert (await store_status(state))["pages"] == 0


@pytest.mark.asyncio()
async def test_clear_refused_while_another_store_crawls(tmp_path):
    state = tmp_path / "state"
    await _seed_state(state)
    crawling = open_store(state)

    with crawling.crawl_guard():
        assert (state / LOCK_FILE).read_text(encoding="utf-8") == str(os.getpid())
        assert await clear_state(state) is False
        assert (await store_status(state))["pages"] == 1

    assert not (state / LOCK_FILE).exists()
    assert await clear_state(state) is True
