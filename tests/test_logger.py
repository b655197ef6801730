# File: tests/test_logger.py
import logging

import pytest

from site_cloner.logger import LOGGER_NAME, init_logging, worker_logger


@pytest.fixture()
def restore_logging():
    yield
    for handler in logging.getLogger(LOGGER_NAME).handlers:
        handler.close()
    init_logging()


def test_file_log_and_worker_prefix(tmp_path, restore_logging):
    log_file = tmp_path / "crawl.log"
    lg = init_logging(level="DEBUG", log_file=log_file, log_format="%(levelname)s %(message)s")

    assert len(lg.handlers) == 2
    worker_logger(2).info("captured %s", "https://example.com")

    assert "INFO [w2] captured https://example.com" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("aiohttp.access").level == logging.DEBUG


def test_reconfigure_replaces_handlers(restore_logging):
    init_logging()
    lg = init_logging(level="WARNING")
    assert len(lg.handlers) == 1
    assert lg.level == logging.WARNING
    assert logging.getLogger("asyncio").level == logging.WARNING
