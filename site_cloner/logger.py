# === FILE: site_cloner/logger.py ===
"""Logging setup for **SiteCloner**.

Everything logs through the single ``"SiteCloner"`` logger::

    from site_cloner.logger import logger
    logger.info("Crawl started")

The CLI calls :func:`init_logging` once its ``--log-*`` options are parsed.
Crawl workers log through :func:`worker_logger`, which prefixes each record
with the worker number so interleaved captures stay readable.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, MutableMapping, Tuple, Union

DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOGGER_NAME: Final[str] = "SiteCloner"

# Библиотеки, которые слишком болтливы на INFO во время обхода
NOISY_LOGGERS: Final[Tuple[str, ...]] = ("asyncio", "aiohttp.access", "aiohttp.server")

_LevelT = Union[int, str]


def _handlers(log_file: str | Path | None, fmt: str) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt)
    console = logging.StreamHandler(sys.stdout)
    handlers: list[logging.Handler] = [console]
    if log_file is not None:
        # архивы большие, логи обходов тоже: 5 МБ x 3 файла
        handlers.append(
            RotatingFileHandler(str(log_file), maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        )
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def init_logging(
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    log_format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """(Re)configure the project logger, replacing previously installed handlers.

    Parameters
    ----------
    level
        Numeric or textual logging level (e.g. ``"DEBUG"``).
    log_file
        Optional rotating log file in addition to stdout.
    log_format
        Format string for :class:`logging.Formatter`.
    """
    lg = logging.getLogger(LOGGER_NAME)
    lg.setLevel(level)
    lg.handlers.clear()
    for handler in _handlers(log_file, log_format):
        lg.addHandler(handler)
    lg.propagate = False

    noisy_level = logging.DEBUG if lg.level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
    return lg


class WorkerLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[w<N>]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[w{self.extra['worker']}] {msg}", kwargs


def worker_logger(worker: int) -> WorkerLogAdapter:
    return WorkerLogAdapter(logging.getLogger(LOGGER_NAME), {"worker": worker})


logger: logging.Logger = init_logging()

__all__ = ["DEFAULT_FORMAT", "LOGGER_NAME", "init_logging", "logger", "worker_logger"]
