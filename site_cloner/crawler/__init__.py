# site_cloner/crawler/__init__.py
"""Crawl orchestration: link discovery and the worker-pool scheduler."""
from site_cloner.crawler.links import discover_links, filter_new_links
from site_cloner.crawler.scheduler import CrawlScheduler

__all__ = ["CrawlScheduler", "discover_links", "filter_new_links"]
