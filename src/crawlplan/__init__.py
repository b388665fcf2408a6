"""Crawl-planning core: adaptive plan arbitration for the crawler.

The ``crawlplan.meta`` package decides, per crawl domain, which execution
plan actually runs.
"""

__version__ = "0.4.0"
