"""
panlink crawler module.

Provides retrying HTTP fetches of upstream search pages.
"""

from panlink.crawler.fetcher import FetchPolicy, FetchRequest, FetchResponse, Fetcher

__all__ = [
    "FetchPolicy",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
]
