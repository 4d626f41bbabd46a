"""
Deduplication of link records and results.
"""

from panlink.filter.deduplication import canonicalize_url, deduplicate_links, merge_results

__all__ = [
    "canonicalize_url",
    "deduplicate_links",
    "merge_results",
]
