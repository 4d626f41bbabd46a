"""
Search sources and orchestration.
"""

from panlink.search.orchestrator import SearchOrchestrator
from panlink.search.registry import (
    create_source,
    get_registered_sources,
    get_source,
    load_configured_sources,
    register_source,
    reset_source_registry,
)
from panlink.search.sources import HtmlListingSource, JsonApiSource, SearchSource

__all__ = [
    "SearchOrchestrator",
    "SearchSource",
    "HtmlListingSource",
    "JsonApiSource",
    "create_source",
    "register_source",
    "get_source",
    "get_registered_sources",
    "load_configured_sources",
    "reset_source_registry",
]
