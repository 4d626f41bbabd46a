"""
Source Registry and Factory Functions.

Manages registration and retrieval of search sources. Configured sources are
built from settings.sources; custom SearchSource instances can be registered
directly.
"""

from __future__ import annotations

from panlink.search.sources import HtmlListingSource, JsonApiSource, SearchSource
from panlink.utils.config import SourceConfig, get_settings
from panlink.utils.logging import get_logger

logger = get_logger(__name__)

_SOURCE_KINDS: dict[str, type[SearchSource]] = {
    "html": HtmlListingSource,
    "json": JsonApiSource,
}

_source_registry: dict[str, SearchSource] = {}


def create_source(config: SourceConfig) -> SearchSource:
    """Build a source adapter from its configuration."""
    source_class = _SOURCE_KINDS[config.kind]
    return source_class(config)  # type: ignore[call-arg]


def register_source(source: SearchSource) -> None:
    """
    Register a source instance under its name.

    Args:
        source: Source instance (must inherit SearchSource).
    """
    if not isinstance(source, SearchSource):
        raise TypeError("Source must inherit from SearchSource")
    if not source.name:
        raise ValueError("Source must have a name")

    _source_registry[source.name.lower()] = source
    logger.debug("Registered source", source=source.name)


def get_source(name: str) -> SearchSource | None:
    """
    Get a registered source.

    Args:
        name: Source name (case-insensitive).

    Returns:
        Source instance or None if not registered.
    """
    source = _source_registry.get(name.lower())
    if source is None:
        logger.warning("No source registered", source=name)
    return source


def get_registered_sources() -> list[str]:
    """Get sorted names of registered sources."""
    return sorted(_source_registry)


def load_configured_sources() -> list[str]:
    """Register every enabled source from settings.sources.

    Returns:
        Names of the sources registered.
    """
    names = []
    for config in get_settings().sources:
        if not config.enabled:
            logger.debug("Source disabled in settings", source=config.name)
            continue
        register_source(create_source(config))
        names.append(config.name)
    logger.info("Configured sources loaded", sources=names)
    return names


def reset_source_registry() -> None:
    """Clear the registry (for testing)."""
    _source_registry.clear()
