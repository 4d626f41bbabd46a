"""
In-process result storage.
"""

from panlink.storage.cache import (
    ResultCache,
    generate_cache_key,
    get_result_cache,
    reset_result_cache,
)

__all__ = [
    "ResultCache",
    "generate_cache_key",
    "get_result_cache",
    "reset_result_cache",
]
