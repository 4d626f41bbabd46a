"""
Pytest fixtures and configuration for panlink tests.

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  (DEFAULT: tests without marker are auto-classified as unit)
- @pytest.mark.integration: Several components wired together, network
  replaced by httpx.MockTransport

Mock Strategy:
- Network: never real; Fetcher gets an httpx.MockTransport
- Time: TTL and limiter tests inject a fake clock
- Backoff sleeps: Fetcher gets a recording no-op sleep
"""

import os
from collections.abc import Callable, Generator
from pathlib import Path

import httpx
import pytest

# Set test environment before importing anything else
os.environ["PANLINK_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["PANLINK_GENERAL__LOG_LEVEL"] = "DEBUG"

from panlink.crawler.fetcher import Fetcher, FetchPolicy  # noqa: E402
from panlink.extractor.patterns import (  # noqa: E402
    ProviderTable,
    load_provider_table,
    reset_provider_table,
)
from panlink.search.registry import reset_source_registry  # noqa: E402
from panlink.storage.cache import reset_result_cache  # noqa: E402
from panlink.utils.backoff import BackoffConfig  # noqa: E402
from panlink.utils.config import reset_settings  # noqa: E402
from panlink.utils.logging import configure_logging  # noqa: E402


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-classify unmarked tests as unit tests."""
    for item in items:
        if not any(item.iter_markers(name=m) for m in ("unit", "integration")):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True, scope="session")
def configure_test_logging() -> None:
    """Send log output to stderr so command output on stdout stays parseable."""
    configure_logging(log_level="DEBUG", json_format=True, log_to_file=False)


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset process-wide singletons around each test."""
    reset_settings()
    reset_provider_table()
    reset_source_registry()
    reset_result_cache()
    yield
    reset_settings()
    reset_provider_table()
    reset_source_registry()
    reset_result_cache()


@pytest.fixture
def provider_table() -> ProviderTable:
    """Provider table loaded from the repository config/providers.yaml."""
    return load_provider_table()


@pytest.fixture
def example_table() -> ProviderTable:
    """Small table with one hint-requiring provider on pan.example.com."""
    return ProviderTable.from_dict(
        {
            "providers": [
                {
                    "type": "others",
                    "pattern": r"https?://pan\.example\.com/s/[A-Za-z0-9_-]+(?:\?[^\s]*)?",
                    "credential_pattern": "[A-Za-z0-9]{4}",
                },
                {
                    "type": "magnet",
                    "pattern": r"magnet:\?xt=urn:btih:[0-9A-Za-z]{32,40}",
                    "requires_hint": False,
                    "strip_trailing_slash": False,
                },
            ],
        }
    )


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def make_fetcher() -> Callable[..., tuple[Fetcher, RecordingSleep]]:
    """Factory for a Fetcher over an httpx.MockTransport handler."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
        max_attempts: int = 3,
    ) -> tuple[Fetcher, RecordingSleep]:
        sleep = RecordingSleep()
        fetcher = Fetcher(
            FetchPolicy(
                max_attempts=max_attempts,
                backoff=BackoffConfig(base_delay=0.5, max_delay=4.0),
            ),
            timeout=5.0,
            transport=httpx.MockTransport(handler),
            sleep=sleep,
        )
        return fetcher, sleep

    return factory
