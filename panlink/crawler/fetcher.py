"""
HTTP fetcher with a centralized retry policy.

One FetchPolicy decides what is retried and how long to wait; the Fetcher
applies it to single requests over an httpx.AsyncClient. Every attempt is
built from a fresh copy of the FetchRequest, so headers mutated by the
transport on one attempt never leak into the next.

Retry rules:
- Transport errors and timeouts: retry
- 408, 425, 429 and every status >= 500: retry
- Any other non-2xx status: fail immediately (FetchError, not exhausted)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from panlink.utils.backoff import BackoffConfig, calculate_backoff, calculate_total_delay
from panlink.utils.config import FetcherConfig, get_settings
from panlink.utils.errors import FetchError
from panlink.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FetchPolicy:
    """Retry policy for upstream page/API fetches.

    Attributes:
        max_attempts: Total attempts including the first (default: 3)
        backoff: Backoff configuration for delay calculation
        retryable_exceptions: Exception types that are safe to retry
        retryable_status_codes: 4xx status codes that are safe to retry
            (every status >= 500 is always retryable)

    Example:
        >>> policy = FetchPolicy(max_attempts=5)
        >>> policy.should_retry_status(503)
        True
        >>> policy.should_retry_status(404)
        False
    """

    max_attempts: int = 3
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    retryable_exceptions: tuple[type[BaseException], ...] = (
        httpx.TransportError,
        TimeoutError,
        OSError,
    )
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({408, 425, 429})
    )

    def __post_init__(self) -> None:
        """Validate policy configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_config(cls, config: FetcherConfig) -> FetchPolicy:
        """Build a policy from the fetcher settings section."""
        return cls(
            max_attempts=config.max_attempts,
            backoff=BackoffConfig(
                base_delay=config.base_delay_seconds,
                max_delay=max(config.max_delay_seconds, config.base_delay_seconds),
            ),
        )

    def should_retry_exception(self, exc: BaseException) -> bool:
        """Check if exception is retryable."""
        return isinstance(exc, self.retryable_exceptions)

    def should_retry_status(self, status: int) -> bool:
        """Check if a non-success HTTP status is retryable."""
        return status >= 500 or status in self.retryable_status_codes

    def delay_before(self, retry: int) -> float:
        """Delay before the given retry (1-indexed)."""
        return calculate_backoff(retry, self.backoff)

    def worst_case_delay(self) -> float:
        """Total backoff sleep if every attempt fails."""
        return calculate_total_delay(self.max_attempts - 1, self.backoff)


@dataclass(frozen=True)
class FetchRequest:
    """A request description; never mutated once built."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str | None = None
    timeout: float | None = None

    def copy(self) -> FetchRequest:
        """Independent copy for one attempt."""
        return replace(self, headers=dict(self.headers))


@dataclass(frozen=True)
class FetchResponse:
    """Successful fetch result."""

    url: str
    final_url: str
    status: int
    body: bytes
    encoding: str | None
    elapsed: float
    attempts: int

    @property
    def text(self) -> str:
        """Body decoded with the response charset (UTF-8 fallback)."""
        return self.body.decode(self.encoding or "utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status": self.status,
            "bytes": len(self.body),
            "elapsed": round(self.elapsed, 3),
            "attempts": self.attempts,
        }


class Fetcher:
    """Retrying HTTP fetcher.

    Example:
        async with Fetcher() as fetcher:
            response = await fetcher.fetch(FetchRequest("https://example.com/s?q=x"))
    """

    def __init__(
        self,
        policy: FetchPolicy | None = None,
        *,
        timeout: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize fetcher.

        Args:
            policy: Retry policy (default: built from settings.fetcher).
            timeout: Default per-request timeout in seconds.
            user_agent: Default User-Agent header.
            transport: Custom httpx transport (tests use httpx.MockTransport).
            sleep: Awaitable sleep used between attempts.
        """
        config = get_settings().fetcher
        self.policy = policy or FetchPolicy.from_config(config)
        self.timeout = timeout if timeout is not None else config.timeout_seconds
        self.user_agent = user_agent or config.user_agent
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> Fetcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        """Perform one request under the retry policy.

        Args:
            request: Request description.

        Returns:
            FetchResponse for the first 2xx answer.

        Raises:
            FetchError: On a non-retryable status, or once attempts run out.
        """
        client = await self._get_client()
        max_attempts = self.policy.max_attempts
        last_cause: BaseException | None = None
        last_status: int | None = None

        for attempt in range(1, max_attempts + 1):
            attempt_request = request.copy()
            started = time.monotonic()
            try:
                response = await client.send(
                    client.build_request(
                        attempt_request.method,
                        attempt_request.url,
                        headers=attempt_request.headers,
                        content=attempt_request.body,
                        timeout=attempt_request.timeout or self.timeout,
                    )
                )
            except Exception as e:
                if not self.policy.should_retry_exception(e):
                    raise
                last_cause = e
                last_status = None
                logger.debug(
                    "Fetch attempt failed",
                    url=request.url,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            else:
                elapsed = time.monotonic() - started
                if response.is_success:
                    return FetchResponse(
                        url=request.url,
                        final_url=str(response.url),
                        status=response.status_code,
                        body=response.content,
                        encoding=response.encoding,
                        elapsed=elapsed,
                        attempts=attempt,
                    )

                last_status = response.status_code
                last_cause = None
                if not self.policy.should_retry_status(response.status_code):
                    logger.warning(
                        "Non-retryable HTTP status",
                        url=request.url,
                        status=response.status_code,
                        attempt=attempt,
                    )
                    raise FetchError(
                        f"HTTP {response.status_code} from {request.url}",
                        url=request.url,
                        transient=False,
                        exhausted=False,
                        attempts=attempt,
                        status=response.status_code,
                    )

            if attempt >= max_attempts:
                break

            delay = self.policy.delay_before(attempt)
            logger.info(
                "Retrying fetch",
                url=request.url,
                status=last_status,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 2),
            )
            await self._sleep(delay)

        reason = f"HTTP {last_status}" if last_status is not None else repr(last_cause)
        raise FetchError(
            f"Fetch of {request.url} failed after {max_attempts} attempts: {reason}",
            url=request.url,
            transient=True,
            exhausted=True,
            attempts=max_attempts,
            status=last_status,
            last_cause=last_cause,
        )
