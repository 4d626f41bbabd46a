"""
Search orchestration.

One search call:
1. Serve from the result cache when possible
2. Fan out one task per (source, page request); each task holds a
   concurrency slot while it fetches, parses and extracts
3. Fan in under a batch deadline; tasks still pending are cancelled
4. Merge, deduplicate, filter, sort and cache the results

A failed task never aborts the batch. The batch raises BatchFailedError only
when every task ran to completion and failed. A batch cut off by its deadline
returns what it has with timed_out set; task failures are returned as
diagnostics.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from panlink.crawler.fetcher import Fetcher, FetchRequest
from panlink.extractor.association import ScoringWeights, associate
from panlink.extractor.credentials import CredentialResolver
from panlink.extractor.links import Extractor
from panlink.extractor.patterns import ProviderTable, get_provider_table
from panlink.filter.deduplication import canonicalize_url, deduplicate_links, merge_results
from panlink.scheduler.concurrency import AdaptiveConcurrencyController
from panlink.search.registry import get_registered_sources, get_source
from panlink.search.sources import SearchSource
from panlink.storage.cache import ResultCache, generate_cache_key
from panlink.utils.config import get_settings
from panlink.utils.errors import BatchFailedError, ErrorCode, PanlinkError
from panlink.utils.logging import LogContext, get_logger
from panlink.utils.schemas import (
    CandidateLink,
    DocumentEntry,
    LinkRecord,
    MergedLink,
    ProviderType,
    RawDocument,
    ResourceResult,
    SearchOptions,
    SearchResponse,
    TaskFailure,
)

logger = get_logger(__name__)


@dataclass
class TaskOutcome:
    """Result of one fetch+extract task, tagged by task index."""

    index: int
    source: str
    url: str
    results: list[ResourceResult] = field(default_factory=list)
    failure: TaskFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def _result_id(source: str, entry: DocumentEntry, records: list[LinkRecord]) -> str:
    if entry.ref:
        seed = entry.ref
    else:
        seed = entry.title + "|" + (records[0].url if records else "")
    return f"{source}-{hashlib.md5(seed.encode('utf-8')).hexdigest()[:12]}"


def filter_by_keyword(results: Iterable[ResourceResult], keyword: str) -> list[ResourceResult]:
    """Keep results whose title or content mentions every keyword term."""
    terms = keyword.lower().split()
    if not terms:
        return list(results)
    kept = []
    for result in results:
        haystack = f"{result.title}\n{result.content}".lower()
        if all(term in haystack for term in terms):
            kept.append(result)
    return kept


def sort_results(results: Iterable[ResourceResult]) -> list[ResourceResult]:
    """Newest first; undated results last; id breaks ties."""

    def key(result: ResourceResult) -> tuple[int, float, str]:
        if result.timestamp is None:
            return (1, 0.0, result.id)
        return (0, -result.timestamp.timestamp(), result.id)

    return sorted(results, key=key)


def merge_by_type(results: Iterable[ResourceResult]) -> dict[str, list[MergedLink]]:
    """Group every link by provider type, first occurrence of a URL wins."""
    merged: dict[str, list[MergedLink]] = {}
    seen: set[str] = set()
    for result in results:
        for link in result.links:
            if link.url in seen:
                continue
            seen.add(link.url)
            merged.setdefault(link.type.value, []).append(
                MergedLink(
                    url=link.url,
                    password=link.password,
                    note=result.title,
                    timestamp=result.timestamp,
                    source=result.source,
                )
            )
    return merged


class SearchOrchestrator:
    """Compose fetching, extraction, association, dedup and caching.

    Example:
        async with SearchOrchestrator() as orchestrator:
            response = await orchestrator.search("movie", SearchOptions(pages=2))
    """

    def __init__(
        self,
        sources: Iterable[SearchSource] | None = None,
        *,
        fetcher: Fetcher | None = None,
        controller: AdaptiveConcurrencyController | None = None,
        cache: ResultCache | None = None,
        table: ProviderTable | None = None,
        weights: ScoringWeights | None = None,
        deadline: float | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            sources: Sources to query (default: every registered source).
            fetcher: Fetcher (default: a new Fetcher owned by the orchestrator).
            controller: Concurrency controller (default: from settings).
            cache: Result cache (default: new cache when settings.cache.enabled).
            table: Provider table (default: the global provider table).
            weights: Association weights (default: settings.association).
            deadline: Batch deadline in seconds (default: settings.search).
        """
        settings = get_settings()
        self._sources = list(sources) if sources is not None else None
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or Fetcher()
        self.controller = controller or AdaptiveConcurrencyController()
        if cache is None and settings.cache.enabled:
            cache = ResultCache()
        self.cache = cache
        self.table = table or get_provider_table()
        self.weights = weights or ScoringWeights.from_config(settings.association)
        self.deadline = deadline if deadline is not None else settings.search.batch_deadline_seconds
        self.extractor = Extractor(self.table)
        self.resolver = CredentialResolver.from_table(self.table)

    async def start(self) -> None:
        """Start background maintenance (limit adjustment, cache clearing)."""
        await self.controller.start()
        if self.cache is not None:
            await self.cache.start()

    async def close(self) -> None:
        """Stop background tasks and release the HTTP client."""
        await self.controller.stop()
        if self.cache is not None:
            await self.cache.stop()
        if self._owns_fetcher:
            await self.fetcher.close()

    async def __aenter__(self) -> SearchOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _select_sources(self, options: SearchOptions) -> list[SearchSource]:
        if self._sources is not None:
            candidates = self._sources
        else:
            candidates = [
                source
                for name in get_registered_sources()
                if (source := get_source(name)) is not None
            ]
        if options.sources is None:
            return candidates
        wanted = {name.lower() for name in options.sources}
        return [s for s in candidates if s.name.lower() in wanted]

    def _attach_entry_passwords(
        self, links: list[CandidateLink], entry: DocumentEntry
    ) -> list[CandidateLink]:
        """Use passwords the source reported as fields as inline credentials.

        A reported password that fails the provider's credential rule is
        ignored and the link goes through free-text association.
        """
        params = self.table.credential_params
        reported = {
            canonicalize_url(link.url, credential_params=params): link.password
            for link in entry.links
            if link.password
        }
        attached = []
        for link in links:
            rule = self.table.rule_for(link.provider)
            password = reported.get(canonicalize_url(link.url, credential_params=params))
            if (
                not link.inline_password
                and password
                and rule is not None
                and rule.accepts_credential(password)
            ):
                link = replace(link, inline_password=password)
            attached.append(link)
        return attached

    def process_entry(
        self,
        source: str,
        entry: DocumentEntry,
        deny: Iterable[ProviderType] = (),
    ) -> ResourceResult | None:
        """Extract, resolve and associate the links of one entry.

        Returns:
            A ResourceResult, or None when the entry holds no usable link.
        """
        links = self.extractor.extract(entry.text, deny=deny)
        if not links:
            return None
        if entry.links:
            links = self._attach_entry_passwords(links, entry)

        credentials = self.resolver.resolve(entry.text)
        associations = associate(links, credentials, entry.text, self.table, self.weights)
        records = deduplicate_links(
            (
                LinkRecord(
                    url=a.link.url,
                    type=a.link.provider,
                    password=a.password or "",
                    origin=a.origin,
                )
                for a in associations
            ),
            self.table,
        )
        if not records:
            return None

        return ResourceResult(
            id=_result_id(source, entry, records),
            title=entry.title,
            content=entry.content,
            timestamp=entry.timestamp,
            source=source,
            links=records,
        )

    def process_document(
        self,
        source: SearchSource,
        document: RawDocument,
        deny: Iterable[ProviderType] = (),
    ) -> list[ResourceResult]:
        """Parse a document and process each of its entries."""
        deny = tuple(deny)
        results = []
        for entry in source.parse(document):
            result = self.process_entry(source.name, entry, deny)
            if result is not None:
                results.append(result)
        return results

    async def _run_task(
        self,
        index: int,
        source: SearchSource,
        request: FetchRequest,
        deny: tuple[ProviderType, ...],
    ) -> TaskOutcome:
        outcome = TaskOutcome(index=index, source=source.name, url=request.url)
        try:
            async with self.controller.slot():
                response = await self.fetcher.fetch(request)
                document = RawDocument(
                    source=source.name,
                    url=response.final_url,
                    text=response.text,
                    fetched_at=datetime.now(UTC),
                    status=response.status,
                )
                outcome.results = self.process_document(source, document, deny)
        except PanlinkError as e:
            logger.warning(
                "Search task failed",
                source=source.name,
                url=request.url,
                error_code=e.code.value,
                error=e.message,
            )
            outcome.failure = TaskFailure(
                source=source.name, url=request.url, error_code=e.code.value, error=e.message
            )
        except Exception as e:
            logger.error(
                "Search task error",
                source=source.name,
                url=request.url,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            outcome.failure = TaskFailure(
                source=source.name,
                url=request.url,
                error_code=ErrorCode.INTERNAL_ERROR.value,
                error=f"{type(e).__name__}: {e}",
            )
        return outcome

    def _finalize(
        self,
        results: Iterable[ResourceResult],
        keyword: str,
        options: SearchOptions,
    ) -> list[ResourceResult]:
        settings = get_settings().search
        merged = merge_results(results, self.table)

        if options.enabled_providers is not None:
            enabled = set(options.enabled_providers)
            merged = [
                r.model_copy(update={"links": [l for l in r.links if l.type in enabled]})
                for r in merged
            ]
        merged = [r for r in merged if r.links]

        use_filter = (
            options.filter_by_keyword
            if options.filter_by_keyword is not None
            else settings.filter_by_keyword
        )
        if use_filter:
            merged = filter_by_keyword(merged, keyword)

        limit = options.limit or settings.result_limit
        return sort_results(merged)[:limit]

    def _response(
        self,
        results: list[ResourceResult],
        *,
        errors: list[TaskFailure] | None = None,
        timed_out: bool = False,
        from_cache: bool = False,
    ) -> SearchResponse:
        return SearchResponse(
            total=len(results),
            results=results,
            merged_by_type=merge_by_type(results),
            errors=errors or [],
            timed_out=timed_out,
            from_cache=from_cache,
        )

    async def search(self, keyword: str, options: SearchOptions | None = None) -> SearchResponse:
        """Run one search.

        Args:
            keyword: Search keyword.
            options: Query options.

        Returns:
            SearchResponse (partial when some tasks failed or timed out).

        Raises:
            BatchFailedError: If every task failed before the deadline.
        """
        options = options or SearchOptions()
        sources = self._select_sources(options)
        cache_key = generate_cache_key(keyword, [s.name for s in sources], options)

        with LogContext(search_id=uuid.uuid4().hex[:8], keyword=keyword):
            if self.cache is not None and not options.force_refresh:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    logger.info("Search served from cache", results=len(cached))
                    return self._response(cached, from_cache=True)

            pages = options.pages or get_settings().search.default_pages
            deny = tuple(options.disabled_providers)
            jobs = [
                (source, request)
                for source in sources
                for request in source.build_requests(keyword, pages)
            ]
            if not jobs:
                logger.info("No search tasks to run", sources=[s.name for s in sources])
                return self._response([])

            tasks = [
                asyncio.create_task(self._run_task(index, source, request, deny))
                for index, (source, request) in enumerate(jobs)
            ]
            logger.info("Search started", tasks=len(tasks), deadline=self.deadline)

            try:
                done, pending = await asyncio.wait(tasks, timeout=self.deadline)
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            timed_out = bool(pending)
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            outcomes: list[TaskOutcome] = []
            for index, (task, (source, request)) in enumerate(zip(tasks, jobs, strict=True)):
                if task in done:
                    outcomes.append(task.result())
                else:
                    outcomes.append(
                        TaskOutcome(
                            index=index,
                            source=source.name,
                            url=request.url,
                            failure=TaskFailure(
                                source=source.name,
                                url=request.url,
                                error_code=ErrorCode.TASK_TIMEOUT.value,
                                error=f"Batch deadline of {self.deadline}s expired",
                            ),
                        )
                    )

            failures = [o.failure for o in outcomes if o.failure is not None]
            if len(failures) == len(outcomes) and not timed_out:
                logger.error("All search tasks failed", tasks=len(outcomes))
                raise BatchFailedError(
                    f"All {len(outcomes)} search tasks failed",
                    failures=[f.model_dump() for f in failures],
                )

            collected = [r for o in outcomes if o.ok for r in o.results]
            results = self._finalize(collected, keyword, options)

            # A batch without a successful task is not cached
            if self.cache is not None and any(o.ok for o in outcomes):
                self.cache.store(cache_key, results)

            logger.info(
                "Search completed",
                results=len(results),
                failed_tasks=len(failures),
                timed_out=timed_out,
            )
            return self._response(results, errors=failures, timed_out=timed_out)
