"""
Deduplication module for panlink.

Canonical URLs identify share links: two records with the same canonical URL
are the same link, and the first one seen keeps its metadata. Results that
describe the same resource (same id, or same normalized title from the same
source) are merged into one.
"""

import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from panlink.extractor.patterns import ProviderTable
from panlink.utils.logging import get_logger
from panlink.utils.schemas import LinkRecord, ResourceResult

logger = get_logger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}

TRACKING_PARAMS = frozenset(
    {
        "spm",
        "from",
        "ref",
        "share_source",
        "share_medium",
        "sharefrom",
        "fbclid",
        "gclid",
        "_at",
    }
)
TRACKING_PREFIXES = ("utm_",)

CREDENTIAL_PARAMS = frozenset({"pwd", "password", "passcode"})


def _is_dropped_param(name: str, drop: frozenset[str]) -> bool:
    lowered = name.lower()
    return (
        lowered in TRACKING_PARAMS
        or lowered in drop
        or lowered.startswith(TRACKING_PREFIXES)
    )


def canonicalize_url(
    url: str,
    *,
    strip_trailing_slash: bool = True,
    credential_params: Iterable[str] = CREDENTIAL_PARAMS,
) -> str:
    """Normalize a link for identity comparison.

    - scheme and host are lower-cased, default ports removed
    - fragment removed
    - tracking and credential query parameters removed, the rest sorted
    - trailing slash removed when ``strip_trailing_slash`` is set

    Non-HTTP links (magnet:, ed2k://) are only trimmed and get a lower-cased
    scheme. ``canonicalize_url(canonicalize_url(u)) == canonicalize_url(u)``.

    Args:
        url: Raw or trimmed URL.
        strip_trailing_slash: Provider rule for trailing slashes.
        credential_params: Query parameter names carrying access codes.

    Returns:
        Canonical URL, or "" if nothing usable remains.
    """
    url = url.strip()
    if not url:
        return ""

    scheme, sep, rest = url.partition(":")
    if not sep:
        return url
    scheme = scheme.lower()
    if scheme not in DEFAULT_PORTS:
        return f"{scheme}:{rest}"

    parts = urlsplit(f"{scheme}:{rest}")
    try:
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        # Unparseable port; keep the authority as written
        host = parts.netloc.lower()
        port = None

    if not host:
        return ""
    if ":" in host:
        host = f"[{host}]"
    if parts.username is not None and "@" in parts.netloc:
        host = f"{parts.netloc.rsplit('@', 1)[0]}@{host}"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parts.path
    if strip_trailing_slash:
        path = path.rstrip("/")

    drop = frozenset(p.lower() for p in credential_params)
    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_dropped_param(key, drop)
    ]
    query = urlencode(sorted(query_pairs))

    return urlunsplit((scheme, host, path, query, ""))


def deduplicate_links(
    records: Iterable[LinkRecord],
    table: ProviderTable | None = None,
) -> list[LinkRecord]:
    """Collapse link records by canonical URL.

    The first record seen for a canonical URL wins; records whose URL
    canonicalizes to "" are rejected. Idempotent.

    Args:
        records: Link records, in priority order.
        table: Provider table for per-provider trailing-slash rules and
               credential parameter names.

    Returns:
        Records with canonical URLs, unique by URL, in first-seen order.
    """
    params = table.credential_params if table is not None else CREDENTIAL_PARAMS
    seen: set[str] = set()
    unique: list[LinkRecord] = []
    rejected = 0

    for record in records:
        strip = True
        if table is not None:
            rule = table.rule_for(record.type)
            if rule is not None:
                strip = rule.strip_trailing_slash

        canonical = canonicalize_url(
            record.url, strip_trailing_slash=strip, credential_params=params
        )
        if not canonical:
            rejected += 1
            continue
        if canonical in seen:
            continue

        seen.add(canonical)
        if record.url != canonical:
            record = record.model_copy(update={"url": canonical})
        unique.append(record)

    if rejected:
        logger.debug("Link records rejected", rejected=rejected)
    return unique


def normalize_title(title: str) -> str:
    """Lower-case, drop punctuation and collapse whitespace."""
    if not title:
        return ""
    title = title.lower()
    title = re.sub(r"[^\w\s]", " ", title)
    return re.sub(r"\s+", " ", title).strip()


def merge_results(
    results: Iterable[ResourceResult],
    table: ProviderTable | None = None,
) -> list[ResourceResult]:
    """Merge results describing the same resource.

    Results match on id, or on normalized title within one source. The first
    result keeps its title and content, links are unioned and deduplicated,
    and the latest timestamp is kept.

    Returns:
        Merged results in first-seen order.
    """
    merged: list[ResourceResult] = []
    by_id: dict[str, int] = {}
    by_title: dict[tuple[str, str], int] = {}

    for result in results:
        title_key = (result.source, normalize_title(result.title))
        index = by_id.get(result.id)
        if index is None and title_key[1]:
            index = by_title.get(title_key)

        if index is None:
            index = len(merged)
            merged.append(
                result.model_copy(update={"links": deduplicate_links(result.links, table)})
            )
        else:
            current = merged[index]
            timestamp = current.timestamp
            if result.timestamp is not None and (
                timestamp is None or result.timestamp > timestamp
            ):
                timestamp = result.timestamp
            merged[index] = current.model_copy(
                update={
                    "links": deduplicate_links([*current.links, *result.links], table),
                    "timestamp": timestamp,
                }
            )

        by_id.setdefault(result.id, index)
        if title_key[1]:
            by_title.setdefault(title_key, index)

    return merged
