"""
Share-link extraction.

Runs every provider pattern of a ProviderTable over an entry's text and turns
the matches into positioned CandidateLinks:

1. Collect raw matches for every rule (table order kept as a tiebreaker)
2. Trim trailing punctuation and HTML entity debris from each match
3. Resolve overlaps: earliest start, then longest span, then table order
4. Drop disabled and deny-listed provider types
5. Attach an inline access code taken from the URL query, when valid
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, urlsplit

from panlink.extractor.patterns import ProviderRule, ProviderTable
from panlink.utils.logging import get_logger
from panlink.utils.schemas import CandidateLink, ProviderType

logger = get_logger(__name__)

_TRAILING_ARTIFACT = re.compile(
    r"(?:&(?:nbsp|amp|lt|gt|quot|#\d+);?|[.,;:!?)\]}>'\"，。；：！？）】」』、…])+$",
    re.IGNORECASE,
)
_NON_ASCII = re.compile(r"[^\x00-\x7f]")


def trim_url(url: str) -> str:
    """Remove trailing punctuation and entity artifacts from a matched URL.

    http(s) links end at the first non-ASCII character, so text glued onto a
    link ("https://pan.baidu.com/s/1AbC提取码:k3m9") is left to the
    credential scan. ed2k and magnet names may legitimately hold CJK text.
    """
    if url.lower().startswith(("http://", "https://")):
        cut = _NON_ASCII.search(url)
        if cut is not None:
            url = url[: cut.start()]
    return _TRAILING_ARTIFACT.sub("", url)


def extract_inline_password(url: str, rule: ProviderRule, params: Iterable[str]) -> str | None:
    """Read an access code embedded in a URL query parameter.

    Returns the first credential-bearing parameter value that satisfies the
    provider's credential pattern, or None.
    """
    if not url.lower().startswith(("http://", "https://")):
        return None

    query = urlsplit(url).query
    if not query:
        return None

    wanted = {p.lower() for p in params}
    for key, value in parse_qsl(query, keep_blank_values=False):
        if key.lower() in wanted and rule.accepts_credential(value):
            return value
    return None


class Extractor:
    """Find share links in text according to a provider table."""

    def __init__(self, table: ProviderTable):
        self.table = table

    def extract(
        self,
        text: str,
        deny: Iterable[ProviderType] = (),
    ) -> list[CandidateLink]:
        """Extract link candidates.

        Args:
            text: Raw entry text.
            deny: Extra provider types to drop for this call.

        Returns:
            Candidates ordered by (start, end).
        """
        if not text:
            return []

        extra_deny = frozenset(deny)

        # (start, end, rule index, url)
        raw: list[tuple[int, int, int, str]] = []
        for index, rule in enumerate(self.table.rules):
            for match in rule.regex.finditer(text):
                url = trim_url(match.group(0))
                if not url:
                    continue
                start = match.start()
                raw.append((start, start + len(url), index, url))

        raw.sort(key=lambda m: (m[0], -(m[1] - m[0]), m[2]))

        candidates: list[CandidateLink] = []
        dropped = 0
        last_end = -1
        for start, end, index, url in raw:
            if start < last_end:
                continue
            # Denied matches still claim their span
            last_end = end

            rule = self.table.rules[index]
            if not rule.enabled or not self.table.is_allowed(rule.type, extra_deny):
                dropped += 1
                continue

            candidates.append(
                CandidateLink(
                    provider=rule.type,
                    url=url,
                    start=start,
                    end=end,
                    inline_password=extract_inline_password(
                        url, rule, self.table.credential_params
                    ),
                )
            )

        if dropped:
            logger.debug("Denied links dropped", dropped=dropped, kept=len(candidates))
        return candidates
