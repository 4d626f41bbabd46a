"""
Link/access-code association.

Pairs every link that has no inline access code with the best free-text
credential that follows it. For a credential positioned after the link:

    distance = credential.start - link.end
    score = base - distance
          + proximity_bonus   if distance < near_threshold
          + context_bonus     if a context keyword sits within context_window
                              chars before or after the credential
          - boundary_penalty  if another link starts between the two

The highest positive score wins. Ties go to the smallest distance, then the
earliest credential, then the lexically smallest value, so the pairing is a
function of the candidate sets alone and never of their order.

Links whose provider is not marked ``requires_hint`` never receive a
text-derived credential; links that carry an inline credential keep it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from panlink.extractor.patterns import ProviderTable
from panlink.utils.config import AssociationConfig
from panlink.utils.schemas import CandidateCredential, CandidateLink, LinkOrigin


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the association score."""

    base: int = 200
    proximity_bonus: int = 50
    near_threshold: int = 50
    context_bonus: int = 30
    context_window: int = 16
    boundary_penalty: int = 300

    @classmethod
    def from_config(cls, config: AssociationConfig) -> ScoringWeights:
        return cls(
            base=config.base,
            proximity_bonus=config.proximity_bonus,
            near_threshold=config.near_threshold,
            context_bonus=config.context_bonus,
            context_window=config.context_window,
            boundary_penalty=config.boundary_penalty,
        )


@dataclass(frozen=True)
class Association:
    """A link with its resolved access code."""

    link: CandidateLink
    password: str | None
    origin: LinkOrigin
    score: int | None = None


def _has_context(
    text: str,
    credential: CandidateCredential,
    keywords: Iterable[str],
    window: int,
) -> bool:
    """Check for a context keyword near, but outside, the credential span."""
    if window <= 0:
        return False
    before = text[max(0, credential.start - window) : credential.start].lower()
    after = text[credential.end : credential.end + window].lower()
    return any(k in before or k in after for k in keywords)


def score_pair(
    link: CandidateLink,
    credential: CandidateCredential,
    link_starts: Sequence[int],
    text: str,
    weights: ScoringWeights,
    context_keywords: Iterable[str] = (),
) -> int:
    """Score one (link, credential) pair; credential must follow the link."""
    distance = credential.start - link.end
    score = weights.base - distance

    if distance < weights.near_threshold:
        score += weights.proximity_bonus

    if _has_context(text, credential, context_keywords, weights.context_window):
        score += weights.context_bonus

    if any(link.end < start < credential.start for start in link_starts):
        score -= weights.boundary_penalty

    return score


def associate(
    links: Iterable[CandidateLink],
    credentials: Iterable[CandidateCredential],
    text: str,
    table: ProviderTable,
    weights: ScoringWeights | None = None,
) -> list[Association]:
    """Resolve access codes for a set of links.

    Args:
        links: Link candidates from one entry.
        credentials: Credential candidates from the same entry.
        text: The entry text both candidate sets were taken from.
        table: Provider table (hint requirement and credential rules).
        weights: Scoring weights (default: ScoringWeights()).

    Returns:
        One Association per distinct link, ordered by link position.
    """
    if weights is None:
        weights = ScoringWeights()

    ordered_links = sorted(
        set(links), key=lambda l: (l.start, l.end, l.provider.value, l.url)
    )
    ordered_credentials = sorted(
        set(credentials), key=lambda c: (c.start, c.end, c.value, c.keyword)
    )
    link_starts = [l.start for l in ordered_links]
    context_keywords = table.credential_rule.context_keywords

    associations: list[Association] = []
    for link in ordered_links:
        if link.inline_password:
            associations.append(Association(link, link.inline_password, "inline"))
            continue

        rule = table.rule_for(link.provider)
        if rule is None or not rule.requires_hint:
            associations.append(Association(link, None, "none"))
            continue

        best: tuple[int, int, int, str] | None = None
        best_credential: CandidateCredential | None = None
        for credential in ordered_credentials:
            if credential.start < link.end:
                continue
            if not rule.accepts_credential(credential.value):
                continue

            score = score_pair(
                link, credential, link_starts, text, weights, context_keywords
            )
            if score <= 0:
                continue

            # Higher score, then smaller distance, start and value
            key = (-score, credential.start - link.end, credential.start, credential.value)
            if best is None or key < best:
                best = key
                best_credential = credential

        if best_credential is None or best is None:
            associations.append(Association(link, None, "none"))
        else:
            associations.append(
                Association(link, best_credential.value, "associated", score=-best[0])
            )

    return associations
