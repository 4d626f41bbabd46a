"""
Access-code detection in free text.

A credential occurrence is a keyword (提取码, 密码, pwd, ...) followed by
optional separators and a token. The token must fit the rule's character
class and length range and must not run on into further token characters;
an occurrence that fails this check produces nothing.
"""

from __future__ import annotations

from panlink.extractor.patterns import CredentialRule, ProviderTable
from panlink.utils.logging import get_logger
from panlink.utils.schemas import CandidateCredential

logger = get_logger(__name__)


class CredentialResolver:
    """Scan text for keyword-triggered access codes.

    Example:
        >>> resolver = CredentialResolver(table.credential_rule)
        >>> resolver.resolve("提取码: 8f2k")
        [CandidateCredential(value='8f2k', start=0, end=9, keyword='提取码')]
    """

    def __init__(self, rule: CredentialRule):
        self.rule = rule

    @classmethod
    def from_table(cls, table: ProviderTable) -> CredentialResolver:
        return cls(table.credential_rule)

    def resolve(self, text: str) -> list[CandidateCredential]:
        """Find all valid credential occurrences.

        Args:
            text: Raw entry text.

        Returns:
            Candidates ordered by start offset.
        """
        if not text:
            return []

        candidates: list[CandidateCredential] = []
        rejected = 0
        for match in self.rule.regex.finditer(text):
            token = match.group("token")
            if not self.rule.is_valid_token(token):
                rejected += 1
                continue
            candidates.append(
                CandidateCredential(
                    value=token,
                    start=match.start(),
                    end=match.end("token"),
                    keyword=match.group("keyword"),
                )
            )

        if rejected:
            logger.debug(
                "Credential occurrences rejected",
                rejected=rejected,
                accepted=len(candidates),
            )
        return candidates
