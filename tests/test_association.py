"""
Tests for link/access-code association.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|--------------------------------------|-----------------|-------|
| TC-A-01 | Link, newline, "提取码: 8f2k" | Equivalence – normal | 8f2k, origin associated | end to end |
| TC-A-01b | "提取码:k3m9" glued to the link | Equivalence – no space | k3m9 on the clean link | repo table |
| TC-A-02 | L1@0, L2@100, credential@120 | Equivalence – nearest link | Credential goes to L2 | boundary penalty |
| TC-A-03 | Any permutation of inputs | Invariant – determinism | Same output | - |
| TC-A-04 | Link with inline password | Equivalence – inline | Inline kept | - |
| TC-A-05 | Provider with requires_hint false | Equivalence – no hint | No password | - |
| TC-A-06 | Credential before the link | Boundary – order | Not associated | - |
| TC-A-07 | Credential failing provider rule | Boundary – rule | Not associated | - |
| TC-A-08 | Far credential (score <= 0) | Boundary – score | Not associated | - |
| TC-A-09 | Equal scores | Equivalence – tie-break | Smallest value | - |
| TC-A-10 | score_pair components | Unit – scoring | Bonuses and penalty applied | - |
"""

from itertools import permutations

import pytest

from panlink.extractor.association import ScoringWeights, associate, score_pair
from panlink.extractor.credentials import CredentialResolver
from panlink.extractor.links import Extractor
from panlink.extractor.patterns import ProviderTable
from panlink.utils.schemas import CandidateCredential, CandidateLink, ProviderType


def _link(start: int, end: int, url: str = "", inline: str | None = None) -> CandidateLink:
    return CandidateLink(
        provider=ProviderType.OTHERS,
        url=url or f"https://pan.example.com/s/l{start}",
        start=start,
        end=end,
        inline_password=inline,
    )


def _credential(value: str, start: int, end: int | None = None) -> CandidateCredential:
    return CandidateCredential(
        value=value, start=start, end=end if end is not None else start + 9, keyword="提取码"
    )


class TestAssociate:
    """Tests for associate()."""

    # =========================================================================
    # TC-A-01: End-to-end pairing
    # =========================================================================
    def test_link_then_credential_next_line(self, example_table: ProviderTable) -> None:
        """Test the common forum layout.

        Given: "链接: https://pan.example.com/s/abc123\\n提取码: 8f2k"
        When: Links and credentials are extracted and associated
        Then: The link gets "8f2k" with origin "associated"
        """
        # Given
        text = "链接: https://pan.example.com/s/abc123\n提取码: 8f2k"
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)

        # When
        result = associate(links, credentials, text, example_table)

        # Then
        assert len(result) == 1
        assert result[0].link.url == "https://pan.example.com/s/abc123"
        assert result[0].password == "8f2k"
        assert result[0].origin == "associated"
        assert result[0].score is not None and result[0].score > 0

    def test_credential_glued_to_link(self, provider_table: ProviderTable) -> None:
        """Test a post with the access code written straight after the link.

        Given: "百度网盘 https://pan.baidu.com/s/1AbCdEf提取码:k3m9 三体"
        When: Links and credentials are extracted and associated
        Then: The clean link gets "k3m9" with origin "associated"
        """
        # Given
        text = "百度网盘 https://pan.baidu.com/s/1AbCdEf提取码:k3m9 三体"
        links = Extractor(provider_table).extract(text)
        credentials = CredentialResolver.from_table(provider_table).resolve(text)

        # When
        result = associate(links, credentials, text, provider_table)

        # Then
        assert [a.link.url for a in result] == ["https://pan.baidu.com/s/1AbCdEf"]
        assert result[0].password == "k3m9"
        assert result[0].origin == "associated"

    # =========================================================================
    # TC-A-02: Nearest link wins
    # =========================================================================
    def test_credential_goes_to_nearest_preceding_link(
        self, example_table: ProviderTable
    ) -> None:
        """Test the boundary penalty.

        Given: L1 at 0-30, L2 at 100-110, a credential at 120
        When: associate() is called
        Then: L2 gets the credential; L1 gets nothing
        """
        # Given
        text = "x" * 200
        l1 = _link(0, 30)
        l2 = _link(100, 110)
        credential = _credential("abcd", 120)

        # When
        result = associate([l1, l2], [credential], text, example_table)

        # Then
        by_start = {a.link.start: a for a in result}
        assert by_start[100].password == "abcd"
        assert by_start[100].origin == "associated"
        assert by_start[0].password is None
        assert by_start[0].origin == "none"

    # =========================================================================
    # TC-A-03: Determinism
    # =========================================================================
    def test_input_order_does_not_matter(self, example_table: ProviderTable) -> None:
        """Test that association depends on the candidate sets only.

        Given: Three links and three credentials
        When: associate() runs on every permutation of both lists
        Then: Every run returns the same associations
        """
        # Given
        text = (
            "A https://pan.example.com/s/aaa 提取码: a1a1\n"
            "B https://pan.example.com/s/bbb\n"
            "C https://pan.example.com/s/ccc 密码 c3c3 备用 pwd: c4c4"
        )
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)
        assert len(links) == 3
        assert len(credentials) == 3

        def snapshot(associations):
            return [(a.link.url, a.password, a.origin) for a in associations]

        expected = snapshot(associate(links, credentials, text, example_table))

        # When / Then
        for link_order in permutations(links):
            for credential_order in permutations(credentials):
                got = associate(list(link_order), list(credential_order), text, example_table)
                assert snapshot(got) == expected

        assert expected[0][1] == "a1a1"
        assert expected[2][1] == "c3c3"

    def test_duplicate_candidates_collapse(self, example_table: ProviderTable) -> None:
        """Test that repeated candidates give one association per link."""
        link = _link(0, 20)
        credential = _credential("abcd", 25)

        result = associate([link, link], [credential, credential], "x" * 40, example_table)

        assert len(result) == 1
        assert result[0].password == "abcd"

    # =========================================================================
    # TC-A-04: Inline password
    # =========================================================================
    def test_inline_password_not_overridden(self, example_table: ProviderTable) -> None:
        """Test that an inline password wins over nearby text.

        Given: A link carrying ?pwd=zz99 followed by "提取码: ab12"
        When: associate() is called
        Then: The password stays "zz99" with origin "inline"
        """
        # Given
        text = "https://pan.example.com/s/abc?pwd=zz99 提取码: ab12"
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)

        # When
        result = associate(links, credentials, text, example_table)

        # Then
        assert links[0].inline_password == "zz99"
        assert result[0].password == "zz99"
        assert result[0].origin == "inline"

    # =========================================================================
    # TC-A-05: Provider without hint
    # =========================================================================
    def test_provider_without_hint_gets_no_credential(
        self, example_table: ProviderTable
    ) -> None:
        """Test that magnet links never take free-text codes."""
        text = "magnet:?xt=urn:btih:" + "b" * 40 + " 提取码: ab12"
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)

        result = associate(links, credentials, text, example_table)

        assert result[0].link.provider == ProviderType.MAGNET
        assert result[0].password is None
        assert result[0].origin == "none"

    # =========================================================================
    # TC-A-06: Credential before link
    # =========================================================================
    def test_credential_before_link_ignored(self, example_table: ProviderTable) -> None:
        """Test that only credentials after the link are considered."""
        text = "提取码: ab12 https://pan.example.com/s/abc"
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)

        result = associate(links, credentials, text, example_table)

        assert result[0].password is None

    # =========================================================================
    # TC-A-07: Provider credential rule
    # =========================================================================
    def test_credential_must_fit_provider_rule(self, example_table: ProviderTable) -> None:
        """Test that a 6-character code is refused by a 4-character rule."""
        text = "https://pan.example.com/s/abc 提取码: abc123"
        links = Extractor(example_table).extract(text)
        credentials = CredentialResolver.from_table(example_table).resolve(text)
        assert [c.value for c in credentials] == ["abc123"]

        result = associate(links, credentials, text, example_table)

        assert result[0].password is None

    # =========================================================================
    # TC-A-08: Non-positive score
    # =========================================================================
    def test_far_credential_ignored(self, example_table: ProviderTable) -> None:
        """Test that a credential more than `base` characters away is dropped."""
        link = _link(0, 10)
        credential = _credential("abcd", 10 + 250)

        result = associate([link], [credential], "x" * 300, example_table)

        assert result[0].password is None

    # =========================================================================
    # TC-A-09: Tie-break
    # =========================================================================
    def test_tie_broken_by_value(self, example_table: ProviderTable) -> None:
        """Test the lexical tie-break on identical positions.

        Given: Two credentials with the same span and different values
        When: associate() runs on both orders
        Then: The lexically smallest value wins every time
        """
        link = _link(0, 10)
        first = _credential("bbbb", 12)
        second = _credential("aaaa", 12)

        for order in ([first, second], [second, first]):
            result = associate([link], order, "x" * 40, example_table)
            assert result[0].password == "aaaa"

    def test_closer_credential_preferred(self, example_table: ProviderTable) -> None:
        """Test that the nearer of two following credentials wins."""
        link = _link(0, 10)

        result = associate(
            [link], [_credential("far1", 80), _credential("near", 20)], "x" * 100, example_table
        )

        assert result[0].password == "near"

    def test_unknown_provider_gets_nothing(self, example_table: ProviderTable) -> None:
        """Test a link whose provider has no rule in the table."""
        link = CandidateLink(ProviderType.QUARK, "https://pan.quark.cn/s/x", 0, 24)

        result = associate([link], [_credential("abcd", 25)], "x" * 40, example_table)

        assert result[0].origin == "none"


class TestScorePair:
    """Tests for score_pair()."""

    # =========================================================================
    # TC-A-10: Score components
    # =========================================================================
    def test_components(self) -> None:
        """Test each term of the score.

        Given: Default weights
        When: Pairs with different distances, context and boundaries are scored
        Then: base - distance, +50 when near, +30 with context, -300 across a link
        """
        weights = ScoringWeights()
        link = _link(0, 10)
        plain = "x" * 300

        # Near, no context
        assert score_pair(link, _credential("abcd", 20), [0], plain, weights) == 200 - 10 + 50
        # Far, no context
        assert score_pair(link, _credential("abcd", 70), [0], plain, weights) == 200 - 60
        # Another link in between
        assert (
            score_pair(link, _credential("abcd", 70), [0, 40], plain, weights)
            == 200 - 60 - 300
        )

        # Context keyword right after the credential span
        text = "x" * 79 + " code" + "x" * 216
        credential = _credential("abcd", 70, 79)
        assert (
            score_pair(link, credential, [0], text, weights, ("code",))
            == 200 - 60 + 30
        )

    def test_zero_context_window(self) -> None:
        """Test that a zero window disables the context bonus."""
        weights = ScoringWeights(context_window=0)
        text = "code" * 50

        score = score_pair(_link(0, 10), _credential("abcd", 70, 79), [0], text, weights, ("code",))

        assert score == 140

    @pytest.mark.parametrize("distance", [0, 49, 50])
    def test_near_threshold_boundary(self, distance: int) -> None:
        """Test the strict inequality of the proximity bonus."""
        link = _link(0, 10)
        credential = _credential("abcd", 10 + distance)

        score = score_pair(link, credential, [0], "x" * 200, ScoringWeights())

        expected = 200 - distance + (50 if distance < 50 else 0)
        assert score == expected
