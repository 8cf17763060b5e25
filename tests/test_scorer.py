import pytest

from job_rss_digest.domain import (
    SCOPE_ANY_FIELD,
    SCOPE_NEGATIVE,
    SCOPE_TITLE_ONLY,
    Listing,
    Rule,
    RuleSet,
)
from job_rss_digest.scorer import InvalidInputError, score_listing


def _listing(
    title: str,
    organization: str = "",
    location: str = "",
    snippet: str = "",
) -> Listing:
    return Listing(
        title=title,
        link="https://example.com/job",
        source="source-1",
        organization=organization,
        location=location,
        snippet=snippet,
    )


def test_score_listing_is_case_insensitive() -> None:
    result = score_listing(_listing("POWER"), [Rule(keyword="power", weight=5, scope=SCOPE_TITLE_ONLY)])
    assert result.score == 5
    assert result.matched_keywords == ("power",)


def test_score_listing_sums_all_matching_rules_in_rule_order() -> None:
    rules = RuleSet(
        rules=(
            Rule(keyword="Power Systems", weight=10, scope=SCOPE_TITLE_ONLY),
            Rule(keyword="Germany", weight=4, scope=SCOPE_ANY_FIELD),
            Rule(keyword="Intern", weight=-10, scope=SCOPE_NEGATIVE),
        )
    )
    result = score_listing(
        _listing("Senior Power Systems Engineer", location="Berlin, Germany"),
        rules,
    )
    assert result.score == 14
    assert result.matched_keywords == ("Power Systems", "Germany")


def test_negative_rule_can_push_score_below_zero() -> None:
    rules = [
        Rule(keyword="Power Systems", weight=10, scope=SCOPE_TITLE_ONLY),
        Rule(keyword="Intern", weight=-10, scope=SCOPE_NEGATIVE),
    ]
    result = score_listing(_listing("Intern Developer", location="Munich"), rules)
    assert result.score == -10
    assert result.matched_keywords == ("Intern",)


def test_title_only_rule_ignores_other_fields() -> None:
    rules = [Rule(keyword="Germany", weight=4, scope=SCOPE_TITLE_ONLY)]
    result = score_listing(_listing("Engineer", location="Germany", snippet="Germany"), rules)
    assert result.score == 0
    assert result.matched_keywords == ()


def test_any_field_rule_searches_organization_location_and_snippet() -> None:
    rules = [
        Rule(keyword="acme", weight=1, scope=SCOPE_ANY_FIELD),
        Rule(keyword="berlin", weight=2, scope=SCOPE_ANY_FIELD),
        Rule(keyword="python", weight=3, scope=SCOPE_ANY_FIELD),
    ]
    result = score_listing(
        _listing("Engineer", organization="ACME GmbH", location="Berlin", snippet="We use Python"),
        rules,
    )
    assert result.score == 6
    assert result.matched_keywords == ("acme", "berlin", "python")


def test_matching_is_plain_substring() -> None:
    result = score_listing(_listing("rAId planner"), [Rule(keyword="AI", weight=2, scope=SCOPE_TITLE_ONLY)])
    assert result.score == 2
    assert result.matched_keywords == ("AI",)


def test_whitespace_is_matched_verbatim() -> None:
    rules = [Rule(keyword="power systems", weight=5, scope=SCOPE_TITLE_ONLY)]
    assert score_listing(_listing("Power  Systems"), rules).score == 0
    assert score_listing(_listing("Power Systems"), rules).score == 5


def test_keyword_padding_is_part_of_the_match() -> None:
    rules = [Rule(keyword="AI ", weight=2, scope=SCOPE_TITLE_ONLY)]
    assert score_listing(_listing("rAId planner"), rules).score == 0
    result = score_listing(_listing("AI engineer"), rules)
    assert result.score == 2
    assert result.matched_keywords == ("AI ",)


def test_full_width_text_is_not_folded() -> None:
    rules = [Rule(keyword="aws", weight=1, scope=SCOPE_TITLE_ONLY)]
    assert score_listing(_listing("\uff21\uff37\uff33 engineer"), rules).score == 0


def test_flipping_one_rule_to_matching_changes_score_by_its_weight() -> None:
    listing = _listing("Data Engineer", location="Remote")
    base_rules = [
        Rule(keyword="Engineer", weight=3, scope=SCOPE_TITLE_ONLY),
        Rule(keyword="Kotlin", weight=7.5, scope=SCOPE_ANY_FIELD),
    ]
    flipped_rules = [
        Rule(keyword="Engineer", weight=3, scope=SCOPE_TITLE_ONLY),
        Rule(keyword="Remote", weight=7.5, scope=SCOPE_ANY_FIELD),
    ]
    base = score_listing(listing, base_rules)
    flipped = score_listing(listing, flipped_rules)
    assert flipped.score - base.score == 7.5


def test_empty_rule_set_scores_zero() -> None:
    result = score_listing(_listing("Anything"), RuleSet())
    assert result.score == 0
    assert result.matched_keywords == ()


@pytest.mark.parametrize(
    ("listing", "rules"),
    [
        (None, []),
        (_listing("Engineer"), None),
        (_listing("Engineer"), ["not-a-rule"]),
        (_listing("Engineer"), [Rule(keyword="", weight=1)]),
        (_listing("Engineer"), [Rule(keyword="x", weight=True)]),
    ],
)
def test_score_listing_rejects_malformed_input(listing, rules) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(InvalidInputError):
        score_listing(listing, rules)
