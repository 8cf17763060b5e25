from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from job_rss_digest.domain import SCOPE_TITLE_ONLY, Listing, Rule, RuleSet, ValidationError

CORPUS_SEPARATOR = " | "


class InvalidInputError(ValidationError):
    """Raised when score_listing receives an absent or malformed argument."""


@dataclass(frozen=True)
class ScoreResult:
    score: int | float
    matched_keywords: tuple[str, ...]


def _build_corpus(listing: Listing) -> str:
    return CORPUS_SEPARATOR.join(
        (
            listing.title or "",
            listing.organization or "",
            listing.location or "",
            listing.snippet or "",
        )
    ).lower()


def _check_rules(rules: RuleSet | Iterable[Rule] | None) -> tuple[Rule, ...]:
    if rules is None:
        raise InvalidInputError("rules must not be None")
    if isinstance(rules, RuleSet):
        candidates = rules.rules
    else:
        try:
            candidates = tuple(rules)
        except TypeError as exc:
            raise InvalidInputError("rules must be a RuleSet or an iterable of Rule") from exc
    for index, rule in enumerate(candidates):
        if not isinstance(rule, Rule):
            raise InvalidInputError(f"rules[{index}] is not a Rule")
        if not isinstance(rule.keyword, str) or not rule.keyword:
            raise InvalidInputError(f"rules[{index}].keyword must be a non-empty string")
        if isinstance(rule.weight, bool) or not isinstance(rule.weight, (int, float)):
            raise InvalidInputError(f"rules[{index}].weight must be a number")
    return candidates


def score_listing(listing: Listing | None, rules: RuleSet | Iterable[Rule] | None) -> ScoreResult:
    """Sum the weights of every rule whose keyword occurs in the listing.

    Matching is case-insensitive substring containment. ``title-only`` rules
    look at the title alone; ``any-field`` and ``negative`` rules look at
    title, organization, location and snippet together.
    """
    if not isinstance(listing, Listing):
        raise InvalidInputError("listing must be a Listing")
    checked_rules = _check_rules(rules)

    lowered_title = (listing.title or "").lower()
    corpus = _build_corpus(listing)

    score: int | float = 0
    matched: list[str] = []
    for rule in checked_rules:
        haystack = lowered_title if rule.scope == SCOPE_TITLE_ONLY else corpus
        if rule.keyword.lower() in haystack:
            score += rule.weight
            matched.append(rule.keyword)
    return ScoreResult(score=score, matched_keywords=tuple(matched))
