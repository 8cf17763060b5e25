from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SCOPE_TITLE_ONLY = "title-only"
SCOPE_ANY_FIELD = "any-field"
SCOPE_NEGATIVE = "negative"
ALLOWED_SCOPES = (SCOPE_TITLE_ONLY, SCOPE_ANY_FIELD, SCOPE_NEGATIVE)

STATUS_ACCEPTED = "accepted"
STATUS_REJECTED = "rejected"

MAX_SNIPPET_LENGTH = 500


class ValidationError(ValueError):
    """Raised when a listing or rule is missing required fields."""


@dataclass(frozen=True)
class Listing:
    title: str
    link: str
    source: str
    found_at: datetime | None = None
    organization: str = ""
    location: str = ""
    snippet: str = ""
    identifier: str | None = None


@dataclass(frozen=True)
class Rule:
    keyword: str
    weight: int | float
    scope: str = SCOPE_ANY_FIELD


@dataclass(frozen=True)
class RuleSet:
    rules: tuple[Rule, ...] = field(default_factory=tuple)

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


@dataclass(frozen=True)
class ScoredListing:
    identifier: str
    found_at: datetime
    title: str
    organization: str
    location: str
    link: str
    source: str
    snippet: str
    score: int | float
    matched_keywords: tuple[str, ...]
    status: str
    dedup_key: str
    notified_at: str | None = None


@dataclass(frozen=True)
class SourceFailure:
    source_id: str
    source_url: str
    error: str
