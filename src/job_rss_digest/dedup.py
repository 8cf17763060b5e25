"""Two-scope duplicate tracking keyed by a canonical dedup key."""

from __future__ import annotations

from typing import Callable, Iterable

from job_rss_digest.domain import Listing
from job_rss_digest.normalize import canonical_key

DEDUPE_BY_LINK = "link"

DEDUP_KEY_SELECTORS: dict[str, Callable[[Listing], str]] = {
    DEDUPE_BY_LINK: lambda listing: listing.link,
}


def dedup_key_for(listing: Listing, dedupe_by: str = DEDUPE_BY_LINK) -> str:
    try:
        selector = DEDUP_KEY_SELECTORS[dedupe_by]
    except KeyError as exc:
        raise ValueError(f"unsupported dedupe_by: {dedupe_by}") from exc
    return canonical_key(selector(listing))


class Deduplicator:
    """Tracks keys known before the run (durable) and keys marked during it (ephemeral).

    The durable scope is read-only for the lifetime of the instance. Keys are
    canonicalized on the way in, so callers may pass raw links.
    """

    def __init__(self, durable_keys: Iterable[str] = ()) -> None:
        self._durable = frozenset(canonical_key(key) for key in durable_keys)
        self._ephemeral: set[str] = set()

    @property
    def durable_count(self) -> int:
        return len(self._durable)

    @property
    def ephemeral_count(self) -> int:
        return len(self._ephemeral)

    def seen(self, key: str) -> bool:
        normalized = canonical_key(key)
        return normalized in self._durable or normalized in self._ephemeral

    def mark(self, key: str) -> None:
        self._ephemeral.add(canonical_key(key))
