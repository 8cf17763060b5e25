from datetime import datetime, timedelta, timezone

import pytest

from job_rss_digest.domain import STATUS_ACCEPTED, STATUS_REJECTED, ScoredListing
from job_rss_digest.storage import PersistenceError, SQLiteStore

NOW = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)


def _scored(
    identifier: str,
    link: str,
    score: int | float = 10,
    status: str = STATUS_ACCEPTED,
) -> ScoredListing:
    return ScoredListing(
        identifier=identifier,
        found_at=NOW,
        title="Power Systems Engineer",
        organization="Grid GmbH",
        location="Berlin, Germany",
        link=link,
        source="feed-a",
        snippet="Power Systems Engineer from feed-a",
        score=score,
        matched_keywords=("Power Systems", "Germany"),
        status=status,
        dedup_key=link,
    )


def _notified_by_id(store: SQLiteStore) -> dict[str, str | None]:
    rows = store.connection.execute("SELECT id, notified_at FROM listings ORDER BY seq").fetchall()
    return {row["id"]: row["notified_at"] for row in rows}


@pytest.fixture
def store(tmp_path):  # type: ignore[no-untyped-def]
    instance = SQLiteStore(str(tmp_path / "jobs.db"))
    instance.initialize()
    try:
        yield instance
    finally:
        instance.close()


def test_append_and_load_existing_keys(store: SQLiteStore) -> None:
    appended = store.append_scored_listings(
        [
            _scored("1", "https://example.com/1"),
            _scored("2", "https://example.com/2", status=STATUS_REJECTED),
        ]
    )
    assert appended == 2
    assert store.load_existing_keys() == {"https://example.com/1", "https://example.com/2"}


def test_append_ignores_known_dedup_key(store: SQLiteStore) -> None:
    store.append_scored_listings([_scored("1", "https://example.com/1")])
    appended = store.append_scored_listings([_scored("2", "https://example.com/1")])
    assert appended == 0
    assert list(_notified_by_id(store)) == ["1"]


def test_append_raises_on_identifier_clash(store: SQLiteStore) -> None:
    store.append_scored_listings([_scored("id-1", "https://example.com/x/1")])
    with pytest.raises(PersistenceError):
        store.append_scored_listings([_scored("id-1", "https://example.com/x/2")])
    assert store.load_existing_keys() == {"https://example.com/x/1"}


def test_identifier_clash_rolls_back_whole_batch(store: SQLiteStore) -> None:
    store.append_scored_listings([_scored("id-1", "https://example.com/x/1")])
    with pytest.raises(PersistenceError):
        store.append_scored_listings(
            [
                _scored("id-2", "https://example.com/x/2"),
                _scored("id-1", "https://example.com/x/3"),
            ]
        )
    assert store.load_existing_keys() == {"https://example.com/x/1"}


def test_load_unnotified_round_trips_fields_in_insertion_order(store: SQLiteStore) -> None:
    store.append_scored_listings(
        [
            _scored("b", "https://example.com/b", score=3),
            _scored("a", "https://example.com/a", score=12.5),
            _scored("r", "https://example.com/r", score=40, status=STATUS_REJECTED),
            _scored("low", "https://example.com/low", score=0),
        ]
    )
    loaded = store.load_unnotified(1)
    assert [listing.identifier for listing in loaded] == ["b", "a"]
    first = loaded[0]
    assert first.score == 3
    assert loaded[1].score == 12.5
    assert first.found_at == NOW
    assert first.matched_keywords == ("Power Systems", "Germany")
    assert first.notified_at is None


def test_mark_notified_sets_date_once(store: SQLiteStore) -> None:
    store.append_scored_listings([_scored("1", "https://example.com/1"), _scored("2", "https://example.com/2")])

    assert store.mark_notified(["1"], "2026-10-19T06:00:00+00:00") == 1
    assert store.mark_notified(["1", "2"], "2026-10-20T06:00:00+00:00") == 1

    notified = _notified_by_id(store)
    assert notified["1"] == "2026-10-19T06:00:00+00:00"
    assert notified["2"] == "2026-10-20T06:00:00+00:00"
    assert store.load_unnotified(1) == []


def test_run_lock_blocks_second_owner_until_released(store: SQLiteStore) -> None:
    store.acquire_run_lock("run-1", now=NOW)
    with pytest.raises(PersistenceError):
        store.acquire_run_lock("run-2", now=NOW)
    store.release_run_lock("run-1")
    store.acquire_run_lock("run-2", now=NOW)


def test_run_lock_takes_over_stale_lock(store: SQLiteStore) -> None:
    store.acquire_run_lock("run-1", now=NOW - timedelta(hours=2))
    store.acquire_run_lock("run-2", now=NOW, stale_after=timedelta(hours=1))


def test_sqlite_errors_become_persistence_errors(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = SQLiteStore(str(tmp_path / "jobs.db"))
    try:
        with pytest.raises(PersistenceError):
            store.load_existing_keys()
    finally:
        store.close()
