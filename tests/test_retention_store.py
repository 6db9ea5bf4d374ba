from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from immo_watch.models import ListingRecord, Scope
from immo_watch.store import JsonRetentionStore, RetentionPolicy, apply_retention, scope_path

SCOPE = Scope(platform="immoscout", instance="test")
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _record(listing_id: str, seconds: int, page: int | None = None) -> ListingRecord:
    return ListingRecord(
        listing_id=listing_id,
        url=f"https://www.immobilienscout24.de/expose/{listing_id}",
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        page=page,
    )


def test_scope_path_is_parameterized_by_platform_and_instance(tmp_path) -> None:
    assert scope_path(tmp_path, SCOPE) == tmp_path / "immoscout_listings.test.json"


def test_eviction_keeps_newest_max_size_minus_remove_count(tmp_path) -> None:
    store = JsonRetentionStore(
        tmp_path / "store.json",
        SCOPE,
        RetentionPolicy(max_size=2, remove_count=1),
    )
    store.upsert(_record("A", 100))
    store.upsert(_record("B", 200))
    store.upsert(_record("C", 50))

    assert store.persist() is True

    assert [record.listing_id for record in store.records()] == ["B"]
    assert store.contains("B")
    assert not store.contains("A")
    assert not store.contains("C")


def test_eviction_retains_exact_newest_set_by_timestamp_rank() -> None:
    policy = RetentionPolicy(max_size=10, remove_count=7)
    # Insertion order deliberately differs from timestamp order.
    seconds = [5, 17, 3, 11, 2, 19, 7, 13, 1, 23, 29, 31]
    records = [_record(f"id-{value}", value) for value in seconds]

    kept, removed = apply_retention(records, policy)

    assert [record.listing_id for record in kept] == ["id-31", "id-29", "id-23"]
    assert len(removed) == len(records) - 3
    assert max(record.timestamp for record in removed) < min(record.timestamp for record in kept)


def test_no_eviction_at_or_below_cap() -> None:
    policy = RetentionPolicy(max_size=3, remove_count=2)
    records = [_record("a", 1), _record("b", 2), _record("c", 3)]

    kept, removed = apply_retention(records, policy)

    assert [record.listing_id for record in kept] == ["c", "b", "a"]
    assert removed == []


def test_size_never_exceeds_cap_after_persist(tmp_path) -> None:
    policy = RetentionPolicy(max_size=5, remove_count=3)
    store = JsonRetentionStore(tmp_path / "store.json", SCOPE, policy)

    for index in range(40):
        store.upsert(_record(f"id-{index}", index))
        assert store.persist() is True
        assert len(store) <= policy.max_size

    reloaded = JsonRetentionStore.load(tmp_path / "store.json", SCOPE, policy)
    assert len(reloaded) <= policy.max_size
    assert reloaded.contains("id-39")


def test_upsert_overwrites_existing_id(tmp_path) -> None:
    store = JsonRetentionStore(tmp_path / "store.json", SCOPE)
    store.upsert(_record("A", 1))
    store.upsert(ListingRecord(listing_id="A", url="https://example.test/new", timestamp=BASE_TIME))

    assert len(store) == 1
    assert store.get("A").url == "https://example.test/new"


def test_persist_then_load_round_trip(tmp_path) -> None:
    path = tmp_path / "data" / "immoscout_listings.test.json"
    store = JsonRetentionStore(path, SCOPE)
    store.upsert(_record("1", 10, page=1))
    store.upsert(_record("2", 20, page=2))
    store.upsert(_record("3", 30))

    assert store.persist() is True

    reloaded = JsonRetentionStore.load(path, SCOPE)
    assert len(reloaded) == 3
    for listing_id in ("1", "2", "3"):
        assert reloaded.contains(listing_id)
        assert reloaded.get(listing_id) == store.get(listing_id)
    assert not reloaded.contains("4")


def test_persisted_file_is_pretty_printed_mapping_keyed_by_id(tmp_path) -> None:
    path = tmp_path / "store.json"
    store = JsonRetentionStore(path, SCOPE)
    store.upsert(_record("42", 0, page=3))
    store.persist()

    text = path.read_text(encoding="utf-8")
    assert text.startswith("{\n  ")
    assert json.loads(text) == {
        "42": {
            "id": "42",
            "url": "https://www.immobilienscout24.de/expose/42",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "page": 3,
        }
    }


def test_load_missing_file_returns_empty_store(tmp_path) -> None:
    store = JsonRetentionStore.load(tmp_path / "missing.json", SCOPE)

    assert len(store) == 0
    assert not store.contains("anything")


@pytest.mark.parametrize("content", ["{not json", "", "[1, 2, 3]", '"text"'])
def test_load_corrupt_file_returns_empty_store(tmp_path, content: str) -> None:
    path = tmp_path / "store.json"
    path.write_text(content, encoding="utf-8")

    store = JsonRetentionStore.load(path, SCOPE)

    assert len(store) == 0


def test_load_skips_malformed_entries_and_keeps_valid_ones(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text(
        json.dumps(
            {
                "good": {
                    "id": "good",
                    "url": "https://www.kleinanzeigen.de/s-anzeige/x/1",
                    "timestamp": "2025-12-01T10:00:00.000Z",
                    "service": "kleinanzeigen",
                },
                "no-timestamp": {"id": "no-timestamp", "url": "https://example.test"},
                "not-an-object": "value",
            }
        ),
        encoding="utf-8",
    )

    store = JsonRetentionStore.load(path, SCOPE)

    assert len(store) == 1
    assert store.contains("good")
    assert store.get("good").timestamp == datetime(2025, 12, 1, 10, tzinfo=timezone.utc)


def test_persist_leaves_no_temporary_files(tmp_path) -> None:
    store = JsonRetentionStore(tmp_path / "store.json", SCOPE)
    store.upsert(_record("1", 1))
    store.persist()
    store.upsert(_record("2", 2))
    store.persist()

    assert sorted(path.name for path in tmp_path.iterdir()) == ["store.json"]


def test_persist_failure_returns_false_and_keeps_previous_file(tmp_path, monkeypatch) -> None:
    path = tmp_path / "store.json"
    store = JsonRetentionStore(path, SCOPE)
    store.upsert(_record("1", 1))
    assert store.persist() is True
    before = path.read_text(encoding="utf-8")

    def _failing_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _failing_replace)
    store.upsert(_record("2", 2))

    assert store.persist() is False
    assert path.read_text(encoding="utf-8") == before
    assert sorted(item.name for item in tmp_path.iterdir()) == ["store.json"]
    assert store.contains("2")


def test_retention_policy_rejects_invalid_bounds() -> None:
    with pytest.raises(ValueError):
        RetentionPolicy(max_size=0, remove_count=0)
    with pytest.raises(ValueError):
        RetentionPolicy(max_size=5, remove_count=5)
    with pytest.raises(ValueError):
        RetentionPolicy(max_size=5, remove_count=-1)
