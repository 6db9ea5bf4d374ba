from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from immo_watch.models import ListingRecord, Scope


@dataclass(slots=True, frozen=True)
class RetentionPolicy:
    """Size bound of one scope's store.

    Once a store grows past ``max_size`` it is cut back to its newest
    ``max_size - remove_count`` records in one pass, so pruning happens once
    every ``remove_count`` insertions instead of on every cycle.
    """

    max_size: int = 100
    remove_count: int = 70

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")
        if not 0 <= self.remove_count < self.max_size:
            raise ValueError("remove_count must be >= 0 and < max_size")

    @property
    def retain_count(self) -> int:
        return self.max_size - self.remove_count


def apply_retention(
    records: Iterable[ListingRecord],
    policy: RetentionPolicy,
) -> tuple[list[ListingRecord], list[ListingRecord]]:
    """Split records into (kept, removed), both ordered newest first."""
    ordered = sorted(records, key=lambda record: record.timestamp, reverse=True)
    if len(ordered) <= policy.max_size:
        return ordered, []
    return ordered[: policy.retain_count], ordered[policy.retain_count :]


class RetentionStore(ABC):
    def __init__(self, scope: Scope, policy: RetentionPolicy) -> None:
        self.scope = scope
        self.policy = policy

    @abstractmethod
    def contains(self, listing_id: str) -> bool:
        """Return True when the id was seen before in this scope."""

    @abstractmethod
    def get(self, listing_id: str) -> ListingRecord | None:
        """Return the stored record for an id, if any."""

    @abstractmethod
    def upsert(self, record: ListingRecord) -> None:
        """Insert or overwrite the record for ``record.listing_id`` in memory."""

    @abstractmethod
    def persist(self) -> bool:
        """Apply the retention policy and write the store durably.

        Returns False instead of raising when the write fails.
        """

    @abstractmethod
    def records(self) -> list[ListingRecord]:
        """Return all records, newest first."""

    @abstractmethod
    def __len__(self) -> int:
        ...
