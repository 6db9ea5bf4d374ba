from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from immo_watch.utils.datetime_utils import parse_timestamp, to_iso, to_utc


@dataclass(slots=True, frozen=True)
class Scope:
    platform: str
    instance: str

    def __str__(self) -> str:
        return f"{self.platform}/{self.instance}"


@dataclass(slots=True, frozen=True)
class Candidate:
    listing_id: str
    url: str
    page: int | None = None


@dataclass(slots=True)
class ListingRecord:
    listing_id: str
    url: str
    timestamp: datetime
    page: int | None = None

    @classmethod
    def from_candidate(cls, candidate: Candidate, timestamp: datetime) -> ListingRecord:
        return cls(
            listing_id=candidate.listing_id,
            url=candidate.url,
            timestamp=to_utc(timestamp),
            page=candidate.page,
        )

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.listing_id,
            "url": self.url,
            "timestamp": to_iso(self.timestamp),
        }
        if self.page is not None:
            payload["page"] = self.page
        return payload

    @classmethod
    def from_json(cls, key: str, payload: Any) -> ListingRecord | None:
        """Build a record from one stored entry, or None when it is unusable."""
        if not isinstance(payload, dict):
            return None

        listing_id = str(payload.get("id") or key).strip()
        url = str(payload.get("url") or "").strip()
        timestamp = parse_timestamp(payload.get("timestamp"))
        if not listing_id or not url or timestamp is None:
            return None

        page = payload.get("page")
        if isinstance(page, bool) or not isinstance(page, int):
            page = None

        return cls(listing_id=listing_id, url=url, timestamp=timestamp, page=page)
