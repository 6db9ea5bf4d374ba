from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from immo_watch.models import ListingRecord, Scope
from immo_watch.utils.datetime_utils import format_datetime

from .base import RetentionPolicy, RetentionStore, apply_retention

logger = logging.getLogger(__name__)


def scope_path(data_dir: str | Path, scope: Scope) -> Path:
    return Path(data_dir) / f"{scope.platform}_listings.{scope.instance}.json"


class JsonRetentionStore(RetentionStore):
    """Seen listings of one scope, kept in memory and written as one JSON object."""

    def __init__(
        self,
        path: str | Path,
        scope: Scope,
        policy: RetentionPolicy | None = None,
        records: dict[str, ListingRecord] | None = None,
    ) -> None:
        super().__init__(scope=scope, policy=policy or RetentionPolicy())
        self.path = Path(path)
        self._records: dict[str, ListingRecord] = dict(records or {})

    @classmethod
    def load(
        cls,
        path: str | Path,
        scope: Scope,
        policy: RetentionPolicy | None = None,
    ) -> JsonRetentionStore:
        path = Path(path)
        if not path.exists():
            logger.info("No seen listings file for %s at %s, starting fresh", scope, path)
            return cls(path, scope, policy)

        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Could not read seen listings for %s from %s: %s", scope, path, exc)
            return cls(path, scope, policy)

        if not isinstance(raw, dict):
            logger.warning(
                "Seen listings file %s for %s is not a JSON object, starting fresh",
                path,
                scope,
            )
            return cls(path, scope, policy)

        records: dict[str, ListingRecord] = {}
        for key, payload in raw.items():
            record = ListingRecord.from_json(str(key), payload)
            if record is None:
                logger.warning("Skipping malformed entry %r in %s", key, path)
                continue
            records[record.listing_id] = record

        logger.info("Loaded %d listings for %s from %s", len(records), scope, path)
        return cls(path, scope, policy, records)

    def contains(self, listing_id: str) -> bool:
        return listing_id in self._records

    def get(self, listing_id: str) -> ListingRecord | None:
        return self._records.get(listing_id)

    def upsert(self, record: ListingRecord) -> None:
        self._records[record.listing_id] = record

    def records(self) -> list[ListingRecord]:
        return sorted(self._records.values(), key=lambda record: record.timestamp, reverse=True)

    def __len__(self) -> int:
        return len(self._records)

    def persist(self) -> bool:
        kept, removed = apply_retention(self._records.values(), self.policy)
        if removed:
            for record in removed:
                logger.debug(
                    "Evicting %s listing %s (seen %s): %s",
                    self.scope,
                    record.listing_id,
                    format_datetime(record.timestamp),
                    record.url,
                )
            logger.info("Removed %d old listings for %s", len(removed), self.scope)
        self._records = {record.listing_id: record for record in kept}

        try:
            size = self._write_atomically({record.listing_id: record.to_json() for record in kept})
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save seen listings for %s to %s: %s", self.scope, self.path, exc)
            return False

        logger.info("Saved %d listings for %s to %s", len(kept), self.scope, self.path)
        if kept:
            logger.debug(
                "Kept listings for %s span %s .. %s (%.2f KB)",
                self.scope,
                format_datetime(kept[-1].timestamp),
                format_datetime(kept[0].timestamp),
                size / 1024,
            )
        return True

    def _write_atomically(self, payload: dict[str, dict]) -> int:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = Path(handle.name)
        try:
            with handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
                size = handle.tell()
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
            return size
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
