from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from immo_watch.config import RetrySettings, ScheduleSettings
from immo_watch.models import Candidate, ListingRecord
from immo_watch.notifiers import Notifier, render_listing_message
from immo_watch.sources import Source
from immo_watch.store import RetentionStore
from immo_watch.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Platform:
    source: Source
    store: RetentionStore

    @property
    def name(self) -> str:
        return self.source.platform


@dataclass(slots=True)
class CycleStats:
    platform: str
    attempts: int = 0
    fetched: int = 0
    new: int = 0
    notified: int = 0
    notify_failures: int = 0
    persisted: bool = False
    stopped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class RunStats:
    cycles: list[CycleStats] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{cycle.platform}: {cycle.error}" for cycle in self.cycles if cycle.error]

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def new(self) -> int:
        return sum(cycle.new for cycle in self.cycles)

    @property
    def notified(self) -> int:
        return sum(cycle.notified for cycle in self.cycles)

    @property
    def notify_failures(self) -> int:
        return sum(cycle.notify_failures for cycle in self.cycles)


@dataclass(slots=True)
class _Batch:
    platform: Platform
    stats: CycleStats
    candidates: list[Candidate]
    attempted: list[Candidate] = field(default_factory=list)


class ScanController:
    """Fetches and diffs every platform, notifies the new listings, then persists.

    Every wait (retry backoff, pause between notifications, pause between
    cycles) goes through ``stop_event`` so ``stop()`` takes effect at the
    next suspension point.
    """

    def __init__(
        self,
        *,
        platforms: list[Platform],
        notifier: Notifier,
        schedule: ScheduleSettings | None = None,
        retry: RetrySettings | None = None,
        dry_run: bool = False,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.platforms = platforms
        self.notifier = notifier
        self.schedule = schedule or ScheduleSettings()
        self.retry = retry or RetrySettings()
        self.dry_run = dry_run
        self.rng = rng or random.Random()
        self.clock = clock
        self.stop_event = stop_event or threading.Event()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    def run_forever(self, max_iterations: int | None = None) -> int:
        names = ", ".join(platform.source.display_name for platform in self.platforms)
        logger.info("Starting periodic checks for: %s", names)

        iterations = 0
        while not self.stopped:
            try:
                stats = self.run_once()
                iterations += 1
                pause = self.rng.uniform(
                    self.schedule.min_interval_seconds,
                    self.schedule.max_interval_seconds,
                )
                if not stats.ok:
                    logger.warning("Check finished with errors: %s", "; ".join(stats.errors))
            except Exception:  # noqa: BLE001
                logger.exception("Check failed")
                iterations += 1
                pause = self.schedule.error_pause_seconds

            if max_iterations is not None and iterations >= max_iterations:
                break
            logger.info("Next check in %.0f seconds", pause)
            if self._wait(pause):
                break

        logger.info("Stopped after %d checks", iterations)
        return iterations

    def run_once(self) -> RunStats:
        """Check every platform, then send all new listings as one numbered run."""
        stats = RunStats()
        logger.info("Starting check cycle")

        batches: list[_Batch] = []
        for platform in self.platforms:
            if self.stopped:
                break
            cycle = CycleStats(platform=platform.name)
            stats.cycles.append(cycle)
            try:
                candidates = self._collect(platform, cycle)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Error checking %s", platform.source.display_name)
                cycle.error = f"unexpected error: {exc}"
                continue
            if candidates is not None:
                batches.append(_Batch(platform=platform, stats=cycle, candidates=candidates))

        if stats.new == 0:
            logger.info("No new listings found on any platform")
        else:
            self._notify(batches)

        for batch in batches:
            try:
                self._record(batch)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Error saving %s listings", batch.platform.source.display_name)
                batch.stats.error = f"unexpected error: {exc}"
        return stats

    def run_cycle(self, platform: Platform) -> CycleStats:
        stats = CycleStats(platform=platform.name)
        candidates = self._collect(platform, stats)
        if candidates is None:
            return stats

        batch = _Batch(platform=platform, stats=stats, candidates=candidates)
        self._notify([batch])
        self._record(batch)
        return stats

    def _collect(self, platform: Platform, stats: CycleStats) -> list[Candidate] | None:
        source = platform.source
        logger.info("Checking %s listings", source.display_name)

        candidates = self._fetch_with_retry(platform, stats)
        if candidates is None:
            return None
        stats.fetched = len(candidates)

        new_candidates = _unseen(candidates, platform.store)
        stats.new = len(new_candidates)
        logger.info(
            "%s: %d listings fetched, %d new",
            source.display_name,
            stats.fetched,
            stats.new,
        )
        return new_candidates

    def _record(self, batch: _Batch) -> None:
        if self.dry_run:
            return

        store = batch.platform.store
        for candidate in batch.attempted:
            store.upsert(ListingRecord.from_candidate(candidate, self.clock()))
        batch.stats.persisted = store.persist()
        if not batch.stats.persisted:
            batch.stats.error = f"failed to persist seen listings for {store.scope}"

    def mark_all_seen(self) -> RunStats:
        """Record every current listing as seen without notifying."""
        stats = RunStats()
        for platform in self.platforms:
            if self.stopped:
                break
            cycle = CycleStats(platform=platform.name)
            stats.cycles.append(cycle)

            candidates = self._fetch_with_retry(platform, cycle)
            if candidates is None:
                continue
            cycle.fetched = len(candidates)

            for candidate in _unseen(candidates, platform.store):
                platform.store.upsert(ListingRecord.from_candidate(candidate, self.clock()))
                cycle.new += 1
            cycle.persisted = platform.store.persist()
            if not cycle.persisted:
                cycle.error = f"failed to persist seen listings for {platform.store.scope}"
            logger.info("%s: marked %d listings as seen", platform.source.display_name, cycle.new)
        return stats

    def _fetch_with_retry(self, platform: Platform, stats: CycleStats) -> list[Candidate] | None:
        last_error: Exception | None = None
        for attempt in range(self.retry.max_retries + 1):
            stats.attempts = attempt + 1
            try:
                return platform.source.fetch_candidates()
            except Exception as exc:  # noqa: BLE001
                last_error = exc

            if attempt == self.retry.max_retries:
                break
            delay = self.retry.initial_delay_seconds * 2**attempt
            logger.warning(
                "%s fetch failed (attempt %d/%d): %s; retrying in %.1fs",
                platform.source.display_name,
                stats.attempts,
                self.retry.max_retries + 1,
                last_error,
                delay,
            )
            if self._wait(delay):
                stats.stopped = True
                logger.info("Stop requested, abandoning %s cycle", platform.source.display_name)
                return None

        stats.error = f"fetch failed after {stats.attempts} attempts: {last_error}"
        logger.error(
            "Giving up on %s for this cycle: %s",
            platform.source.display_name,
            last_error,
            exc_info=last_error,
        )
        return None

    def _notify(self, batches: list[_Batch]) -> None:
        """Send one message per new listing, numbered across all batches."""
        total = sum(len(batch.candidates) for batch in batches)
        index = 0
        for batch in batches:
            source = batch.platform.source
            for candidate in batch.candidates:
                index += 1
                if index > 1 and self._wait(self._notification_delay()):
                    logger.info("Stop requested, %d listings left unsent", total - index + 1)
                    for pending in batches:
                        if len(pending.attempted) < len(pending.candidates):
                            pending.stats.stopped = True
                    return

                message = render_listing_message(
                    candidate,
                    platform_name=source.display_name,
                    emoji=source.emoji,
                    index=index,
                    total=total,
                )
                batch.attempted.append(candidate)
                try:
                    self.notifier.deliver(message)
                except Exception:  # noqa: BLE001
                    batch.stats.notify_failures += 1
                    logger.exception(
                        "Failed to notify %s listing %s",
                        source.display_name,
                        candidate.listing_id,
                    )
                    continue
                batch.stats.notified += 1

    def _notification_delay(self) -> float:
        return self.rng.uniform(
            self.schedule.notification_delay_min_seconds,
            self.schedule.notification_delay_max_seconds,
        )

    def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when a stop was requested."""
        if seconds <= 0:
            return self.stopped
        return self.stop_event.wait(seconds)


def _unseen(candidates: list[Candidate], store: RetentionStore) -> list[Candidate]:
    unseen: list[Candidate] = []
    batch_ids: set[str] = set()
    for candidate in candidates:
        if candidate.listing_id in batch_ids:
            continue
        batch_ids.add(candidate.listing_id)
        if store.contains(candidate.listing_id):
            continue
        unseen.append(candidate)
    return unseen
