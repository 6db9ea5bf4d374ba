from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from immo_watch.config import PlatformSettings
from immo_watch.models import Candidate

from .browser import BrowserSession, ListingsNotFound

logger = logging.getLogger(__name__)


class Source(ABC):
    display_name = "Listings"
    emoji = "🏠"

    def __init__(self, platform: str) -> None:
        self.platform = platform

    @abstractmethod
    def fetch_candidates(self) -> list[Candidate]:
        """Return the listings currently shown for this platform, in page order."""


class BrowserListingSource(Source):
    """Source that renders filter result pages in a shared browser session."""

    ready_selectors: tuple[str, ...] = ()
    consent_selectors: tuple[str, ...] = ()

    def __init__(self, settings: PlatformSettings, session: BrowserSession) -> None:
        super().__init__(platform=settings.id)
        self.url = settings.url
        self.max_pages = settings.max_pages
        self.session = session

    @abstractmethod
    def page_url(self, page: int) -> str:
        """Return the filter URL for a 1-based result page."""

    @abstractmethod
    def parse(self, html: str, page: int) -> list[Candidate]:
        """Extract candidates from one rendered result page."""

    def fetch_candidates(self) -> list[Candidate]:
        candidates: list[Candidate] = []
        seen_ids: set[str] = set()

        for page in range(1, self.max_pages + 1):
            try:
                html = self.session.render(
                    self.page_url(page),
                    ready_selectors=self.ready_selectors,
                    consent_selectors=self.consent_selectors,
                )
            except ListingsNotFound:
                if page == 1:
                    raise
                logger.info("%s: no listings on page %d, stopping", self.display_name, page)
                break

            added = 0
            for candidate in self.parse(html, page):
                if candidate.listing_id in seen_ids:
                    continue
                seen_ids.add(candidate.listing_id)
                candidates.append(candidate)
                added += 1

            logger.info("%s page %d: %d listings", self.display_name, page, added)
            if added == 0:
                break

        return candidates
