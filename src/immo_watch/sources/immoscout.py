from __future__ import annotations

import logging

from bs4 import BeautifulSoup, Tag

from immo_watch.config import PlatformSettings
from immo_watch.models import Candidate
from immo_watch.utils.url_utils import absolute_url, with_query_param

from .base import BrowserListingSource, Source
from .browser import BrowserSession
from .registry import register_source

logger = logging.getLogger(__name__)

BASE_URL = "https://www.immobilienscout24.de"
LISTING_SELECTOR = '[data-testid$="-slide-0"]'


class ImmoScoutSource(BrowserListingSource):
    display_name = "ImmoScout24"
    emoji = "🏠"
    ready_selectors = (LISTING_SELECTOR,)
    consent_selectors = ('[data-testid="uc-accept-all-button"]',)

    def page_url(self, page: int) -> str:
        if page == 1:
            return self.url
        return with_query_param(self.url, "pagenumber", str(page))

    def parse(self, html: str, page: int) -> list[Candidate]:
        return parse_immoscout_listings(html, page=page)


def parse_immoscout_listings(html: str, page: int | None = None) -> list[Candidate]:
    soup = BeautifulSoup(html, "html.parser")
    candidates: list[Candidate] = []
    for element in soup.select(LISTING_SELECTOR):
        try:
            candidate = _element_to_candidate(element, page)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing ImmoScout24 listing")
            continue
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def _element_to_candidate(element: Tag, page: int | None) -> Candidate | None:
    test_id = str(element.get("data-testid") or "").strip()
    listing_id = test_id.split("-", 1)[0]
    if not listing_id:
        logger.warning("ImmoScout24 listing without id in data-testid %r", test_id)
        return None

    link = element if element.name == "a" else element.find_parent("a")
    href = str(link.get("href") or "").strip() if link is not None else ""
    if not href:
        logger.warning("No link found for ImmoScout24 listing %s", listing_id)
        return None

    return Candidate(listing_id=listing_id, url=absolute_url(BASE_URL, href), page=page)


@register_source("immoscout")
def _build_immoscout_source(settings: PlatformSettings, session: BrowserSession) -> Source:
    return ImmoScoutSource(settings, session)
