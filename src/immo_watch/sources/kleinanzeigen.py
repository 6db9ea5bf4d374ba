from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag

from immo_watch.config import PlatformSettings
from immo_watch.models import Candidate
from immo_watch.utils.url_utils import absolute_url, numeric_id_from_path

from .base import BrowserListingSource, Source
from .browser import BrowserSession
from .registry import register_source

logger = logging.getLogger(__name__)

BASE_URL = "https://www.kleinanzeigen.de"
LISTING_SELECTORS = (
    "article[data-adid]",
    ".ad-listitem",
    ".aditem",
    "[data-adid]",
    ".adlist-item",
)
_PAGE_SEGMENT = re.compile(r"^seite:\d+$")


class KleinanzeigenSource(BrowserListingSource):
    display_name = "Kleinanzeigen"
    emoji = "🏘️"
    ready_selectors = LISTING_SELECTORS
    consent_selectors = (
        '[data-testid="gdpr-accept-all"]',
        ".gdpr-cookie-layer__btn--accept-all",
        "#gdpr-consent-accept-all",
        'button[id*="accept"]',
        'button[class*="accept"]',
        ".cookie-consent button",
    )

    def page_url(self, page: int) -> str:
        return kleinanzeigen_page_url(self.url, page)

    def parse(self, html: str, page: int) -> list[Candidate]:
        return parse_kleinanzeigen_listings(html, page=page)


def kleinanzeigen_page_url(url: str, page: int) -> str:
    """Result page N lives under a ``seite:N`` segment before the category code."""
    parsed = urlsplit(url)
    segments = [segment for segment in parsed.path.split("/") if segment]
    segments = [segment for segment in segments if not _PAGE_SEGMENT.match(segment)]
    if page > 1:
        segments.insert(max(len(segments) - 1, 0), f"seite:{page}")
    path = "/" + "/".join(segments)
    return urlunsplit((parsed.scheme, parsed.netloc, path, parsed.query, parsed.fragment))


def parse_kleinanzeigen_listings(html: str, page: int | None = None) -> list[Candidate]:
    soup = BeautifulSoup(html, "html.parser")

    elements: list[Tag] = []
    for selector in LISTING_SELECTORS:
        elements = soup.select(selector)
        if elements:
            logger.debug("Found %d Kleinanzeigen listings using %s", len(elements), selector)
            break

    candidates: list[Candidate] = []
    for element in elements:
        try:
            candidate = _element_to_candidate(element, page)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing Kleinanzeigen listing")
            continue
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def _element_to_candidate(element: Tag, page: int | None) -> Candidate | None:
    link = element.find("a", href=True)
    href = str(link.get("href") or "").strip() if link is not None else ""

    listing_id = str(element.get("data-adid") or "").strip()
    if not listing_id and href:
        listing_id = numeric_id_from_path(href) or ""
    if not listing_id:
        logger.warning("Could not extract id from Kleinanzeigen listing")
        return None
    if not href:
        logger.warning("No link found for Kleinanzeigen listing %s", listing_id)
        return None

    return Candidate(listing_id=listing_id, url=absolute_url(BASE_URL, href), page=page)


@register_source("kleinanzeigen")
def _build_kleinanzeigen_source(settings: PlatformSettings, session: BrowserSession) -> Source:
    return KleinanzeigenSource(settings, session)
