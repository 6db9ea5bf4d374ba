from __future__ import annotations

import logging
from typing import Sequence

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from immo_watch.config import BrowserSettings

logger = logging.getLogger(__name__)

_CONSENT_TIMEOUT_MS = 3000


class SourceError(RuntimeError):
    """Raised when a platform's listings could not be fetched."""


class FetchError(SourceError):
    """Navigation or browser failure."""


class ListingsNotFound(SourceError):
    """The page loaded but no listing container appeared."""


class BrowserSession:
    """One lazily started Chromium page, reused by every source of a process.

    ``close()`` releases the browser; the next ``render()`` starts a new one.
    """

    def __init__(self, settings: BrowserSettings | None = None) -> None:
        self.settings = settings or BrowserSettings()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._page is not None

    def page(self) -> Page:
        if self._page is not None and not self._page.is_closed():
            return self._page

        if self._playwright is None:
            logger.info("Launching browser (headless=%s)", self.settings.headless)
            self._playwright = sync_playwright().start()
        if self._browser is None or not self._browser.is_connected():
            self._browser = self._playwright.chromium.launch(headless=self.settings.headless)
            self._context = None

        self._close_context()
        self._context = self._browser.new_context(
            locale=self.settings.locale,
            timezone_id=self.settings.timezone_id,
            viewport={"width": 1920, "height": 1080},
        )
        self._page = self._context.new_page()
        self._page.on("pageerror", lambda error: logger.debug("Page error: %s", error))
        logger.info("Created new browser page")
        return self._page

    def render(
        self,
        url: str,
        *,
        ready_selectors: Sequence[str],
        consent_selectors: Sequence[str] = (),
    ) -> str:
        """Load ``url`` and return its HTML once a listing container is present."""
        try:
            page = self.page()
            page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.navigation_timeout_seconds * 1000,
            )
        except PlaywrightError as exc:
            self._discard_if_broken()
            raise FetchError(f"navigation to {url} failed: {exc}") from exc

        self._accept_cookies(page, consent_selectors)

        if ready_selectors:
            try:
                page.wait_for_selector(
                    ", ".join(ready_selectors),
                    timeout=self.settings.selector_timeout_seconds * 1000,
                )
            except PlaywrightTimeoutError as exc:
                raise ListingsNotFound(f"no listings appeared on {url}") from exc
            except PlaywrightError as exc:
                self._discard_if_broken()
                raise FetchError(f"waiting for listings on {url} failed: {exc}") from exc

        try:
            return page.content()
        except PlaywrightError as exc:
            self._discard_if_broken()
            raise FetchError(f"reading content of {url} failed: {exc}") from exc

    def close(self) -> None:
        if self._playwright is None:
            return

        logger.info("Closing browser")
        try:
            if self._browser is not None:
                self._browser.close()
        except PlaywrightError as exc:
            logger.warning("Error while closing browser: %s", exc)
        finally:
            self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._context = None
            self._page = None

    def _close_context(self) -> None:
        context, self._context = self._context, None
        self._page = None
        if context is None:
            return
        try:
            context.close()
        except PlaywrightError as exc:
            logger.debug("Error while closing browser context: %s", exc)

    def _accept_cookies(self, page: Page, selectors: Sequence[str]) -> None:
        for selector in selectors:
            try:
                page.click(selector, timeout=_CONSENT_TIMEOUT_MS)
            except PlaywrightError:
                continue
            logger.info("Accepted cookie consent via %s", selector)
            return
        if selectors:
            logger.debug("Cookie consent button not found or already accepted")

    def _discard_if_broken(self) -> None:
        if self._browser is not None and not self._browser.is_connected():
            logger.warning("Browser disconnected, it will be relaunched on next use")
            self.close()
        elif self._page is not None and self._page.is_closed():
            self._page = None
