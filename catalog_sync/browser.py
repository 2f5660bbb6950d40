"""Browser automation for catalog pages that render with JavaScript.

The scraper only talks to ``BrowserDriver``; ``PlaywrightBrowser`` is the
production implementation on top of Playwright's sync API.
"""

from typing import Any, Optional, Protocol

from playwright.sync_api import Browser, Page, Playwright, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from catalog_sync.config import USER_AGENTS
from catalog_sync.logging_config import get_logger

__all__ = ["BrowserDriver", "PlaywrightBrowser", "BrowserError"]

logger = get_logger("browser")

# Base class of Playwright failures, timeouts included
BrowserError = PlaywrightError


class BrowserDriver(Protocol):
    def navigate(self, url: str) -> None:
        ...

    def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    def wait_for_element(self, selector: str, timeout: float = 10.0) -> bool:
        ...

    def scroll(self, step: int) -> None:
        ...

    def wait(self, seconds: float) -> None:
        ...


class PlaywrightBrowser:
    """Headless Chromium driven through Playwright.

    Use as a context manager; the browser is closed on exit even when
    scraping fails half-way.
    """

    def __init__(
        self,
        headless: bool = True,
        user_agent: str = USER_AGENTS[0],
        navigation_timeout: float = 30.0,
        block_assets: bool = True,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.navigation_timeout = navigation_timeout
        self.block_assets = block_assets
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    def __enter__(self) -> "PlaywrightBrowser":
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-sandbox",
            ],
        )
        self._page = self._browser.new_page(
            viewport={"width": 1920, "height": 1080},
            user_agent=self.user_agent,
        )
        self._page.set_default_navigation_timeout(self.navigation_timeout * 1000)
        if self.block_assets:
            # Images, fonts and stylesheets are read from the DOM, never rendered
            self._page.route(
                "**/*",
                lambda route: route.abort()
                if route.request.resource_type in ("image", "font", "stylesheet", "media")
                else route.continue_(),
            )
        logger.info("Browser started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._browser:
            self._browser.close()
        if self._playwright:
            self._playwright.stop()
        self._page = None
        self._browser = None
        self._playwright = None
        logger.info("Browser closed")

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser is not running; use PlaywrightBrowser as a context manager")
        return self._page

    def navigate(self, url: str) -> None:
        logger.debug(f"Navigating to {url}")
        self.page.goto(url, wait_until="domcontentloaded")

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return self.page.evaluate(script)
        return self.page.evaluate(script, arg)

    def wait_for_element(self, selector: str, timeout: float = 10.0) -> bool:
        try:
            self.page.wait_for_selector(selector, timeout=timeout * 1000)
            return True
        except PlaywrightTimeoutError:
            logger.debug(f"Selector not found within {timeout}s: {selector}")
            return False

    def scroll(self, step: int) -> None:
        self.page.evaluate("(step) => window.scrollBy(0, step)", step)

    def wait(self, seconds: float) -> None:
        self.page.wait_for_timeout(seconds * 1000)
