"""Catalog walk: load a supplier catalog, scroll until every product card is
loaded, then visit each product page and extract a ProductRecord.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog_sync.browser import BrowserDriver, BrowserError
from catalog_sync.extraction import ExtractionError, extract_product
from catalog_sync.logging_config import get_logger, log_sync_event
from catalog_sync.models import ProductRecord
from catalog_sync.sites import SiteConfig
from catalog_sync.urls import absolute_url

__all__ = [
    "ScrapeResult",
    "scrape_site",
    "scroll_catalog",
    "collect_product_links",
    "scrape_product",
]

logger = get_logger("scraper")

COUNT_SCRIPT = "(selector) => document.querySelectorAll(selector).length"
LINKS_SCRIPT = (
    "(selector) => Array.from(document.querySelectorAll(selector))"
    ".map(el => el.href || el.getAttribute('href')).filter(Boolean)"
)
HTML_SCRIPT = "() => document.documentElement.outerHTML"


@dataclass
class ScrapeResult:
    site: str
    products: List[ProductRecord] = field(default_factory=list)
    links_found: int = 0
    valid: int = 0
    invalid: int = 0
    errors: int = 0
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None

    def stats(self) -> Dict[str, Any]:
        return {
            "site": self.site,
            "links_found": self.links_found,
            "valid": self.valid,
            "invalid": self.invalid,
            "errors": self.errors,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def _count_cards(driver: BrowserDriver, site: SiteConfig) -> int:
    try:
        return int(driver.evaluate(COUNT_SCRIPT, site.product_card_selector) or 0)
    except BrowserError as e:
        logger.debug(f"Could not count product cards: {e}")
        return 0


def scroll_catalog(driver: BrowserDriver, site: SiteConfig) -> int:
    """Scroll until the product-card count stops growing.

    Returns:
        Number of product cards visible at the end
    """
    settings = site.scroll
    previous = _count_cards(driver, site)
    logger.info(f"Scrolling catalog ({previous} products visible)")

    for scroll in range(1, settings.max_scrolls + 1):
        driver.scroll(settings.step)
        driver.wait(settings.delay)
        driver.wait(settings.wait_for_new_content)

        current = _count_cards(driver, site)
        if current <= previous:
            logger.info(f"No new products after scroll {scroll}, stopping")
            break
        logger.debug(f"Scroll {scroll}/{settings.max_scrolls}: {current} products")
        previous = current

    return previous


def collect_product_links(driver: BrowserDriver, site: SiteConfig) -> List[str]:
    """Unique absolute product URLs, in page order."""
    raw = driver.evaluate(LINKS_SCRIPT, site.product_link_selector) or []
    links: List[str] = []
    for href in raw:
        url = absolute_url(site.base_url, href)
        if url and url not in links:
            links.append(url)
    logger.info(f"{len(links)} unique product links found")
    return links


def scrape_product(driver: BrowserDriver, site: SiteConfig, url: str) -> ProductRecord:
    """Navigate to one product page and extract its record."""
    driver.navigate(url)
    name_rule = site.fields["name"]
    driver.wait_for_element(", ".join(name_rule.selectors))
    html = driver.evaluate(HTML_SCRIPT)
    return extract_product(html or "", site, url)


def scrape_site(
    site: SiteConfig,
    driver: BrowserDriver,
    limit: Optional[int] = None,
) -> ScrapeResult:
    """Scrape every product of ``site``.

    A product that cannot be loaded or extracted is logged and counted;
    it never aborts the walk.

    Args:
        site: Site configuration
        driver: Running browser driver
        limit: Only visit the first ``limit`` product links
    """
    result = ScrapeResult(site=site.name)

    logger.info(f"Loading catalog {site.catalog_url}")
    driver.navigate(site.catalog_url)
    if not driver.wait_for_element(site.product_card_selector):
        logger.warning("No product cards showed up on the catalog page, continuing anyway")

    scroll_catalog(driver, site)
    links = collect_product_links(driver, site)
    if limit is not None:
        links = links[:limit]
    result.links_found = len(links)

    for i, url in enumerate(links, 1):
        logger.info(f"[{i}/{len(links)}] {url}")
        try:
            product = scrape_product(driver, site, url)
        except ExtractionError as e:
            result.invalid += 1
            logger.warning(f"Skipping {url}: {e}")
            continue
        except BrowserError as e:
            result.errors += 1
            logger.error(f"Failed to load {url}: {e}")
            continue
        finally:
            if i < len(links):
                driver.wait(site.product_delay)

        missing = product.missing_fields()
        if missing:
            result.invalid += 1
            logger.warning(f"{product.reference or url}: invalid, missing {', '.join(missing)}")
            continue

        result.valid += 1
        result.products.append(product)

    result.finished_at = datetime.now().isoformat()
    log_sync_event("scrape_complete", {
        "message": f"{site.name}: {result.valid} valid products, "
                   f"{result.invalid} invalid, {result.errors} errors",
        **result.stats(),
    })
    return result
