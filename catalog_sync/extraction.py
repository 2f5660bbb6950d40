"""Product field extraction from rendered product pages."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from catalog_sync.logging_config import get_logger
from catalog_sync.models import ColorKind, ProductRecord, RawColor
from catalog_sync.sites import ExtractionKind, FieldRule, SiteConfig, add_reference_prefix
from catalog_sync.urls import absolute_url

__all__ = [
    "ExtractionError",
    "extract_field",
    "extract_product",
    "parse_price",
    "parse_color_swatch",
    "breadcrumb_categories",
]

logger = get_logger("extraction")

BG_IMAGE_RE = re.compile(r"background-image:\s*url\(['\"]?([^'\")]+)['\"]?\)", re.IGNORECASE)
BG_COLOR_RE = re.compile(r"background-color:\s*(#[0-9A-Fa-f]{6}|#[0-9A-Fa-f]{3})\b")
CATEGORY_RE = re.compile(r'"item_category\d*"\s*:\s*"([^"]*)"')
PRICE_RE = re.compile(r"\d[\d.,]*")
REFERENCE_LABEL_RE = re.compile(r"^\s*(ref(er[eê]ncia)?|c[oó]d(igo)?|sku)\s*[.:]?\s*", re.IGNORECASE)

BREADCRUMB_SELECTOR = ".breadcrumb, .breadcrumbs, nav[aria-label='breadcrumb']"
BREADCRUMB_SKIP = {"home", "início", "inicio"}


class ExtractionError(Exception):
    """Raised when a required field cannot be found on a page."""

    def __init__(self, field_name: str, url: Optional[str] = None):
        self.field_name = field_name
        self.url = url
        super().__init__(f"Required field '{field_name}' not found" + (f" on {url}" if url else ""))


def _text(el: Tag) -> str:
    return " ".join(el.get_text(" ").split())


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """Parse the first number in ``text`` as a price.

    Handles both Brazilian (``1.234,56``) and dotted (``12.50``) notation.
    """
    if not text:
        return None
    match = PRICE_RE.search(text)
    if not match:
        return None
    number = match.group(0).rstrip(".,")

    if "," in number and "." in number:
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        head, _, tail = number.rpartition(",")
        if number.count(",") == 1 and len(tail) != 3:
            number = f"{head}.{tail}"
        else:
            number = number.replace(",", "")
    elif number.count(".") > 1 or re.fullmatch(r"\d{1,3}\.\d{3}", number):
        number = number.replace(".", "")

    try:
        return Decimal(number)
    except InvalidOperation:
        return None


def parse_color_swatch(el: Tag, page_url: str) -> RawColor:
    """One swatch element to a RawColor.

    The name comes from ``title``. An inner span styled with a
    background-image makes it an image color, a background-color makes it a
    hex color. The element text is the supplier's numeric color code.
    """
    text = _text(el)
    title = (el.get("title") or "").strip()
    color = RawColor(
        name=title or text,
        numeric_code=(text or None) if title else None,
    )

    span = el.find("span")
    style = span.get("style", "") if isinstance(span, Tag) else ""
    image_match = BG_IMAGE_RE.search(style)
    color_match = BG_COLOR_RE.search(style)
    if image_match:
        color.kind = ColorKind.IMAGE.value
        color.image_url = absolute_url(page_url, image_match.group(1))
    elif color_match:
        color.kind = "hex"
        color.code = color_match.group(1)
    return color


def _image_list(soup: BeautifulSoup, selector: str, page_url: str) -> List[str]:
    urls: List[str] = []
    for el in soup.select(selector):
        images = [el] if el.name == "img" else el.find_all("img")
        for img in images:
            src = img.get("data-src") or img.get("data-lazy-src") or img.get("src")
            url = absolute_url(page_url, src)
            if url and url not in urls:
                urls.append(url)
    return urls


def _script_categories(soup: BeautifulSoup, selector: str) -> List[str]:
    categories: List[str] = []
    for el in soup.select(selector):
        content = el.string or el.get_text()
        for value in CATEGORY_RE.findall(content or ""):
            value = value.strip()
            if value and value not in categories:
                categories.append(value)
        if categories:
            break
    return categories


def extract_field(soup: BeautifulSoup, rule: FieldRule, page_url: str = "") -> Any:
    """Apply ``rule`` to a parsed page. Returns None when nothing matched."""
    for selector in rule.selectors:
        value: Any = None

        if rule.kind == ExtractionKind.IMAGE_LIST:
            value = _image_list(soup, selector, page_url)
        elif rule.kind == ExtractionKind.COLOR_SWATCH:
            value = [parse_color_swatch(el, page_url) for el in soup.select(selector)]
        elif rule.kind == ExtractionKind.STRUCTURED_SCRIPT:
            value = _script_categories(soup, selector)
        else:
            el = soup.select_one(selector)
            if el is None:
                continue
            if rule.kind == ExtractionKind.ATTRIBUTE:
                value = el.get(rule.attribute)
                if isinstance(value, list):
                    value = " ".join(value)
            elif rule.kind == ExtractionKind.PRICE:
                value = parse_price(_text(el))
            else:
                value = _text(el)

        if value not in (None, "", []):
            return value

    return None


def breadcrumb_categories(soup: BeautifulSoup) -> List[str]:
    """Category names from the breadcrumb, without the home entry."""
    crumb = soup.select_one(BREADCRUMB_SELECTOR)
    if crumb is None:
        return []
    items = crumb.find_all("li") or crumb.find_all(["a", "span"])
    categories: List[str] = []
    for item in items:
        text = _text(item)
        if text and text.lower() not in BREADCRUMB_SKIP and text not in categories:
            categories.append(text)
    return categories


def _clean_reference(value: str) -> str:
    return REFERENCE_LABEL_RE.sub("", value).strip()


def extract_product(html: str, site: SiteConfig, url: str = "") -> ProductRecord:
    """Extract a ProductRecord from a rendered product page.

    Raises:
        ExtractionError: If a required field has no match
    """
    soup = BeautifulSoup(html, "html.parser")
    values: Dict[str, Any] = {}

    for field_name, rule in site.fields.items():
        value = extract_field(soup, rule, url or site.base_url)
        if value is None and rule.required:
            raise ExtractionError(field_name, url)
        values[field_name] = value

    categories = values.get("categories") or breadcrumb_categories(soup)
    reference = _clean_reference(values.get("reference") or "")
    if not reference:
        raise ExtractionError("reference", url)

    product = ProductRecord(
        reference=add_reference_prefix(reference, site),
        name=values.get("name") or "",
        description=values.get("description") or "",
        price=values.get("price"),
        categories=list(categories),
        colors=values.get("colors") or [],
        images=values.get("images") or [],
        extra_info=values.get("extra_info") or None,
        url=url or None,
        site=site.name,
    )
    logger.debug(
        f"Extracted {product.reference}: {len(product.colors)} colors, "
        f"{len(product.images)} images, {len(product.categories)} categories"
    )
    return product
