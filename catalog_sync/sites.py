"""Supplier site configurations and reference prefixes.

Each supplier catalog is described by a ``SiteConfig``: where its catalog
lives, how to find product cards while scrolling, and how to pull each
product field out of a rendered product page. Configurations are validated
when they are loaded, so a broken selector map fails before any browser is
started.

Every product reference carries its site's prefix (``SP-``, ``XB-``) so
products from different suppliers never collide in the remote catalog.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

__all__ = [
    "ExtractionKind",
    "FieldRule",
    "ScrollSettings",
    "SiteConfig",
    "SiteConfigError",
    "REQUIRED_FIELDS",
    "SITES",
    "load_site_config",
    "get_site",
    "find_site",
    "add_reference_prefix",
    "remove_reference_prefix",
    "identify_site",
    "normalize_reference",
]


class SiteConfigError(ValueError):
    """Raised when a site configuration is invalid or unknown."""
    pass


class ExtractionKind(str, Enum):
    TEXT = "text"
    ATTRIBUTE = "attribute"
    IMAGE_LIST = "image-list"
    COLOR_SWATCH = "color-swatch"
    PRICE = "price"
    STRUCTURED_SCRIPT = "structured-script"


# Fields every site must know how to extract
REQUIRED_FIELDS = ("reference", "name", "images", "colors")


@dataclass
class FieldRule:
    """How to extract one product field.

    Selectors are tried in order; the first one that yields a non-empty
    value wins.
    """

    selectors: List[str]
    kind: ExtractionKind = ExtractionKind.TEXT
    required: bool = False
    attribute: Optional[str] = None


@dataclass
class ScrollSettings:
    """Infinite-scroll behaviour of a catalog page (times in seconds)."""

    delay: float = 1.5
    max_scrolls: int = 100
    step: int = 1000
    wait_for_new_content: float = 2.0


@dataclass
class SiteConfig:
    key: str
    name: str
    base_url: str
    catalog_url: str
    reference_prefix: str
    site_code: str
    product_card_selector: str
    product_link_selector: str
    fields: Dict[str, FieldRule]
    scroll: ScrollSettings = field(default_factory=ScrollSettings)
    product_delay: float = 1.0

    @property
    def required_fields(self) -> List[str]:
        return [name for name, rule in self.fields.items() if rule.required]


def _parse_rule(field_name: str, data: Dict[str, Any]) -> FieldRule:
    selectors = data.get("selectors") or []
    if isinstance(selectors, str):
        selectors = [selectors]
    if not selectors:
        raise SiteConfigError(f"Field '{field_name}' has no selectors")

    raw_kind = data.get("kind", ExtractionKind.TEXT.value)
    try:
        kind = ExtractionKind(raw_kind)
    except ValueError:
        valid = ", ".join(k.value for k in ExtractionKind)
        raise SiteConfigError(f"Field '{field_name}' has unknown kind '{raw_kind}' (expected one of: {valid})")

    attribute = data.get("attribute")
    if kind == ExtractionKind.ATTRIBUTE and not attribute:
        raise SiteConfigError(f"Field '{field_name}' uses kind 'attribute' but names no attribute")

    return FieldRule(
        selectors=list(selectors),
        kind=kind,
        required=bool(data.get("required", False)),
        attribute=attribute,
    )


def load_site_config(data: Dict[str, Any]) -> SiteConfig:
    """Build and validate a SiteConfig from a plain dict.

    Raises:
        SiteConfigError: If a required setting is missing or malformed
    """
    for key in ("key", "name", "base_url", "catalog_url", "reference_prefix"):
        if not data.get(key):
            raise SiteConfigError(f"Site config is missing '{key}'")

    selectors = data.get("selectors") or {}
    card = selectors.get("product_card")
    links = selectors.get("product_links")
    if not card or not links:
        raise SiteConfigError(f"Site '{data['name']}' needs product_card and product_links selectors")

    raw_fields = data.get("fields") or {}
    missing = [f for f in REQUIRED_FIELDS if f not in raw_fields]
    if missing:
        raise SiteConfigError(f"Site '{data['name']}' has no rule for: {', '.join(missing)}")

    fields = {name: _parse_rule(name, rule) for name, rule in raw_fields.items()}

    scroll_data = data.get("scroll") or {}
    scroll = ScrollSettings(
        delay=float(scroll_data.get("delay", ScrollSettings.delay)),
        max_scrolls=int(scroll_data.get("max_scrolls", ScrollSettings.max_scrolls)),
        step=int(scroll_data.get("step", ScrollSettings.step)),
        wait_for_new_content=float(scroll_data.get("wait_for_new_content", ScrollSettings.wait_for_new_content)),
    )
    if scroll.max_scrolls < 0:
        raise SiteConfigError(f"Site '{data['name']}': max_scrolls must not be negative")

    return SiteConfig(
        key=data["key"],
        name=data["name"],
        base_url=data["base_url"].rstrip("/"),
        catalog_url=data["catalog_url"],
        reference_prefix=data["reference_prefix"],
        site_code=data.get("site_code") or data["key"].upper(),
        product_card_selector=card,
        product_link_selector=links,
        fields=fields,
        scroll=scroll,
        product_delay=float(data.get("product_delay", 1.0)),
    )


SPOTGIFTS = {
    "key": "spotgifts",
    "name": "Spot Gifts",
    "base_url": "https://www.spotgifts.com.br",
    "catalog_url": "https://www.spotgifts.com.br/pt/catalogo/",
    "reference_prefix": "SP-",
    "site_code": "SPOT",
    "selectors": {
        "product_card": ".produto, [class*='produto']",
        "product_links": "a.produto, .produto a[href]",
    },
    "scroll": {"delay": 1.5, "max_scrolls": 100, "step": 1000, "wait_for_new_content": 2.0},
    "product_delay": 1.0,
    "fields": {
        "reference": {"selectors": [".ref", "[class*='ref']"], "required": True},
        "name": {"selectors": ["h1.titulo", "h1", ".titulo"], "required": True},
        "description": {"selectors": [".texto", ".produto-description", ".description", ".produto-details"]},
        "colors": {"selectors": [".color"], "kind": "color-swatch", "required": True},
        "images": {
            "selectors": [".img-wrap.center > span > span > img", ".product-images img", ".gallery img"],
            "kind": "image-list",
            "required": True,
        },
        "categories": {
            "selectors": ["script[type='application/ld+json']", "script"],
            "kind": "structured-script",
        },
        "extra_info": {"selectors": [".conteudo .caracteristica"]},
        "price": {"selectors": [".produto-price", ".price", ".current-price"], "kind": "price"},
    },
}

XBZBRINDES = {
    "key": "xbzbrindes",
    "name": "XBZ Brindes",
    "base_url": "https://www.xbzbrindes.com.br",
    "catalog_url": "https://www.xbzbrindes.com.br/",
    "reference_prefix": "XB-",
    "site_code": "XBZ",
    "selectors": {
        "product_card": ".product-item, .product-card, .catalog-item, [class*='product-item']",
        "product_links": "a[href*='/produto'], a[href*='/product'], a[href*='/item'], .product-link",
    },
    "scroll": {"delay": 2.0, "max_scrolls": 150, "step": 800, "wait_for_new_content": 2.5},
    "product_delay": 1.5,
    "fields": {
        "reference": {
            "selectors": [".product-reference", ".product-code", ".reference", ".sku", ".item-code"],
            "required": True,
        },
        "name": {"selectors": ["h1", ".product-name", ".product-title", ".item-name"], "required": True},
        "description": {
            "selectors": [".product-description", ".description", ".product-details", ".item-description"],
        },
        "colors": {
            "selectors": [".product-colors .color", ".color-options > *", ".item-colors > *"],
            "kind": "color-swatch",
            "required": True,
        },
        "images": {
            "selectors": [".product-images img", ".product-gallery img", ".gallery img", ".item-images img"],
            "kind": "image-list",
            "required": True,
        },
        "categories": {"selectors": ["script[type='application/ld+json']"], "kind": "structured-script"},
        "extra_info": {"selectors": [".product-info", ".product-specs", ".specifications", ".item-specs"]},
        "price": {"selectors": [".product-price", ".price", ".current-price", ".item-price"], "kind": "price"},
    },
}

SITES: Dict[str, SiteConfig] = {
    config["key"]: load_site_config(config) for config in (SPOTGIFTS, XBZBRINDES)
}


def find_site(site: Union[str, SiteConfig, None]) -> Optional[SiteConfig]:
    """Look a site up by key or display name (case-insensitive)."""
    if site is None:
        return None
    if isinstance(site, SiteConfig):
        return site
    wanted = site.strip().lower()
    for config in SITES.values():
        if wanted in (config.key, config.name.lower()):
            return config
    return None


def get_site(site: Union[str, SiteConfig]) -> SiteConfig:
    config = find_site(site)
    if config is None:
        raise SiteConfigError(f"Unknown site '{site}'. Available: {', '.join(SITES)}")
    return config


def add_reference_prefix(reference: str, site: Union[str, SiteConfig]) -> str:
    """Prefix ``reference`` with the site's prefix unless it already has it."""
    config = find_site(site)
    if not reference or config is None:
        return reference
    if reference.startswith(config.reference_prefix):
        return reference
    return f"{config.reference_prefix}{reference}"


def remove_reference_prefix(reference: str, site: Union[str, SiteConfig]) -> str:
    config = find_site(site)
    if not reference or config is None:
        return reference
    if reference.startswith(config.reference_prefix):
        return reference[len(config.reference_prefix):]
    return reference


def identify_site(reference: str) -> Optional[SiteConfig]:
    """Return the site whose prefix ``reference`` carries, if any."""
    if not reference:
        return None
    for config in SITES.values():
        if reference.startswith(config.reference_prefix):
            return config
    return None


def normalize_reference(reference: str, site: Union[str, SiteConfig]) -> str:
    """Strip whatever known prefix ``reference`` has and apply ``site``'s."""
    if not reference or find_site(site) is None:
        return reference
    current = identify_site(reference)
    if current is not None:
        reference = reference[len(current.reference_prefix):]
    return add_reference_prefix(reference, site)
