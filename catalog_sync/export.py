"""JSON/CSV export of scraped products and upload summaries, and loading of
previously exported product files.
"""

import csv
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from catalog_sync.logging_config import get_logger
from catalog_sync.models import BatchSummary, ProductRecord

__all__ = [
    "EXPORT_VERSION",
    "CSV_FIELDS",
    "timestamped_path",
    "save_products_json",
    "load_products",
    "save_products_csv",
    "save_summary_json",
]

logger = get_logger("export")

EXPORT_VERSION = "1.0.0"

CSV_FIELDS = [
    "reference",
    "name",
    "description",
    "price",
    "categories",
    "colors",
    "images",
    "extra_info",
    "url",
    "site",
    "scraped_at",
]

# Keys used by files exported under the "produtos" layout
LEGACY_KEYS = {
    "referencia": "reference",
    "nome": "name",
    "descricao": "description",
    "preco": "price",
    "categorias": "categories",
    "cores": "colors",
    "imagens": "images",
    "informacoes_adicionais": "extra_info",
    "url_produto": "url",
    "site_origem": "site",
    "data_extracao": "scraped_at",
}

LEGACY_COLOR_KEYS = {
    "nome": "name",
    "tipo": "kind",
    "codigo": "code",
    "codigoNumerico": "numeric_code",
    "imagemCompleta": "image_url",
}

PathLike = Union[str, Path]


def timestamped_path(directory: PathLike, stem: str, suffix: str) -> Path:
    """``<directory>/<stem>_<YYYYmmdd_HHMMSS><suffix>`` with a filesystem-safe stem."""
    safe = re.sub(r"[^A-Za-z0-9]+", "_", stem).strip("_").lower() or "export"
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path(directory) / f"{safe}_{stamp}{suffix}"


def save_products_json(
    products: Iterable[ProductRecord], path: PathLike, site: Optional[str] = None
) -> Path:
    """Write products with a metadata header."""
    items = [p.to_dict() for p in products]
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "metadata": {
            "site": site,
            "total_products": len(items),
            "exported_at": datetime.now().isoformat(),
            "version": EXPORT_VERSION,
        },
        "products": items,
    }
    with open(out, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    logger.info(f"Saved {len(items)} products to {out}")
    return out


def _from_legacy(item: Dict[str, Any]) -> Dict[str, Any]:
    converted = {LEGACY_KEYS.get(k, k): v for k, v in item.items()}
    colors = []
    for color in converted.get("colors") or []:
        if isinstance(color, dict):
            kind = color.get("tipo")
            color = {LEGACY_COLOR_KEYS.get(k, k): v for k, v in color.items()}
            if kind == "imagem":
                color["kind"] = "image"
        colors.append(color)
    converted["colors"] = colors
    return converted


def load_products(path: PathLike) -> List[ProductRecord]:
    """Load products from a JSON file.

    Accepts a plain list, ``{"products": [...]}`` or ``{"produtos": [...]}``.

    Raises:
        ValueError: If the file holds none of these layouts
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and isinstance(data.get("products"), list):
        items = data["products"]
    elif isinstance(data, dict) and isinstance(data.get("produtos"), list):
        items = [_from_legacy(item) for item in data["produtos"]]
    else:
        raise ValueError(f"{path}: expected a product list, 'products' or 'produtos'")

    products = [ProductRecord.from_dict(item) for item in items if isinstance(item, dict)]
    logger.info(f"Loaded {len(products)} products from {path}")
    return products


def _product_row(product: ProductRecord) -> Dict[str, str]:
    return {
        "reference": product.reference,
        "name": product.name,
        "description": product.description,
        "price": str(product.price) if product.price is not None else "",
        "categories": "; ".join(product.categories),
        "colors": "; ".join(c.name for c in product.colors if c.name),
        "images": "; ".join(product.images),
        "extra_info": product.extra_info or "",
        "url": product.url or "",
        "site": product.site or "",
        "scraped_at": product.scraped_at,
    }


def save_products_csv(products: Iterable[ProductRecord], path: PathLike) -> Path:
    """Write one row per product, list fields joined with ``"; "``."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    rows = [_product_row(p) for p in products]
    with open(out, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
    logger.info(f"Saved {len(rows)} products to {out}")
    return out


def save_summary_json(summary: BatchSummary, path: PathLike) -> Path:
    """Write a run summary with per-product details."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(summary.to_dict(), f, ensure_ascii=False, indent=2)
    logger.info(f"Saved run summary to {out}")
    return out
