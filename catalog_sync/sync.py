"""Sync manager: connects scraped products to the upload pipeline and keeps
the local run history.
"""

import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from catalog_sync.api_client import ApiClient
from catalog_sync.config import DB_PATH, INITIAL_IMAGE_COUNT, OUTPUT_DIR, PRODUCT_BATCH_SIZE
from catalog_sync.db import get_sync_stats, init_db, record_outcomes, record_run
from catalog_sync.export import load_products, save_summary_json, timestamped_path
from catalog_sync.logging_config import get_logger
from catalog_sync.models import BatchSummary, ProductRecord, RejectReason, UploadOutcome
from catalog_sync.scheduler import BatchScheduler
from catalog_sync.transfer import ImageTransfer
from catalog_sync.uploader import ProductUploader

__all__ = [
    "SyncError",
    "SyncManager",
    "remove_duplicates",
    "format_duration",
]

logger = get_logger("sync")


class SyncError(Exception):
    """Raised when the sync pipeline cannot start."""
    pass


def remove_duplicates(products: Iterable[ProductRecord]) -> List[ProductRecord]:
    """Keep the first product per reference; drop products without one."""
    seen = set()
    unique = []
    for product in products:
        if product.reference and product.reference not in seen:
            seen.add(product.reference)
            unique.append(product)
    return unique


def format_duration(seconds: float) -> str:
    """Format seconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class SyncManager:
    """Validates, de-duplicates and uploads products, then records the run."""

    def __init__(
        self,
        client: Optional[ApiClient] = None,
        scheduler: Optional[BatchScheduler] = None,
        db_path: str = DB_PATH,
        output_dir: str = OUTPUT_DIR,
        batch_size: int = PRODUCT_BATCH_SIZE,
        initial_image_count: int = INITIAL_IMAGE_COUNT,
        validate_before_sync: bool = True,
        save_summaries: bool = True,
    ):
        self.client = client or ApiClient()
        if scheduler is None:
            transfer = ImageTransfer(session=self.client.http, identity=lambda: self.client.session.user_agent)
            uploader = ProductUploader(self.client, transfer, initial_image_count=initial_image_count)
            scheduler = BatchScheduler(uploader, batch_size=batch_size)
        self.scheduler = scheduler
        self.db_path = db_path
        self.output_dir = output_dir
        self.validate_before_sync = validate_before_sync
        self.save_summaries = save_summaries

    def initialize(self) -> Dict[str, Any]:
        """Check API connectivity and prepare the local store.

        Raises:
            SyncError: If the API self-test fails
        """
        logger.info("Initializing sync manager...")
        result = self.client.test_connection()
        if not result.get("success"):
            raise SyncError(f"API connection failed: {result.get('error')}")
        init_db(self.db_path)
        logger.info("Sync manager ready")
        return result

    def sync_products(self, products: Iterable[ProductRecord], source: str = "manual") -> BatchSummary:
        """Upload ``products`` and persist every outcome and the run itself."""
        products = list(products)
        candidates = products
        invalid: List[UploadOutcome] = []
        if self.validate_before_sync:
            candidates = []
            for product in products:
                missing = product.missing_fields()
                if missing:
                    logger.warning(f"Skipping {product.reference or '<no reference>'}: missing {', '.join(missing)}")
                    reason = RejectReason.NO_IMAGES if "images" in missing else RejectReason.INVALID_FIELDS
                    invalid.append(UploadOutcome.skipped(
                        product.reference, reason, error=f"missing fields: {', '.join(missing)}", attempts=0
                    ))
                    continue
                candidates.append(product)

        unique = remove_duplicates(candidates)
        if len(unique) < len(candidates):
            logger.info(f"Removed {len(candidates) - len(unique)} duplicate references")
        logger.info(f"{len(unique)} of {len(products)} products queued for upload from {source}")

        start = time.time()
        summary = self.scheduler.run_all(unique)
        elapsed = time.time() - start
        for outcome in invalid:
            summary.total += 1
            summary.record(outcome)

        init_db(self.db_path)
        record_outcomes(self.db_path, [o for o in summary.details if o.reference])
        record_run(self.db_path, source, summary)

        if self.save_summaries and summary.total:
            save_summary_json(summary, timestamped_path(self.output_dir, f"sync_{source}", ".json"))

        logger.info(
            f"Upload finished in {format_duration(elapsed)}: "
            f"{summary.success} uploaded, {summary.errors} errors, {summary.skipped} skipped"
        )
        if summary.errors:
            logger.warning(f"{summary.errors} products failed to upload")
        return summary

    def sync_file(self, path: str) -> BatchSummary:
        """Upload the products of an exported JSON file."""
        products = load_products(path)
        return self.sync_products(products, source=Path(path).stem)

    def stats(self) -> Dict[str, Any]:
        init_db(self.db_path)
        return get_sync_stats(self.db_path)
