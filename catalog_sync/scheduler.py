"""Batch scheduler: pushes a product list through the uploader in small,
strictly sequential batches with randomized pauses.
"""

import logging
import random
import time
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from catalog_sync.config import (
    BATCH_DELAY_MAX,
    BATCH_DELAY_MIN,
    PRODUCT_BATCH_SIZE,
    PRODUCT_DELAY_MAX,
    PRODUCT_DELAY_MIN,
)
from catalog_sync.deferred import partition
from catalog_sync.logging_config import get_logger, log_sync_event
from catalog_sync.models import BatchSummary, OutcomeStatus, ProductRecord, UploadOutcome
from catalog_sync.retry import RetryPolicy
from catalog_sync.uploader import ProductUploader

__all__ = ["BatchScheduler"]

logger = get_logger("scheduler")

ProgressCallback = Callable[[int, int, UploadOutcome], None]


class BatchScheduler:
    """Runs uploads one at a time, in batches of ``batch_size``.

    After each product, any deferred image work it produced is drained
    before the next product goes out. Failed uploads are retried according
    to ``policy``.
    """

    def __init__(
        self,
        uploader: ProductUploader,
        policy: Optional[RetryPolicy] = None,
        batch_size: int = PRODUCT_BATCH_SIZE,
        product_delay_range: Tuple[float, float] = (PRODUCT_DELAY_MIN, PRODUCT_DELAY_MAX),
        batch_delay_range: Tuple[float, float] = (BATCH_DELAY_MIN, BATCH_DELAY_MAX),
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        continue_on_error: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.uploader = uploader
        self.rng = rng or random.Random()
        self.policy = policy or RetryPolicy(rng=self.rng)
        self.batch_size = batch_size
        self.product_delay_range = product_delay_range
        self.batch_delay_range = batch_delay_range
        self.sleep = sleep
        self.continue_on_error = continue_on_error
        self.on_progress = on_progress

    def run_all(self, products: List[ProductRecord]) -> BatchSummary:
        """Upload every product and return the aggregated summary."""
        batches = partition(products, self.batch_size)
        summary = BatchSummary(total=len(products), batches=len(batches))
        start = time.time()

        logger.info(f"Uploading {len(products)} products in {len(batches)} batches of up to {self.batch_size}")

        done = 0
        stopped = False
        for number, batch in enumerate(batches, start=1):
            log_sync_event("batch_start", {
                "message": f"Batch {number}/{len(batches)}: {len(batch)} products",
                "batch": number,
                "batches": len(batches),
                "references": [p.reference for p in batch],
            })

            for position, product in enumerate(batch):
                outcome = self.upload_with_retry(product)
                self._attach_deferred(outcome)
                summary.record(outcome)
                done += 1

                if self.on_progress:
                    self.on_progress(done, len(products), outcome)

                if not self.continue_on_error and outcome.status == OutcomeStatus.FAILED:
                    logger.error(f"Stopping run after failure of {product.reference}")
                    stopped = True
                    break

                if position < len(batch) - 1:
                    self.sleep(self.rng.uniform(*self.product_delay_range))

            log_sync_event("batch_complete", {
                "message": f"Batch {number}/{len(batches)} complete "
                           f"({summary.success} ok, {summary.errors} errors so far)",
                "batch": number,
                "success": summary.success,
                "errors": summary.errors,
                "skipped": summary.skipped,
            })

            if stopped:
                break
            if number < len(batches):
                delay = self.rng.uniform(*self.batch_delay_range)
                logger.info(f"Pausing {delay:.1f}s before next batch")
                self.sleep(delay)

        summary.finished_at = datetime.now().isoformat()
        log_sync_event("run_complete", {
            "message": f"Run complete: {summary.success}/{summary.total} uploaded, "
                       f"{summary.errors} errors, {summary.skipped} skipped "
                       f"in {time.time() - start:.1f}s",
            "total": summary.total,
            "success": summary.success,
            "errors": summary.errors,
            "skipped": summary.skipped,
            "batches": summary.batches,
        })
        return summary

    def upload_with_retry(self, product: ProductRecord) -> UploadOutcome:
        """Upload one product, retrying transient failures."""
        attempt = 0
        while True:
            outcome = self.uploader.upload(product)
            outcome.attempts = attempt + 1

            decision = self.policy.decide(outcome, attempt)
            if not decision.retry:
                if outcome.status == OutcomeStatus.FAILED and outcome.retriable:
                    outcome.retries_exhausted = True
                    logger.error(f"{product.reference}: giving up after {outcome.attempts} attempts")
                return outcome

            if decision.rotate_identity:
                self.uploader.client.session.rotate_user_agent()

            log_sync_event("retry_scheduled", {
                "message": f"{product.reference}: {decision.reason}, "
                           f"retry {attempt + 1}/{self.policy.max_retries} in {decision.delay:.1f}s",
                "reference": product.reference,
                "attempt": attempt + 1,
                "delay": round(decision.delay, 2),
                "status_code": outcome.status_code,
                "rotate_identity": decision.rotate_identity,
            }, level=logging.WARNING)
            self.sleep(decision.delay)
            attempt += 1

    def _attach_deferred(self, outcome: UploadOutcome) -> None:
        for result in self.uploader.deferred.drain():
            if result.reference == outcome.reference:
                outcome.deferred = result
