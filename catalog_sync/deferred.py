"""Deferred image batches.

Images that do not fit in a product's initial request are sent afterwards in
small update requests, one batch at a time, with a randomized pause between
batches and a longer one after an intrusion-detection rejection.
"""

import random
import time
from collections import deque
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Sequence, Tuple, TypeVar

import requests  # type: ignore[import-untyped]

from catalog_sync.api_client import ApiClient, AuthenticationError
from catalog_sync.config import (
    BLOCK_DELAY_MAX,
    BLOCK_DELAY_MIN,
    DEFERRED_BATCH_SIZE,
    DEFERRED_DELAY_MAX,
    DEFERRED_DELAY_MIN,
    INTRUSION_BLOCK_STATUS,
)
from catalog_sync.logging_config import get_logger, log_sync_event
from catalog_sync.models import DeferredResult
from catalog_sync.transfer import DownloadError, ImageTransfer, MultipartFile

__all__ = [
    "DeferredJob",
    "DeferredImageProcessor",
    "DeferredImageQueue",
    "partition",
]

logger = get_logger("deferred")

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> List[List[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class DeferredJob:
    """Remaining images of one product, waiting to be sent."""

    reference: str
    remote_id: str
    images: List[str]
    # Position of images[0] in the product's full image list
    start_index: int = 0


class DeferredImageProcessor:
    """Sends remaining images in small, paced update requests."""

    def __init__(
        self,
        client: ApiClient,
        transfer: ImageTransfer,
        batch_size: int = DEFERRED_BATCH_SIZE,
        delay_range: Tuple[float, float] = (DEFERRED_DELAY_MIN, DEFERRED_DELAY_MAX),
        block_delay_range: Tuple[float, float] = (BLOCK_DELAY_MIN, BLOCK_DELAY_MAX),
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.transfer = transfer
        self.batch_size = batch_size
        self.delay_range = delay_range
        self.block_delay_range = block_delay_range
        self.sleep = sleep
        self.rng = rng or random.Random()

    def process_remaining(
        self,
        remote_id: str,
        images: List[str],
        batch_size: Optional[int] = None,
        reference: str = "",
        start_index: int = 0,
    ) -> DeferredResult:
        """Send ``images`` to product ``remote_id`` batch by batch.

        A failed batch does not stop the following ones. Every image ends up
        counted exactly once, so ``processed + errors == total``.
        """
        batches = partition(images, batch_size or self.batch_size)
        result = DeferredResult(reference=reference, remote_id=str(remote_id), total=len(images))

        if batches:
            logger.info(f"{reference or remote_id}: sending {len(images)} remaining images in {len(batches)} batches")

        index = start_index
        for number, batch in enumerate(batches, start=1):
            processed, errors, status = self._send_batch(remote_id, reference, batch, index)
            index += len(batch)
            result.processed += processed
            result.errors += errors
            result.batches += 1

            log_sync_event("deferred_batch", {
                "message": f"{reference or remote_id}: batch {number}/{len(batches)} "
                           f"sent {processed}, failed {errors}",
                "reference": reference,
                "remote_id": str(remote_id),
                "batch": number,
                "processed": processed,
                "errors": errors,
                "status_code": status,
            })

            # A block on the last batch still backs off, before the next product goes out
            delay = self.rng.uniform(*self.delay_range) if number < len(batches) else 0.0
            if status == INTRUSION_BLOCK_STATUS:
                extra = self.rng.uniform(*self.block_delay_range)
                logger.warning(
                    f"{reference or remote_id}: batch {number} blocked by intrusion detection, "
                    f"backing off an extra {extra:.1f}s"
                )
                delay += extra
            if delay:
                self.sleep(delay)

        return result

    def _send_batch(
        self, remote_id: str, reference: str, batch: List[str], first_index: int
    ) -> Tuple[int, int, Optional[int]]:
        """Stage and send one batch.

        Returns:
            (images processed, images failed, HTTP status or None)
        """
        key = reference or str(remote_id)
        with ExitStack() as stack:
            files: List[MultipartFile] = []
            failed = 0
            for offset, url in enumerate(batch):
                position = first_index + offset
                try:
                    staged = self.transfer.stage_into(stack, url, key, position)
                except DownloadError as e:
                    logger.warning(f"{key}: image {position} not staged: {e}")
                    failed += 1
                    continue
                files.append(self.transfer.attach(staged, f"images[{position}]", stack))

            if not files:
                return 0, failed, None

            data = [("reference", reference), ("append_images", "1")]
            try:
                resp = self.client.update_product(remote_id, data, files)
            except (requests.exceptions.RequestException, AuthenticationError) as e:
                logger.error(f"{key}: deferred batch failed: {e}")
                return 0, len(batch), None

        if resp.ok:
            return len(files), failed, resp.status_code

        logger.error(f"{key}: deferred batch rejected with HTTP {resp.status_code}")
        return 0, len(batch), resp.status_code


class DeferredImageQueue:
    """FIFO of deferred jobs.

    The orchestrator enqueues and returns its outcome straight away; whoever
    drives the run drains the queue before the next product goes out, so no
    two requests are ever in flight together.
    """

    def __init__(self, processor: DeferredImageProcessor):
        self.processor = processor
        self._jobs: Deque[DeferredJob] = deque()

    def enqueue(self, job: DeferredJob) -> None:
        logger.debug(f"{job.reference}: {len(job.images)} images deferred")
        self._jobs.append(job)

    def __len__(self) -> int:
        return len(self._jobs)

    def drain(self) -> List[DeferredResult]:
        """Process every pending job in order."""
        results: List[DeferredResult] = []
        while self._jobs:
            job = self._jobs.popleft()
            result = self.processor.process_remaining(
                job.remote_id,
                job.images,
                reference=job.reference,
                start_index=job.start_index,
            )
            if result.errors:
                logger.warning(
                    f"{job.reference}: {result.errors}/{result.total} deferred images failed"
                )
            else:
                logger.info(f"{job.reference}: all {result.total} deferred images sent")
            results.append(result)
        return results
