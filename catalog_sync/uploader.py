"""Product upload orchestration: validate, route to create or update, send
the initial image budget and hand the rest to the deferred queue.
"""

from contextlib import ExitStack
from typing import Any, List, Optional, Tuple

import requests  # type: ignore[import-untyped]

from catalog_sync.api_client import ApiClient, AuthenticationError, FormFields
from catalog_sync.colors import ColorNormalizer, describe_colors
from catalog_sync.config import INITIAL_IMAGE_COUNT, INTRUSION_BLOCK_STATUS, RATE_LIMIT_STATUS
from catalog_sync.deferred import DeferredImageProcessor, DeferredImageQueue, DeferredJob
from catalog_sync.logging_config import get_logger, log_sync_event
from catalog_sync.models import (
    ColorDescriptor,
    ColorKind,
    ProductRecord,
    RejectReason,
    UploadOutcome,
)
from catalog_sync.resolver import ExistenceResolver
from catalog_sync.transfer import DownloadError, ImageTransfer, MultipartFile

__all__ = [
    "ProductUploader",
    "build_form_fields",
    "SERVER_ERROR_REASONS",
]

logger = get_logger("uploader")

# Error codes the API puts in the body of a 400 response
SERVER_ERROR_REASONS = {
    "missing_required_field": RejectReason.INVALID_FIELDS,
    "invalid_field": RejectReason.INVALID_FIELDS,
    "missing_colors": RejectReason.INVALID_FIELDS,
    "missing_image": RejectReason.NO_VALID_IMAGES,
    "invalid_image": RejectReason.NO_VALID_IMAGES,
}


def build_form_fields(product: ProductRecord, colors: List[ColorDescriptor]) -> FormFields:
    """Text fields of the multipart body, arrays as indexed field names."""
    fields: FormFields = [
        ("reference", product.reference),
        ("name", product.name),
        ("description", product.description or ""),
        ("price", str(product.price) if product.price is not None else ""),
        ("extra_info", product.extra_info or ""),
    ]
    for i, category in enumerate(product.categories):
        fields.append((f"categories[{i}]", category))
    for i, color in enumerate(colors):
        fields.append((f"colors[{i}][name]", color.name))
        fields.append((f"colors[{i}][kind]", color.kind.value))
        fields.append((f"colors[{i}][code]", color.code or ""))
        if color.numeric_code:
            fields.append((f"colors[{i}][numeric_code]", color.numeric_code))
    return fields


def _error_payload(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text[:500]


class ProductUploader:
    """Create-or-update state machine for a single product.

    At most ``initial_image_count`` images travel with the create/update
    request; larger bodies trip the server's Mod_Security rules. Remaining
    images are queued on ``deferred`` and do not affect the outcome.
    """

    def __init__(
        self,
        client: ApiClient,
        transfer: ImageTransfer,
        resolver: Optional[ExistenceResolver] = None,
        normalizer: Optional[ColorNormalizer] = None,
        deferred: Optional[DeferredImageQueue] = None,
        initial_image_count: int = INITIAL_IMAGE_COUNT,
    ):
        if initial_image_count < 1:
            raise ValueError("initial_image_count must be at least 1")
        self.client = client
        self.transfer = transfer
        self.resolver = resolver or ExistenceResolver(client)
        self.normalizer = normalizer or ColorNormalizer(transfer)
        self.deferred = deferred or DeferredImageQueue(DeferredImageProcessor(client, transfer))
        self.initial_image_count = initial_image_count

    def upload(self, product: ProductRecord) -> UploadOutcome:
        """Upload one product and return its outcome. Never raises for
        network or API failures."""
        outcome = self._upload(product)
        log_sync_event("product_upload", {
            "message": f"{product.reference}: {outcome.status.value}"
                       + (f" ({outcome.reason.value})" if outcome.reason else "")
                       + (f" - {outcome.error}" if outcome.error else ""),
            **outcome.to_dict(),
        })
        return outcome

    def _upload(self, product: ProductRecord) -> UploadOutcome:
        if not product.images:
            return UploadOutcome.skipped(product.reference, RejectReason.NO_IMAGES, error="product has no images")

        missing = product.missing_fields()
        if missing:
            return UploadOutcome.rejected(
                product.reference,
                RejectReason.INVALID_FIELDS,
                error=f"missing fields: {', '.join(missing)}",
            )

        existing = self.resolver.exists(product.reference)
        try:
            return self._send(product, existing.remote_id if existing.found else None)
        except AuthenticationError as e:
            return UploadOutcome.failed(product.reference, str(e))
        except requests.exceptions.Timeout as e:
            return UploadOutcome.failed(product.reference, f"timeout: {e}", retriable=True)
        except requests.exceptions.RequestException as e:
            return UploadOutcome.failed(product.reference, f"network error: {e}", retriable=True)

    def _stage_initial_images(
        self, product: ProductRecord, stack: ExitStack
    ) -> Tuple[List[MultipartFile], int, int]:
        """Stage up to the initial budget of images, skipping ones that fail.

        Returns:
            (attached files, images that failed, index of the first image not consumed)
        """
        files: List[MultipartFile] = []
        failed = 0
        index = 0
        while index < len(product.images) and len(files) < self.initial_image_count:
            url = product.images[index]
            try:
                staged = self.transfer.stage_into(stack, url, product.reference, index)
                files.append(self.transfer.attach(staged, f"images[{len(files)}]", stack))
            except DownloadError as e:
                logger.warning(f"{product.reference}: image {index} not staged: {e}")
                failed += 1
            index += 1
        return files, failed, index

    def _send(self, product: ProductRecord, remote_id: Optional[str]) -> UploadOutcome:
        action = "update" if remote_id else "create"

        with ExitStack() as stack:
            colors = self.normalizer.normalize(product.colors, stack, product.reference)
            image_files, failed, next_index = self._stage_initial_images(product, stack)
            if not image_files:
                return UploadOutcome.rejected(
                    product.reference,
                    RejectReason.NO_VALID_IMAGES,
                    error="none of the product images could be downloaded",
                    initial_errors=failed,
                )

            files = list(image_files)
            for i, color in enumerate(colors):
                if color.kind == ColorKind.IMAGE and color.staged is not None:
                    files.append(self.transfer.attach(color.staged, f"color_images[{i}]", stack))

            data = build_form_fields(product, colors)
            logger.info(
                f"{product.reference}: {action} with {len(image_files)} images, "
                f"colors {describe_colors(colors)}"
            )
            if remote_id:
                resp = self.client.update_product(remote_id, data, files)
            else:
                resp = self.client.create_product(data, files)

        remaining = product.images[next_index:]
        outcome = self._interpret(product, resp, remote_id)
        outcome.initial_images = len(image_files)
        outcome.initial_errors = failed
        outcome.remaining_images = len(remaining)

        if outcome.success and remaining:
            if outcome.remote_id:
                self.deferred.enqueue(DeferredJob(
                    reference=product.reference,
                    remote_id=outcome.remote_id,
                    images=remaining,
                    start_index=next_index,
                ))
            else:
                logger.warning(f"{product.reference}: no product id in response, {len(remaining)} images not sent")

        return outcome

    def _interpret(
        self, product: ProductRecord, resp: requests.Response, remote_id: Optional[str]
    ) -> UploadOutcome:
        reference = product.reference
        status = resp.status_code

        if resp.ok:
            body = _error_payload(resp)
            new_id = body.get("id") if isinstance(body, dict) else None
            resolved_id = str(new_id) if new_id is not None else remote_id
            if remote_id:
                return UploadOutcome.updated(reference, resolved_id, status_code=status)
            return UploadOutcome.created(reference, resolved_id, status_code=status)

        payload = _error_payload(resp)

        if status == 400:
            code = payload.get("code") if isinstance(payload, dict) else None
            reason = SERVER_ERROR_REASONS.get(code or "", RejectReason.INVALID_FIELDS)
            message = payload.get("message") if isinstance(payload, dict) else payload
            return UploadOutcome.rejected(reference, reason, error=str(message or code), status_code=status)

        if status == 409:
            logger.warning(f"{reference}: create raced with an existing product (409)")
            return UploadOutcome.rejected(
                reference, RejectReason.ALREADY_EXISTS_CONFLICT, error=str(payload), status_code=status
            )

        if status == INTRUSION_BLOCK_STATUS:
            return UploadOutcome.failed(
                reference, "blocked by intrusion detection", status_code=status, retriable=True
            )

        if status == RATE_LIMIT_STATUS:
            return UploadOutcome.failed(reference, "rate limited", status_code=status, retriable=True)

        if status >= 500:
            return UploadOutcome.failed(
                reference, f"server error: {payload}", status_code=status, retriable=True
            )

        return UploadOutcome.failed(reference, f"HTTP {status}: {payload}", status_code=status)
