"""Existence lookup of products by reference."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests  # type: ignore[import-untyped]

from catalog_sync.api_client import ApiClient, AuthenticationError
from catalog_sync.logging_config import get_logger

__all__ = ["ExistenceResult", "ExistenceResolver"]

logger = get_logger("resolver")


@dataclass
class ExistenceResult:
    found: bool
    remote_id: Optional[str] = None
    remote_data: Dict[str, Any] = field(default_factory=dict)


class ExistenceResolver:
    """Decides create vs. update by fetching ``/product/{reference}``.

    404 is the normal "not found" answer. Any other failure is logged and
    reported as not found: a possible duplicate create is preferred over
    stalling the whole run on a flaky lookup.
    """

    def __init__(self, client: ApiClient):
        self.client = client

    def exists(self, reference: str) -> ExistenceResult:
        try:
            resp = self.client.get_product(reference)
        except (requests.exceptions.RequestException, AuthenticationError) as e:
            logger.warning(f"Existence check for {reference} failed ({e}); assuming new product")
            return ExistenceResult(found=False)

        if resp.status_code == 404:
            logger.debug(f"Product {reference} not found remotely")
            return ExistenceResult(found=False)

        if not resp.ok:
            logger.warning(
                f"Existence check for {reference} returned HTTP {resp.status_code}; assuming new product"
            )
            return ExistenceResult(found=False)

        try:
            body = resp.json()
        except ValueError:
            logger.warning(f"Existence check for {reference} returned a non-JSON body; assuming new product")
            return ExistenceResult(found=False)

        remote_id = body.get("id") if isinstance(body, dict) else None
        if remote_id is None:
            logger.warning(f"Existence check for {reference} returned no id; assuming new product")
            return ExistenceResult(found=False)

        logger.info(f"Product {reference} already exists (id {remote_id})")
        return ExistenceResult(found=True, remote_id=str(remote_id), remote_data=body)
