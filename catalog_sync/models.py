"""Data models for scraped products and upload results."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

__all__ = [
    "ColorKind",
    "RawColor",
    "StagedImage",
    "ColorDescriptor",
    "ProductRecord",
    "OutcomeStatus",
    "RejectReason",
    "DeferredResult",
    "UploadOutcome",
    "BatchSummary",
]


def _now() -> str:
    return datetime.now().isoformat()


class ColorKind(str, Enum):
    """Color kinds understood by the remote API."""

    CODE = "code"
    IMAGE = "image"


@dataclass
class RawColor:
    """A color as it comes out of the scraper, before normalization.

    ``kind`` is kept as a plain string: scrapers emit ``code``, ``hex`` or
    ``image``, and anything else is treated as an anomaly downstream.
    """

    name: str = ""
    kind: str = ColorKind.CODE.value
    code: str = ""
    numeric_code: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_value(cls, value: Union[str, Dict[str, Any], "RawColor"]) -> "RawColor":
        """Build a RawColor from a plain color name or a scraped dict."""
        if isinstance(value, RawColor):
            return value
        if isinstance(value, str):
            return cls(name=value.strip())
        return cls(
            name=str(value.get("name") or ""),
            kind=str(value.get("kind") or ColorKind.CODE.value),
            code=str(value.get("code") or ""),
            numeric_code=value.get("numeric_code") or None,
            image_url=value.get("image_url") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "code": self.code,
            "numeric_code": self.numeric_code,
            "image_url": self.image_url,
        }


@dataclass
class StagedImage:
    """A local copy of a remote image, alive for exactly one request.

    ``owned`` is False when the source already was a local file; those are
    attached as-is and never deleted.
    """

    source_url: str
    local_path: Path
    created_at: datetime = field(default_factory=datetime.now)
    owned: bool = True

    @property
    def filename(self) -> str:
        return self.local_path.name


@dataclass
class ColorDescriptor:
    """Canonical, API-facing color."""

    name: str
    kind: ColorKind
    code: str = ""
    numeric_code: Optional[str] = None
    source_url: Optional[str] = None
    staged: Optional[StagedImage] = None


@dataclass
class ProductRecord:
    """A product scraped from a supplier catalog.

    ``reference`` is the upsert key and carries the site prefix (``SP-``,
    ``XB-``). A record needs at least one image and one color before any
    upload is attempted.
    """

    reference: str
    name: str
    description: str = ""
    price: Optional[Decimal] = None
    categories: List[str] = field(default_factory=list)
    colors: List[RawColor] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    extra_info: Optional[str] = None

    # Provenance
    url: Optional[str] = None
    site: Optional[str] = None
    scraped_at: str = field(default_factory=_now)

    def missing_fields(self) -> List[str]:
        """Return the required fields that are empty."""
        missing = []
        if not self.reference:
            missing.append("reference")
        if not self.name:
            missing.append("name")
        if not self.colors:
            missing.append("colors")
        if not self.images:
            missing.append("images")
        return missing

    def is_valid(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "name": self.name,
            "description": self.description,
            "price": str(self.price) if self.price is not None else None,
            "categories": list(self.categories),
            "colors": [c.to_dict() for c in self.colors],
            "images": list(self.images),
            "extra_info": self.extra_info,
            "url": self.url,
            "site": self.site,
            "scraped_at": self.scraped_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductRecord":
        price = data.get("price")
        if price in (None, ""):
            parsed_price = None
        else:
            try:
                parsed_price = Decimal(str(price))
            except InvalidOperation:
                parsed_price = None

        return cls(
            reference=str(data.get("reference") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            price=parsed_price,
            categories=[str(c) for c in data.get("categories") or []],
            colors=[RawColor.from_value(c) for c in data.get("colors") or []],
            images=[str(i) for i in data.get("images") or []],
            extra_info=data.get("extra_info") or None,
            url=data.get("url"),
            site=data.get("site"),
            scraped_at=data.get("scraped_at") or _now(),
        )


class OutcomeStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    FAILED = "failed"


class RejectReason(str, Enum):
    NO_IMAGES = "no-images"
    NO_VALID_IMAGES = "no-valid-images"
    INVALID_FIELDS = "invalid-fields"
    ALREADY_EXISTS_CONFLICT = "already-exists-conflict"


@dataclass
class DeferredResult:
    """Result of sending a product's remaining images in follow-up batches."""

    reference: str
    remote_id: str
    total: int
    processed: int = 0
    errors: int = 0
    batches: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "remote_id": self.remote_id,
            "total": self.total,
            "processed": self.processed,
            "errors": self.errors,
            "batches": self.batches,
        }


@dataclass
class UploadOutcome:
    """Result of one product upload.

    Exactly one of the status-specific fields is meaningful: ``remote_id`` for
    created/updated, ``reason`` for rejected/skipped, ``error`` for failed.

    Once images were staged, ``initial_images + initial_errors +
    remaining_images`` equals the product's image count.
    """

    reference: str
    status: OutcomeStatus
    remote_id: Optional[str] = None
    reason: Optional[RejectReason] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    retriable: bool = False
    retries_exhausted: bool = False
    attempts: int = 1
    initial_images: int = 0
    initial_errors: int = 0
    remaining_images: int = 0
    deferred: Optional[DeferredResult] = None
    timestamp: str = field(default_factory=_now)

    @classmethod
    def created(cls, reference: str, remote_id: Optional[str], **kwargs: Any) -> "UploadOutcome":
        return cls(reference=reference, status=OutcomeStatus.CREATED, remote_id=remote_id, **kwargs)

    @classmethod
    def updated(cls, reference: str, remote_id: Optional[str], **kwargs: Any) -> "UploadOutcome":
        return cls(reference=reference, status=OutcomeStatus.UPDATED, remote_id=remote_id, **kwargs)

    @classmethod
    def rejected(cls, reference: str, reason: RejectReason, **kwargs: Any) -> "UploadOutcome":
        return cls(reference=reference, status=OutcomeStatus.REJECTED, reason=reason, **kwargs)

    @classmethod
    def skipped(cls, reference: str, reason: RejectReason, **kwargs: Any) -> "UploadOutcome":
        return cls(reference=reference, status=OutcomeStatus.SKIPPED, reason=reason, **kwargs)

    @classmethod
    def failed(cls, reference: str, error: str, **kwargs: Any) -> "UploadOutcome":
        return cls(reference=reference, status=OutcomeStatus.FAILED, error=error, **kwargs)

    @property
    def success(self) -> bool:
        return self.status in (OutcomeStatus.CREATED, OutcomeStatus.UPDATED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "status": self.status.value,
            "remote_id": self.remote_id,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
            "status_code": self.status_code,
            "retriable": self.retriable,
            "retries_exhausted": self.retries_exhausted,
            "attempts": self.attempts,
            "initial_images": self.initial_images,
            "initial_errors": self.initial_errors,
            "remaining_images": self.remaining_images,
            "deferred": self.deferred.to_dict() if self.deferred else None,
            "timestamp": self.timestamp,
        }


@dataclass
class BatchSummary:
    """Aggregate of a scheduler run."""

    total: int = 0
    success: int = 0
    errors: int = 0
    skipped: int = 0
    batches: int = 0
    details: List[UploadOutcome] = field(default_factory=list)
    started_at: str = field(default_factory=_now)
    finished_at: Optional[str] = None

    def record(self, outcome: UploadOutcome) -> None:
        self.details.append(outcome)
        if outcome.success:
            self.success += 1
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    @property
    def deferred_results(self) -> List[DeferredResult]:
        return [o.deferred for o in self.details if o.deferred is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success,
            "errors": self.errors,
            "skipped": self.skipped,
            "batches": self.batches,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "details": [o.to_dict() for o in self.details],
        }
