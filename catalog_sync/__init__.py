"""Supplier catalog scraper and catalog API upload pipeline."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from catalog_sync.api_client import ApiClient, ApiSession, AuthenticationError
from catalog_sync.config import API_BASE_URL, DB_PATH, INITIAL_IMAGE_COUNT
from catalog_sync.models import (
    BatchSummary,
    ColorDescriptor,
    DeferredResult,
    OutcomeStatus,
    ProductRecord,
    RawColor,
    RejectReason,
    UploadOutcome,
)
from catalog_sync.scheduler import BatchScheduler
from catalog_sync.sites import SITES, get_site
from catalog_sync.sync import SyncManager
from catalog_sync.uploader import ProductUploader

__all__ = [
    # Version
    "__version__",
    # Config
    "API_BASE_URL",
    "DB_PATH",
    "INITIAL_IMAGE_COUNT",
    "SITES",
    "get_site",
    # Models
    "ProductRecord",
    "RawColor",
    "ColorDescriptor",
    "UploadOutcome",
    "OutcomeStatus",
    "RejectReason",
    "DeferredResult",
    "BatchSummary",
    # Pipeline
    "ApiClient",
    "ApiSession",
    "AuthenticationError",
    "ProductUploader",
    "BatchScheduler",
    "SyncManager",
]
