"""URL sanitization and validation for scraped image sources."""

import re
from typing import Optional
from urllib.parse import urljoin, urlparse

__all__ = [
    "URLValidationError",
    "sanitize_url",
    "absolute_url",
    "validate_image_source",
    "is_remote",
]


class URLValidationError(Exception):
    """Raised when URL validation fails."""
    pass


# Dangerous URL schemes to reject
DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

SUSPICIOUS_PATTERNS = [
    r"\.\./",            # Path traversal
    r"%2e%2e",           # Encoded path traversal
    r"<script",          # XSS attempt
]


def sanitize_url(url: Optional[str]) -> str:
    """Strip whitespace and control characters from a URL."""
    if not url:
        return ""
    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    return url.replace("%00", "")


def absolute_url(base_url: str, src: Optional[str]) -> str:
    """Resolve a possibly relative ``src`` against the page's base URL.

    ``//cdn/x.jpg``, ``/x.jpg`` and ``x.jpg`` all become absolute.
    """
    src = sanitize_url(src)
    if not src:
        return ""
    if src.startswith(("http://", "https://")):
        return src
    if not base_url.endswith("/") and not src.startswith("/"):
        base_url = base_url + "/"
    return urljoin(base_url, src)


def is_remote(source: str) -> bool:
    """True when the source is an http(s) URL rather than a local path."""
    return urlparse(source).scheme.lower() in ("http", "https")


def validate_image_source(url: str) -> str:
    """Validate an image URL before it is downloaded.

    Args:
        url: Image URL to validate

    Returns:
        Sanitized URL

    Raises:
        URLValidationError: If the URL is empty, uses a forbidden scheme or
            looks like an injection attempt
    """
    url = sanitize_url(url)
    if not url:
        raise URLValidationError("Image URL is empty")

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme in image: {scheme}")
    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid image URL scheme: {scheme or '<none>'}")
    if not parsed.netloc:
        raise URLValidationError("Image URL has no domain")

    url_lower = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, url_lower):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern}")

    return url
