"""Image transfer: download remote images to staging files and attach them
to multipart requests.

Every staged file is owned by the ``ImageTransfer`` that created it and is
released deterministically when the consuming request is done, whether the
request succeeded or not.
"""

import itertools
import mimetypes
import re
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Tuple
from urllib.parse import urlparse

import requests  # type: ignore[import-untyped]

from catalog_sync.config import DOWNLOAD_TIMEOUT, STAGING_DIR, USER_AGENTS
from catalog_sync.logging_config import get_logger
from catalog_sync.models import StagedImage
from catalog_sync.urls import URLValidationError, is_remote, validate_image_source

__all__ = [
    "DownloadError",
    "ImageTransfer",
    "MultipartFile",
]

logger = get_logger("transfer")

# (field name, (filename, file handle, content type)) as requests expects it
MultipartFile = Tuple[str, Tuple[str, BinaryIO, str]]

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif"}


class DownloadError(Exception):
    """Raised when an image cannot be staged locally."""

    def __init__(
        self,
        url: str,
        status_code: Optional[int] = None,
        timeout: bool = False,
        message: Optional[str] = None,
    ):
        self.url = url
        self.status_code = status_code
        self.timeout = timeout
        if message is None:
            if timeout:
                message = "timed out"
            elif status_code is not None:
                message = f"HTTP {status_code}"
            else:
                message = "download failed"
        super().__init__(f"{message}: {url}")


def _safe_key(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", key).strip("_") or "image"


class ImageTransfer:
    """Stages remote images as temporary files for multipart uploads."""

    def __init__(
        self,
        staging_dir: str = STAGING_DIR,
        session: Optional[requests.Session] = None,
        timeout: float = DOWNLOAD_TIMEOUT,
        user_agent: Optional[str] = None,
        identity: Optional[Callable[[], str]] = None,
    ):
        """
        Args:
            user_agent: Fixed User-Agent for downloads
            identity: Returns the current User-Agent; takes precedence over
                ``user_agent`` so downloads follow identity rotation
        """
        self.staging_dir = Path(staging_dir)
        self.http = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent or USER_AGENTS[0]
        self.identity = identity
        self._sequence = itertools.count(1)

    def current_user_agent(self) -> str:
        return self.identity() if self.identity else self.user_agent

    def _staging_path(self, key: str, index: int, url: str, content_type: Optional[str]) -> Path:
        """Unique path derived from the key and index.

        The per-instance sequence number keeps two stagings of the same
        key/index (e.g. a retry while the first file is still open) apart.
        """
        suffix = Path(urlparse(url).path).suffix.lower()
        if suffix not in IMAGE_EXTENSIONS:
            guessed = mimetypes.guess_extension((content_type or "").split(";")[0].strip())
            suffix = guessed if guessed in IMAGE_EXTENSIONS else ".jpg"
        return self.staging_dir / f"{_safe_key(key)}_{index}_{next(self._sequence)}{suffix}"

    def download(self, source_url: str, key: str, index: int = 0) -> StagedImage:
        """Download ``source_url`` into the staging directory.

        Local paths are accepted as-is and are not owned by the transfer unit.

        Raises:
            DownloadError: On invalid URL, timeout, network error, non-2xx
                status or empty body
        """
        if not is_remote(source_url):
            path = Path(source_url)
            if path.is_file():
                return StagedImage(source_url=source_url, local_path=path, owned=False)

        try:
            url = validate_image_source(source_url)
        except URLValidationError as e:
            raise DownloadError(source_url, message=str(e)) from e

        try:
            resp = self.http.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.current_user_agent()},
            )
        except requests.exceptions.Timeout as e:
            raise DownloadError(url, timeout=True) from e
        except requests.exceptions.RequestException as e:
            raise DownloadError(url, message=str(e)) from e

        if not 200 <= resp.status_code < 300:
            raise DownloadError(url, status_code=resp.status_code)
        if not resp.content:
            raise DownloadError(url, status_code=resp.status_code, message="empty body")

        path = self._staging_path(key, index, url, resp.headers.get("Content-Type"))
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(resp.content)
        logger.debug(f"Staged {url} -> {path} ({len(resp.content)} bytes)")

        return StagedImage(source_url=source_url, local_path=path)

    @contextmanager
    def stage(self, source_url: str, key: str, index: int = 0) -> Iterator[StagedImage]:
        """Download an image and release it when the block exits."""
        staged = self.download(source_url, key, index)
        try:
            yield staged
        finally:
            self.release(staged)

    def stage_into(self, stack: ExitStack, source_url: str, key: str, index: int = 0) -> StagedImage:
        """Stage an image whose lifetime is bound to ``stack``."""
        return stack.enter_context(self.stage(source_url, key, index))

    def attach(self, staged: StagedImage, field_name: str, stack: ExitStack) -> MultipartFile:
        """Open a staged file for a multipart request.

        The handle is closed by ``stack``; it must be the same stack (or an
        inner one) that owns the staged file.
        """
        handle = stack.enter_context(open(staged.local_path, "rb"))
        content_type = mimetypes.guess_type(staged.filename)[0] or "application/octet-stream"
        return (field_name, (staged.filename, handle, content_type))

    def release(self, staged: StagedImage) -> None:
        """Delete a staged file. Failures are logged, never raised."""
        if not staged.owned:
            return
        try:
            staged.local_path.unlink()
            logger.debug(f"Removed staged file {staged.local_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove staged file {staged.local_path}: {e}")
