"""Color normalization: scraped color descriptors to API-facing colors."""

from contextlib import ExitStack
from typing import Iterable, List, Union

from catalog_sync.logging_config import get_logger
from catalog_sync.models import ColorDescriptor, ColorKind, RawColor
from catalog_sync.transfer import DownloadError, ImageTransfer

__all__ = ["ColorNormalizer", "CODE_KINDS"]

logger = get_logger("colors")

# Scrapers report swatches with a background-color as "hex"; the API only
# knows "code".
CODE_KINDS = {"code", "hex"}


class ColorNormalizer:
    """Turns raw colors into ``ColorDescriptor`` objects.

    Image swatches are staged through the transfer unit; their files live as
    long as the ``ExitStack`` passed to ``normalize``. A swatch that cannot be
    staged falls back to a code color rather than failing the product.
    """

    def __init__(self, transfer: ImageTransfer):
        self.transfer = transfer

    def normalize(
        self,
        raw_colors: Iterable[Union[RawColor, str, dict]],
        stack: ExitStack,
        key: str,
    ) -> List[ColorDescriptor]:
        """Normalize colors, preserving input order.

        Args:
            raw_colors: Scraped colors (RawColor, dict or plain name)
            stack: Owns any staged swatch files
            key: Product identifier used to name staged files
        """
        colors: List[ColorDescriptor] = []
        for index, value in enumerate(raw_colors):
            raw = RawColor.from_value(value)
            colors.append(self._normalize_one(raw, index, stack, key))
        return colors

    def _normalize_one(self, raw: RawColor, index: int, stack: ExitStack, key: str) -> ColorDescriptor:
        kind = (raw.kind or "").strip().lower()

        if kind == ColorKind.IMAGE.value:
            if raw.image_url:
                try:
                    staged = self.transfer.stage_into(stack, raw.image_url, f"{key}_color", index)
                    return ColorDescriptor(
                        name=raw.name,
                        kind=ColorKind.IMAGE,
                        code=raw.code,
                        numeric_code=raw.numeric_code,
                        source_url=raw.image_url,
                        staged=staged,
                    )
                except DownloadError as e:
                    logger.warning(f"Color '{raw.name}': swatch not staged ({e}), sending as code")
            else:
                logger.warning(f"Color '{raw.name}': image kind without image URL, sending as code")
            return self._as_code(raw)

        if kind not in CODE_KINDS:
            logger.warning(f"Color '{raw.name}': unknown kind {kind!r}, sending as code")

        return self._as_code(raw)

    @staticmethod
    def _as_code(raw: RawColor) -> ColorDescriptor:
        return ColorDescriptor(
            name=raw.name,
            kind=ColorKind.CODE,
            code=raw.code or "",
            numeric_code=raw.numeric_code,
        )


def describe_colors(colors: Iterable[ColorDescriptor]) -> List[str]:
    """Compact representation for log output."""
    return [f"{c.name or '?'}:{c.kind.value}" for c in colors]
