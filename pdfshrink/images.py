"""Raster image recompression for PDF Shrink.

Decides per image whether to resize it and which encoder to use, then
re-encodes it with Pillow. Nothing in this module touches the document
library, so images can be recompressed on worker threads.
"""

import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from PIL import Image

from .profiles import CompressionProfile

logger = logging.getLogger(__name__)

# Images above this many pixels are shrunk by at least 10% when resized
LARGE_IMAGE_PIXELS = 5_000_000
VERY_LARGE_SCALE_CAP = 0.8
LARGE_SCALE_CAP = 0.9
# Scales at or above this are treated as "no resize"
MIN_EFFECTIVE_SCALE = 0.99

_PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA"}
_ALPHA_MODES = {"LA", "PA", "RGBA", "RGBa", "La"}


class EncodeStrategy(Enum):
    """Encoder chosen for a recompressed image."""
    LOSSLESS = "lossless"
    LOSSY = "lossy"
    LOSSY_LARGE = "lossy_large"


@dataclass(frozen=True)
class RasterImage:
    """An image object embedded in a page."""
    xref: int
    width: int
    height: int
    has_alpha: bool
    data: bytes = field(repr=False)
    stored_size: int
    ext: str = "unknown"
    mask: Optional[bytes] = field(default=None, repr=False)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class ImageResult:
    """Outcome of recompressing one image."""
    xref: int
    original_size: int
    new_size: int
    strategy: Optional[EncodeStrategy] = None
    resized_to: Optional[Tuple[int, int]] = None
    replacement: Optional[bytes] = field(default=None, repr=False)
    error: Optional[str] = None

    @property
    def optimized(self) -> bool:
        return self.replacement is not None

    @classmethod
    def unchanged(cls, image: RasterImage, error: Optional[str] = None) -> "ImageResult":
        return cls(
            xref=image.xref,
            original_size=image.stored_size,
            new_size=image.stored_size,
            error=error,
        )


def is_very_large(pixel_count: int, profile: CompressionProfile) -> bool:
    """Whether an image gets the large-image treatment under ``profile``."""
    return pixel_count > profile.very_large_image_threshold


def plan_resize(
    width: int,
    height: int,
    profile: CompressionProfile
) -> Optional[Tuple[int, int]]:
    """
    Work out the target dimensions for an image.

    Args:
        width: Image width in pixels
        height: Image height in pixels
        profile: Compression profile

    Returns:
        (width, height) to resize to, or None when the image keeps its size
    """
    if width <= 0 or height <= 0:
        return None

    pixel_count = width * height
    very_large = is_very_large(pixel_count, profile)
    threshold = profile.resize_threshold_pixels

    if not (width > threshold or height > threshold or very_large):
        return None

    scale = min(profile.max_dpi / width, profile.max_dpi / height)

    if very_large:
        scale = min(scale, VERY_LARGE_SCALE_CAP)
    elif pixel_count > LARGE_IMAGE_PIXELS:
        scale = min(scale, LARGE_SCALE_CAP)

    # Never upscale
    scale = min(scale, 1.0)

    if scale >= MIN_EFFECTIVE_SCALE:
        return None

    target_width = min(width, max(profile.min_dpi, round(width * scale)))
    target_height = min(height, max(profile.min_dpi, round(height * scale)))

    if (target_width, target_height) == (width, height):
        return None

    return target_width, target_height


def select_strategy(
    pixel_count: int,
    has_alpha: bool,
    profile: CompressionProfile
) -> EncodeStrategy:
    """
    Pick the encoder for an image.

    Transparency always forces lossless encoding, then small images stay
    lossless, then very large images get the large-image quality.
    """
    if has_alpha or pixel_count < profile.max_lossless_pixels:
        return EncodeStrategy.LOSSLESS
    if is_very_large(pixel_count, profile):
        return EncodeStrategy.LOSSY_LARGE
    return EncodeStrategy.LOSSY


def jpeg_quality(quality: float) -> int:
    """Map a [0, 1] quality to Pillow's 1-100 JPEG scale."""
    return max(1, min(100, int(round(quality * 100))))


def recompress_image(
    image: RasterImage,
    profile: CompressionProfile,
    page_index: Optional[int] = None,
) -> ImageResult:
    """
    Re-encode one image under a profile.

    Args:
        image: Image extracted from the document
        profile: Compression profile
        page_index: 0-based page the image was found on, for log messages

    Returns:
        ImageResult whose ``replacement`` holds the new encoded bytes when they
        are strictly smaller than what the image occupies today
    """
    label = _label(image, page_index)

    try:
        pil_image = _decode(image)
        width, height = pil_image.size
        pixel_count = width * height
        has_alpha = image.has_alpha or _has_alpha(pil_image)

        if is_very_large(pixel_count, profile):
            logger.info("%s: very large image (%dx%d)", label, width, height)

        target = plan_resize(width, height, profile)
        if target:
            logger.debug("%s: resizing %dx%d -> %dx%d", label, width, height, *target)
            pil_image = pil_image.resize(target, Image.Resampling.LANCZOS)

        strategy = select_strategy(pixel_count, has_alpha, profile)
        encoded = _encode(pil_image, strategy, profile)

    except MemoryError:
        logger.error("%s: out of memory while recompressing, keeping original", label)
        return ImageResult.unchanged(image, error="out of memory")
    except Exception as e:
        logger.warning("%s: recompression failed, keeping original: %s", label, e)
        return ImageResult.unchanged(image, error=str(e))

    new_size = len(encoded)
    logger.debug(
        "%s: %s %d -> %d bytes",
        label, strategy.value, image.stored_size, new_size,
    )

    # Only replace if smaller
    if new_size >= image.stored_size:
        return ImageResult(
            xref=image.xref,
            original_size=image.stored_size,
            new_size=image.stored_size,
            strategy=strategy,
            resized_to=target,
        )

    return ImageResult(
        xref=image.xref,
        original_size=image.stored_size,
        new_size=new_size,
        strategy=strategy,
        resized_to=target,
        replacement=encoded,
    )


def _label(image: RasterImage, page_index: Optional[int]) -> str:
    if page_index is None:
        return f"image {image.xref}"
    return f"page {page_index + 1}, image {image.xref}"


def _has_alpha(pil_image: Image.Image) -> bool:
    if pil_image.mode in _ALPHA_MODES:
        return True
    return pil_image.mode == "P" and "transparency" in pil_image.info


def _decode(image: RasterImage) -> Image.Image:
    """Decode the payload with Pillow and re-attach the soft mask, if any."""
    pil_image = Image.open(io.BytesIO(image.data))
    pil_image.load()

    if pil_image.mode == "CMYK":
        pil_image = pil_image.convert("RGB")

    if image.mask:
        mask = Image.open(io.BytesIO(image.mask))
        mask = mask.convert("L")
        if mask.size != pil_image.size:
            mask = mask.resize(pil_image.size, Image.Resampling.LANCZOS)
        pil_image = pil_image.convert("LA" if pil_image.mode in ("1", "L") else "RGBA")
        pil_image.putalpha(mask)

    return pil_image


def _encode(
    pil_image: Image.Image,
    strategy: EncodeStrategy,
    profile: CompressionProfile
) -> bytes:
    buffer = io.BytesIO()

    if strategy is EncodeStrategy.LOSSLESS:
        if pil_image.mode not in _PNG_MODES:
            pil_image = pil_image.convert("RGBA" if _has_alpha(pil_image) else "RGB")
        pil_image.save(buffer, format="PNG", optimize=True)
        return buffer.getvalue()

    if strategy is EncodeStrategy.LOSSY_LARGE:
        quality = profile.large_image_quality
    else:
        quality = profile.image_quality

    if pil_image.mode not in ("L", "RGB"):
        pil_image = pil_image.convert("RGB")

    pil_image.save(
        buffer,
        format="JPEG",
        quality=jpeg_quality(quality),
        optimize=True
    )
    return buffer.getvalue()
