"""Compression profiles for PDF Shrink.

A profile is an immutable bundle of thresholds that drives every image
recompression decision. Profiles are passed explicitly to each compression
call; deriving a variant always produces a new value.
"""

import dataclasses
from dataclasses import dataclass
from typing import Dict, List

from .exceptions import InvalidArgumentError

# Bounds applied when callers override DPI on an existing profile
MIN_CUSTOM_DPI = 72
MAX_CUSTOM_DPI = 4800


@dataclass(frozen=True)
class CompressionProfile:
    """Thresholds describing one image compression policy."""
    name: str
    image_quality: float
    large_image_quality: float
    max_dpi: int
    min_dpi: int
    resize_threshold_multiplier: float
    max_lossless_pixels: int
    very_large_image_threshold: int
    estimated_rate: str = "unknown"
    description: str = ""

    def __post_init__(self):
        for field_name in ("image_quality", "large_image_quality"):
            value = getattr(self, field_name)
            if not 0.0 <= value <= 1.0:
                raise InvalidArgumentError(
                    f"{field_name} must be within [0, 1], got {value}"
                )

        if self.min_dpi <= 0 or self.max_dpi <= 0:
            raise InvalidArgumentError(
                f"DPI bounds must be positive, got min={self.min_dpi} max={self.max_dpi}"
            )
        if self.min_dpi >= self.max_dpi:
            raise InvalidArgumentError(
                f"min_dpi ({self.min_dpi}) must be lower than max_dpi ({self.max_dpi})"
            )

        if self.resize_threshold_multiplier <= 0:
            raise InvalidArgumentError(
                f"resize_threshold_multiplier must be positive, got {self.resize_threshold_multiplier}"
            )

        if self.max_lossless_pixels <= 0:
            raise InvalidArgumentError(
                f"max_lossless_pixels must be positive, got {self.max_lossless_pixels}"
            )
        if self.very_large_image_threshold <= self.max_lossless_pixels:
            raise InvalidArgumentError(
                "very_large_image_threshold must exceed max_lossless_pixels "
                f"({self.very_large_image_threshold} <= {self.max_lossless_pixels})"
            )

    @property
    def resize_threshold_pixels(self) -> float:
        """Edge length in pixels above which an image is resized."""
        return self.max_dpi * self.resize_threshold_multiplier

    def with_overrides(self, **fields) -> "CompressionProfile":
        """
        Derive a new profile with some fields replaced.

        Args:
            **fields: Field names and their new values

        Returns:
            A new CompressionProfile; this profile is left untouched
        """
        return dataclasses.replace(self, **fields)

    def with_dpi(self, max_dpi: int, min_dpi: int) -> "CompressionProfile":
        """
        Derive a custom profile that keeps this policy but uses other DPI bounds.

        max_dpi is capped at 4800 and min_dpi floored at 72.
        """
        return self.with_overrides(
            name="custom",
            max_dpi=min(MAX_CUSTOM_DPI, max_dpi),
            min_dpi=max(MIN_CUSTOM_DPI, min_dpi),
            estimated_rate="unknown",
            description=f"Custom DPI {min_dpi}-{max_dpi} based on {self.name}",
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return dataclasses.asdict(self)


def _profile(name, image_quality, large_image_quality, max_dpi, min_dpi,
             multiplier, max_lossless, very_large, rate, description):
    return CompressionProfile(
        name=name,
        image_quality=image_quality,
        large_image_quality=large_image_quality,
        max_dpi=max_dpi,
        min_dpi=min_dpi,
        resize_threshold_multiplier=multiplier,
        max_lossless_pixels=max_lossless,
        very_large_image_threshold=very_large,
        estimated_rate=rate,
        description=description,
    )


_PRESETS: List[CompressionProfile] = [
    _profile("minimum_size", 0.65, 0.60, 300, 72, 1.0,
             500_000, 4_000_000, "85-95%",
             "Low quality, meant for web sharing and on-screen viewing"),
    _profile("target_size_200mb", 0.95, 0.90, 800, 180, 2.0,
             3_000_000, 15_000_000, "33-40%",
             "Good quality, brings a 300MB scan down to roughly 200MB"),
    _profile("balanced", 0.92, 0.85, 600, 150, 1.5,
             2_000_000, 10_000_000, "50-60%",
             "Fair quality, adequate for everyday use"),
    _profile("enhanced_quality", 0.95, 0.90, 750, 180, 2.0,
             3_000_000, 15_000_000, "40-50%",
             "Good quality, most images stay sharp"),
    _profile("small_size", 0.85, 0.75, 450, 120, 1.2,
             1_000_000, 8_000_000, "70-80%",
             "Acceptable quality, text remains legible"),
    _profile("high_quality", 0.98, 0.95, 900, 200, 2.5,
             4_000_000, 20_000_000, "30-40%",
             "Very good quality, differences only in fine detail"),
    _profile("maximum_quality", 1.0, 0.99, 1200, 300, 4.0,
             10_000_000, 40_000_000, "10-20%",
             "Visually indistinguishable from the original"),
    _profile("ultra_high_quality", 1.0, 1.0, 2400, 600, 6.0,
             20_000_000, 60_000_000, "5-10%",
             "Print-grade resolution is kept"),
    _profile("text_optimized", 0.99, 0.98, 2000, 400, 4.0,
             12_000_000, 35_000_000, "20-30%",
             "Keeps glyph edges sharp in scanned text"),
    _profile("text_max_quality", 1.0, 0.99, 2400, 600, 5.0,
             15_000_000, 50_000_000, "15-25%",
             "Text sharpness on par with the original scan"),
    _profile("minimal_compression", 1.0, 1.0, 3000, 800, 8.0,
             25_000_000, 70_000_000, "1-5%",
             "Nearly identical to the original, only redundant data removed"),
    _profile("light_compression", 0.98, 0.97, 2500, 600, 6.0,
             20_000_000, 60_000_000, "5-10%",
             "Very close to the original with slightly more compression"),
    _profile("moderate_compression", 0.96, 0.95, 2000, 500, 5.0,
             15_000_000, 50_000_000, "10-15%",
             "High quality with moderate savings"),
    _profile("medium_compression", 0.93, 0.88, 700, 180, 2.5,
             5_000_000, 25_000_000, "45-55%",
             "Middle ground between quality and file size"),
    _profile("effective_compression", 0.90, 0.85, 600, 150, 1.2,
             2_000_000, 10_000_000, "10-20%",
             "Noticeable size reduction while keeping good quality"),
    _profile("mild_compression", 0.95, 0.93, 900, 200, 2.0,
             5_000_000, 20_000_000, "3-7%",
             "Gentle compression that keeps text quality"),
    _profile("medium_quality", 0.97, 0.95, 1000, 250, 3.0,
             7_000_000, 25_000_000, "5%",
             "High quality with sharp text and a small reduction"),
    _profile("very_light_compression", 0.99, 0.99, 2800, 700, 7.0,
             22_000_000, 65_000_000, "5%",
             "Original quality kept as far as possible"),
    _profile("balanced_compression", 0.88, 0.82, 550, 130, 1.4,
             1_500_000, 9_000_000, "60-70%",
             "Balance between reasonable quality and file size"),
]

PROFILES: Dict[str, CompressionProfile] = {p.name: p for p in _PRESETS}

DEFAULT_PROFILE = PROFILES["very_light_compression"]


def get_profile(name: str) -> CompressionProfile:
    """
    Look up a preset profile by name.

    Args:
        name: Profile name, case-insensitive; dashes are accepted for underscores

    Returns:
        The matching CompressionProfile

    Raises:
        InvalidArgumentError: If no preset has that name
    """
    key = name.strip().lower().replace("-", "_")
    try:
        return PROFILES[key]
    except KeyError:
        raise InvalidArgumentError(
            f"Unknown profile: {name}. Available: {', '.join(PROFILES)}"
        ) from None
