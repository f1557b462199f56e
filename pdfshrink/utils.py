"""Size handling and file naming helpers for PDF Shrink."""

import re
from pathlib import Path
from typing import Optional, Union

from .exceptions import InvalidArgumentError

# (suffix, bytes, decimals shown), largest first
SIZE_UNITS = (
    ("GB", 1024 ** 3, 2),
    ("MB", 1024 ** 2, 2),
    ("KB", 1024, 1),
)

_SIZE_PATTERN = re.compile(r'^(?P<value>\d+(?:\.\d+)?)\s*(?:(?P<unit>[KMG])(?:I?B)?|B)?$')
_PAGE_FILE_PATTERN = re.compile(r'(\d+)\.pdf$', re.IGNORECASE)


def parse_size(size_str: str) -> int:
    """
    Parse a size such as ``50MB``, ``800k``, ``1.5GiB`` or ``1024`` into bytes.

    Units are binary (1 KB = 1024 bytes); a bare number is bytes.

    Raises:
        InvalidArgumentError: If the string is not a size
    """
    match = _SIZE_PATTERN.match(size_str.strip().upper())
    if not match:
        raise InvalidArgumentError(
            f"Invalid size format: {size_str!r}. Use formats like '50MB', '800KB', '1.5GB'"
        )

    multiplier = 1
    if match.group("unit"):
        multiplier = next(factor for name, factor, _ in SIZE_UNITS if name[0] == match.group("unit"))

    return int(float(match.group("value")) * multiplier)


def format_size(size_bytes: int) -> str:
    """Render a byte count with the largest unit it reaches."""
    for name, factor, decimals in SIZE_UNITS:
        if size_bytes >= factor:
            return f"{size_bytes / factor:.{decimals}f} {name}"
    return f"{size_bytes} B"


def size_reduction(original_size: int, new_size: int) -> float:
    """Fraction of ``original_size`` saved, e.g. 0.65 for a 65% reduction."""
    if not original_size:
        return 0.0
    return 1 - new_size / original_size


def default_output_path(input_path: Union[str, Path], suffix: str = "_compressed") -> Path:
    """``dir/report.pdf`` -> ``dir/report_compressed.pdf``."""
    input_path = Path(input_path)
    return input_path.with_name(f"{input_path.stem}{suffix}.pdf")


def default_split_dir(input_path: Union[str, Path]) -> Path:
    """``dir/report.pdf`` -> ``dir/report_split/``."""
    input_path = Path(input_path)
    return input_path.with_name(f"{input_path.stem}_split")


def numbered_filename(prefix: str, number: int) -> str:
    """Build a zero-padded artifact name such as ``report_007.pdf``."""
    return f"{prefix}{number:03d}.pdf"


def page_number_from_name(name: str) -> Optional[int]:
    """
    Extract the trailing page number from a per-page file name.

    Args:
        name: File name like "page_12.pdf"

    Returns:
        The number, or None when the name carries none
    """
    match = _PAGE_FILE_PATTERN.search(name)
    if not match:
        return None
    return int(match.group(1))
