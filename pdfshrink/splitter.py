"""Size-bounded PDF splitting for PDF Shrink.

Pages are measured by serializing each one on its own, grouped in reading
order so that every group stays under a byte ceiling, and each group is
written out as its own PDF. A page that alone exceeds the ceiling becomes a
group of its own and is reported as oversized.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import fitz  # PyMuPDF

from . import document
from .exceptions import InvalidArgumentError, PDFShrinkError
from .utils import format_size, numbered_filename

logger = logging.getLogger(__name__)


@dataclass
class PartitionPart:
    """One output document of a partitioning run."""
    sequence: int
    pages: List[int]
    estimated_size: int
    oversized: bool = False
    data: bytes = field(default=b"", repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "sequence": self.sequence,
            "pages": [p + 1 for p in self.pages],
            "page_count": len(self.pages),
            "estimated_size": self.estimated_size,
            "estimated_size_formatted": format_size(self.estimated_size),
            "size": self.size,
            "size_formatted": format_size(self.size),
            "oversized": self.oversized,
        }


@dataclass
class PartitionResult:
    """Result of splitting one document by size."""
    max_bytes: int
    page_count: int
    page_sizes: Dict[int, int]
    parts: List[PartitionPart] = field(default_factory=list)

    @property
    def oversized_parts(self) -> List[PartitionPart]:
        return [part for part in self.parts if part.oversized]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "max_bytes": self.max_bytes,
            "max_size_formatted": format_size(self.max_bytes),
            "page_count": self.page_count,
            "part_count": len(self.parts),
            "oversized_parts": [p.sequence for p in self.oversized_parts],
            "parts": [p.to_dict() for p in self.parts],
        }


def estimate_page_sizes(doc: fitz.Document) -> Dict[int, int]:
    """
    Measure every page by serializing it as a one-page document.

    Args:
        doc: Open document

    Returns:
        Mapping of 0-based page index to serialized size in bytes
    """
    page_sizes: Dict[int, int] = {}

    for page_index in range(doc.page_count):
        single = document.single_page(doc, page_index)
        try:
            page_sizes[page_index] = len(document.serialize(single))
        finally:
            single.close()
        logger.debug("Page %d: ~%s", page_index + 1, format_size(page_sizes[page_index]))

    return page_sizes


def group_pages_by_size(page_sizes: Dict[int, int], max_bytes: int) -> List[List[int]]:
    """
    Group pages, in order, so each group's estimated size stays under a ceiling.

    A page larger than the ceiling on its own is emitted as a single-page
    group that exceeds it.

    Args:
        page_sizes: Mapping of page index to estimated size
        max_bytes: Size ceiling per group

    Returns:
        Non-empty groups of page indices, in ascending page order

    Raises:
        InvalidArgumentError: If max_bytes is not positive
    """
    if max_bytes <= 0:
        raise InvalidArgumentError(f"Maximum size must be positive, got {max_bytes}")

    groups: List[List[int]] = []
    current_group: List[int] = []
    current_size = 0

    for page_index in sorted(page_sizes):
        page_size = page_sizes[page_index]

        if page_size > max_bytes:
            if current_group:
                groups.append(current_group)
                current_group = []
                current_size = 0

            logger.warning(
                "Page %d alone is %s, above the %s limit; it gets its own file",
                page_index + 1, format_size(page_size), format_size(max_bytes),
            )
            groups.append([page_index])
            continue

        # Start a new group when this page would overflow the current one
        if current_group and current_size + page_size > max_bytes:
            groups.append(current_group)
            current_group = []
            current_size = 0

        current_group.append(page_index)
        current_size += page_size

    if current_group:
        groups.append(current_group)

    return groups


class Partitioner:
    """Splits documents into parts that each stay under a byte ceiling."""

    def __init__(self, max_bytes: int):
        """
        Initialize partitioner.

        Args:
            max_bytes: Size ceiling per output document

        Raises:
            InvalidArgumentError: If max_bytes is not positive
        """
        if max_bytes <= 0:
            raise InvalidArgumentError(f"Maximum size must be positive, got {max_bytes}")
        self.max_bytes = max_bytes

    def partition(self, data: bytes, source: Optional[str] = None) -> PartitionResult:
        """Partition a PDF held in memory."""
        doc = document.load_document(data, source)
        try:
            return self.partition_document(doc)
        finally:
            doc.close()

    def partition_document(self, doc: fitz.Document) -> PartitionResult:
        """
        Partition an open document.

        Args:
            doc: Open document; it is read, never modified

        Returns:
            PartitionResult with the serialized bytes of every part

        Raises:
            InvalidArgumentError: If the document has no pages
        """
        page_count = doc.page_count
        if page_count == 0:
            raise InvalidArgumentError("Cannot split a document with no pages")

        logger.info("Estimating sizes of %d pages", page_count)
        page_sizes = estimate_page_sizes(doc)
        groups = group_pages_by_size(page_sizes, self.max_bytes)

        result = PartitionResult(
            max_bytes=self.max_bytes,
            page_count=page_count,
            page_sizes=page_sizes,
        )

        for sequence, group in enumerate(groups, start=1):
            estimated = sum(page_sizes[p] for p in group)
            subset = document.with_pages(doc, group)
            try:
                data = document.serialize(subset)
            finally:
                subset.close()

            result.parts.append(PartitionPart(
                sequence=sequence,
                pages=list(group),
                estimated_size=estimated,
                oversized=estimated > self.max_bytes,
                data=data,
            ))
            logger.info(
                "Part %d: pages %d-%d, %s",
                sequence, group[0] + 1, group[-1] + 1, format_size(len(data)),
            )

        return result


def partition_by_size(data: bytes, max_bytes: int) -> List[bytes]:
    """
    Split PDF bytes into PDFs that each stay under ``max_bytes``.

    Returns:
        Serialized parts in page order
    """
    result = Partitioner(max_bytes).partition(data)
    return [part.data for part in result.parts]


def write_parts(result: PartitionResult, output_dir: Union[str, Path], stem: str) -> List[Path]:
    """
    Write every part of a partition as ``<stem>_001.pdf``, ``<stem>_002.pdf``, ...

    Args:
        result: Partition holding the serialized parts
        output_dir: Directory for the parts, created if missing
        stem: File name prefix, usually the input file's stem

    Returns:
        Paths of the written parts, in sequence order
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for part in result.parts:
        part_path = output_dir / numbered_filename(f"{stem}_", part.sequence)
        part_path.write_bytes(part.data)
        written.append(part_path)
    return written


def split_pdf_by_size(
    input_path: Union[str, Path],
    output_dir: Union[str, Path],
    max_bytes: int,
) -> List[Path]:
    """
    Split a PDF file into ``<stem>_001.pdf``, ``<stem>_002.pdf``, ...

    Args:
        input_path: Path to input PDF
        output_dir: Directory for the parts, created if missing
        max_bytes: Size ceiling per part

    Returns:
        Paths of the written parts, in order

    Raises:
        OSError: If the input cannot be read or a part cannot be written
        DocumentError: If the input is not a readable PDF
        InvalidArgumentError: If max_bytes is not positive or the PDF has no pages
    """
    input_path = Path(input_path)
    output_dir = Path(output_dir)

    partitioner = Partitioner(max_bytes)
    result = partitioner.partition(input_path.read_bytes(), source=input_path.name)
    written = write_parts(result, output_dir, input_path.stem)

    logger.info("%s: split into %d files in %s", input_path.name, len(written), output_dir)
    return written


def split_all_pdfs_by_size(
    input_dir: Union[str, Path],
    output_root: Union[str, Path],
    max_bytes: int,
) -> int:
    """
    Split every PDF in a directory into ``<output_root>/<stem>_split/``.

    Files that fail are logged and skipped.

    Returns:
        Total number of parts written
    """
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise InvalidArgumentError(f"Not a directory: {input_dir}")

    output_root = Path(output_root)
    output_root.mkdir(parents=True, exist_ok=True)

    total = 0
    for pdf_path in sorted(input_dir.glob("*.pdf")):
        try:
            parts = split_pdf_by_size(pdf_path, output_root / f"{pdf_path.stem}_split", max_bytes)
        except (PDFShrinkError, OSError) as e:
            logger.error("Failed to split %s: %s", pdf_path.name, e)
            continue
        total += len(parts)

    return total


def split_pdf_to_pages(
    input_path: Union[str, Path],
    output_dir: Union[str, Path],
    prefix: str = "page_",
) -> int:
    """
    Write every page of a PDF to its own file, ``<prefix>001.pdf`` onwards.

    Returns:
        Number of pages written
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    doc = document.open_document(input_path)
    try:
        for page_index in range(doc.page_count):
            single = document.single_page(doc, page_index)
            try:
                document.save(single, output_dir / numbered_filename(prefix, page_index + 1))
            finally:
                single.close()
        return doc.page_count
    finally:
        doc.close()


def extract_page_range(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    start_page: int,
    end_page: int,
) -> int:
    """
    Copy a range of pages into a new PDF.

    Args:
        input_path: Path to input PDF
        output_path: Path for output PDF
        start_page: First page, 1-based
        end_page: Last page, 1-based and inclusive; clamped to the page count

    Returns:
        Number of pages extracted

    Raises:
        InvalidArgumentError: If the range selects no page
    """
    if start_page < 1:
        raise InvalidArgumentError(f"Start page must be at least 1, got {start_page}")

    doc = document.open_document(input_path)
    try:
        total_pages = doc.page_count
        start_index = start_page - 1
        end_index = min(end_page - 1, total_pages - 1)

        if start_index > end_index or start_index >= total_pages:
            raise InvalidArgumentError(
                f"Invalid page range {start_page}-{end_page} (document has {total_pages} pages)"
            )

        return _write_pages(doc, range(start_index, end_index + 1), output_path)
    finally:
        doc.close()


def extract_specific_pages(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    page_numbers: Iterable[int],
) -> int:
    """
    Copy selected pages (1-based, in the given order) into a new PDF.

    Page numbers outside the document are logged and ignored.

    Returns:
        Number of pages extracted
    """
    doc = document.open_document(input_path)
    try:
        total_pages = doc.page_count
        indices = []
        for number in page_numbers:
            if 1 <= number <= total_pages:
                indices.append(number - 1)
            else:
                logger.warning("Ignoring page %d (document has %d pages)", number, total_pages)

        if not indices:
            raise InvalidArgumentError("No valid pages selected")

        return _write_pages(doc, indices, output_path)
    finally:
        doc.close()


def _write_pages(doc: fitz.Document, indices: Iterable[int], output_path: Union[str, Path]) -> int:
    subset = document.with_pages(doc, list(indices))
    try:
        document.save(subset, output_path)
        return subset.page_count
    finally:
        subset.close()


def merge_pdf_files(output_path: Union[str, Path], *input_paths: Union[str, Path]) -> int:
    """
    Concatenate PDF files into one.

    Inputs that cannot be read are logged and skipped.

    Returns:
        Total number of pages in the merged file

    Raises:
        InvalidArgumentError: If no input is given or none could be merged
    """
    if not input_paths:
        raise InvalidArgumentError("No files to merge")

    merged = fitz.open()
    try:
        for input_path in input_paths:
            try:
                doc = document.open_document(input_path)
            except (PDFShrinkError, OSError) as e:
                logger.error("Skipping %s: %s", input_path, e)
                continue
            try:
                merged.insert_pdf(doc)
                logger.debug("Added %s (%d pages)", input_path, doc.page_count)
            finally:
                doc.close()

        if merged.page_count == 0:
            raise InvalidArgumentError("None of the input files could be merged")

        document.save(merged, output_path)
        return merged.page_count
    finally:
        merged.close()
