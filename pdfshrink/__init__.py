"""
PDF Shrink

Reduces PDF size by recompressing embedded raster images under a compression
profile, and splits PDFs into parts that each stay under a byte ceiling.
"""

__version__ = "1.0.0"
__author__ = "PDF Shrink Team"

from .compressor import (
    CompressionMode,
    CompressionOutcome,
    DocumentCompressor,
    compress_document,
    compress_pdf,
    compress_pdf_with_dpi,
    run_benchmark,
)
from .exceptions import DocumentError, InvalidArgumentError, PDFShrinkError
from .profiles import DEFAULT_PROFILE, PROFILES, CompressionProfile, get_profile
from .splitter import (
    PartitionResult,
    Partitioner,
    merge_pdf_files,
    partition_by_size,
    split_pdf_by_size,
)

__all__ = [
    "CompressionMode",
    "CompressionOutcome",
    "CompressionProfile",
    "DEFAULT_PROFILE",
    "DocumentCompressor",
    "DocumentError",
    "InvalidArgumentError",
    "PDFShrinkError",
    "PROFILES",
    "PartitionResult",
    "Partitioner",
    "compress_document",
    "compress_pdf",
    "compress_pdf_with_dpi",
    "get_profile",
    "merge_pdf_files",
    "partition_by_size",
    "run_benchmark",
    "split_pdf_by_size",
]
