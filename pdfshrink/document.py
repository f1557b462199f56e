"""Document access layer for PDF Shrink.

Everything that touches PyMuPDF directly lives here: loading, serializing,
assembling page subsets, stripping metadata and reading/replacing the raster
images of a page. PyMuPDF objects must only be used from the thread that
created them.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import fitz  # PyMuPDF

from .exceptions import DocumentError
from .images import RasterImage

logger = logging.getLogger(__name__)

# Options used for every serialization so page estimates match real output
SAVE_OPTIONS = {
    "garbage": 4,  # Maximum garbage collection
    "deflate": True,  # Compress streams
    "clean": True,  # Clean content streams
}


def load_document(data: bytes, source: Optional[str] = None) -> fitz.Document:
    """
    Load a PDF document from bytes.

    Args:
        data: Raw PDF bytes
        source: Name used in error messages (usually the file name)

    Returns:
        Open PyMuPDF document; the caller is responsible for closing it

    Raises:
        DocumentError: If the bytes are not a readable, unencrypted PDF
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise DocumentError(f"Failed to open PDF: {e}", source) from e

    if doc.needs_pass:
        doc.close()
        raise DocumentError("PDF is encrypted", source)

    return doc


def open_document(path: Union[str, Path]) -> fitz.Document:
    """Read a PDF file and load it. I/O errors propagate unchanged."""
    path = Path(path)
    return load_document(path.read_bytes(), source=path.name)


def serialize(doc: fitz.Document) -> bytes:
    """Serialize a document with the standard save options."""
    return doc.tobytes(**SAVE_OPTIONS)


def save(doc: fitz.Document, path: Union[str, Path]) -> int:
    """
    Write a document to disk with the standard save options.

    Returns:
        Size of the written file in bytes
    """
    path = Path(path)
    data = serialize(doc)
    path.write_bytes(data)
    return len(data)


def with_pages(doc: fitz.Document, page_indices: Sequence[int]) -> fitz.Document:
    """
    Build a new document holding the given pages in the given order.

    Args:
        doc: Source document
        page_indices: 0-based page indices

    Returns:
        New PyMuPDF document; the caller is responsible for closing it
    """
    subset = fitz.open()
    for start, end in _contiguous_runs(page_indices):
        subset.insert_pdf(doc, from_page=start, to_page=end)
    return subset


def single_page(doc: fitz.Document, page_index: int) -> fitz.Document:
    """Build a one-page document from a page of ``doc``."""
    return with_pages(doc, [page_index])


def _contiguous_runs(page_indices: Sequence[int]) -> List[Tuple[int, int]]:
    """Collapse ascending neighbours into (start, end) runs, keeping order."""
    runs: List[Tuple[int, int]] = []
    for index in page_indices:
        if runs and index == runs[-1][1] + 1:
            runs[-1] = (runs[-1][0], index)
        else:
            runs.append((index, index))
    return runs


def strip_metadata(doc: fitz.Document) -> None:
    """Remove the info dictionary and XMP metadata from a document."""
    try:
        if logger.isEnabledFor(logging.DEBUG) and doc.metadata:
            logger.debug(
                "Metadata before stripping: title=%r author=%r subject=%r keywords=%r",
                doc.metadata.get("title"),
                doc.metadata.get("author"),
                doc.metadata.get("subject"),
                doc.metadata.get("keywords"),
            )
        doc.set_metadata({})
        doc.del_xml_metadata()
    except Exception as e:
        # Broken info dictionaries are left as they are
        logger.warning("Could not strip metadata: %s", e)


def page_image_refs(page: fitz.Page) -> List[Tuple[int, int]]:
    """
    List the raster images a page draws.

    Returns:
        (xref, smask xref) pairs, each image once, in the order PyMuPDF reports them
    """
    refs = []
    seen = set()
    for img in page.get_images(full=True):
        xref, smask = img[0], img[1]
        if xref in seen:
            continue
        seen.add(xref)
        refs.append((xref, smask))
    return refs


def extract_raster_image(doc: fitz.Document, xref: int, smask: int = 0) -> RasterImage:
    """
    Read one image object out of a document.

    Args:
        doc: Document holding the image
        xref: Image object number
        smask: Object number of its soft mask, 0 if none

    Returns:
        RasterImage with the encoded payload and the bytes it currently occupies

    Raises:
        DocumentError: If the image cannot be extracted
    """
    base_image = doc.extract_image(xref)
    if not base_image:
        raise DocumentError(f"image xref {xref} could not be extracted")

    mask_bytes = None
    stored_size = len(doc.xref_stream_raw(xref) or b"")
    if smask:
        mask_image = doc.extract_image(smask)
        if mask_image:
            mask_bytes = mask_image["image"]
        stored_size += len(doc.xref_stream_raw(smask) or b"")

    return RasterImage(
        xref=xref,
        width=base_image.get("width", 0),
        height=base_image.get("height", 0),
        has_alpha=mask_bytes is not None,
        data=base_image["image"],
        stored_size=stored_size,
        ext=base_image.get("ext", "unknown"),
        mask=mask_bytes,
    )


def replace_image(page: fitz.Page, xref: int, data: bytes) -> None:
    """Swap the image object ``xref`` for a new encoded image (PNG or JPEG)."""
    page.replace_image(xref, stream=data)
