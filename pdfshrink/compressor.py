"""PDF Compression engine for PDF Shrink."""

import logging
import shutil
import tempfile
import time
from concurrent.futures import (
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
    wait,
)
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import fitz  # PyMuPDF

from . import document
from .exceptions import DocumentError, PDFShrinkError
from .images import ImageResult, RasterImage, recompress_image
from .profiles import DEFAULT_PROFILE, CompressionProfile
from .utils import format_size, page_number_from_name, size_reduction

logger = logging.getLogger(__name__)

# Inputs smaller than this are returned untouched
MIN_SIZE_FOR_COMPRESSION = 1024

# How often a queued image is checked for having started, when timing images
QUEUE_POLL_SECONDS = 0.05

ProgressCallback = Callable[[str, int], None]


class CompressionMode(str, Enum):
    """How the pages of a document are scheduled."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    PAGE_ISOLATED = "page-isolated"


class CompressionStage:
    """Enumeration of compression stages for progress reporting."""
    LOADING = "Loading PDF"
    PROCESSING_IMAGES = "Processing images"
    SPLITTING_PAGES = "Splitting pages"
    MERGING_PAGES = "Merging pages"
    FINALIZING = "Finalizing PDF"


@dataclass(frozen=True)
class CompressionOutcome:
    """Result of compressing one document."""
    original_size: int
    compressed_size: int
    elapsed_seconds: float
    mode: str
    profile_name: str
    pages_processed: int = 0
    images_processed: int = 0
    images_optimized: int = 0
    pages_failed: int = 0
    pages_dropped: int = 0
    bypassed: bool = False
    regressed: bool = False

    @property
    def compression_ratio(self) -> float:
        return size_reduction(self.original_size, self.compressed_size)

    @property
    def degraded(self) -> bool:
        """True when some pages could not be compressed or were lost."""
        return self.pages_failed > 0 or self.pages_dropped > 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "original_size": self.original_size,
            "original_size_formatted": format_size(self.original_size),
            "compressed_size": self.compressed_size,
            "compressed_size_formatted": format_size(self.compressed_size),
            "compression_ratio": round(self.compression_ratio * 100, 1),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "mode": self.mode,
            "profile": self.profile_name,
            "pages_processed": self.pages_processed,
            "images_processed": self.images_processed,
            "images_optimized": self.images_optimized,
            "pages_failed": self.pages_failed,
            "pages_dropped": self.pages_dropped,
            "bypassed": self.bypassed,
            "regressed": self.regressed,
        }


@dataclass
class PageImages:
    """Images extracted from one page, waiting to be recompressed."""
    page_index: int
    images: List[RasterImage] = field(default_factory=list)
    extraction_failures: int = 0


@dataclass
class _ImageTask:
    page_index: int
    image: RasterImage
    future: Optional[Future] = None
    started_at: Optional[float] = None


@dataclass
class _RunStats:
    pages_processed: int = 0
    images_processed: int = 0
    images_optimized: int = 0
    pages_failed: int = 0
    pages_dropped: int = 0


def collect_page_images(
    doc: fitz.Document,
    page_index: int,
    seen_xrefs: Optional[Set[int]] = None,
) -> PageImages:
    """
    Extract the raster images drawn on one page.

    Args:
        doc: Open document
        page_index: 0-based page index
        seen_xrefs: Image objects already handled on earlier pages; images in
            this set are skipped and new ones are added to it

    Returns:
        PageImages for the page
    """
    page = doc[page_index]
    result = PageImages(page_index=page_index)

    for xref, smask in document.page_image_refs(page):
        if seen_xrefs is not None:
            if xref in seen_xrefs:
                logger.debug("Page %d: image %d already handled on an earlier page", page_index + 1, xref)
                continue
            seen_xrefs.add(xref)

        try:
            result.images.append(document.extract_raster_image(doc, xref, smask))
        except MemoryError:
            logger.error("Page %d: out of memory extracting image %d", page_index + 1, xref)
            result.extraction_failures += 1
        except Exception as e:
            logger.warning("Page %d: could not extract image %d: %s", page_index + 1, xref, e)
            result.extraction_failures += 1

    return result


def apply_page_results(
    doc: fitz.Document,
    page_images: PageImages,
    results: List[ImageResult],
) -> Tuple[int, int]:
    """
    Write the improved images of one page back into the document.

    Returns:
        (images processed, images replaced)
    """
    page = doc[page_images.page_index]
    optimized = 0

    for result in results:
        if not result.optimized:
            continue
        try:
            document.replace_image(page, result.xref, result.replacement)
            optimized += 1
        except Exception as e:
            logger.warning(
                "Page %d: could not replace image %d, keeping original: %s",
                page_images.page_index + 1, result.xref, e,
            )

    processed = len(page_images.images) + page_images.extraction_failures
    logger.debug(
        "Page %d done: %d images, %d optimized",
        page_images.page_index + 1, processed, optimized,
    )
    return processed, optimized


def optimize_page_images(
    doc: fitz.Document,
    page_index: int,
    profile: CompressionProfile,
    seen_xrefs: Optional[Set[int]] = None,
) -> Tuple[int, int]:
    """
    Recompress every raster image on one page, in place.

    Args:
        doc: Open document
        page_index: 0-based page index
        profile: Compression profile
        seen_xrefs: Shared set of image objects already handled in this document

    Returns:
        (images processed, images replaced)
    """
    page_images = collect_page_images(doc, page_index, seen_xrefs)
    results = [
        recompress_image(image, profile, page_index)
        for image in page_images.images
    ]
    return apply_page_results(doc, page_images, results)


def _run_image_task(task: _ImageTask, profile: CompressionProfile) -> ImageResult:
    """Recompress one image on a pool thread, recording when it started."""
    task.started_at = time.monotonic()
    return recompress_image(task.image, profile, task.page_index)


def _compress_page_file(
    page_path: str,
    output_path: str,
    profile: CompressionProfile,
) -> CompressionOutcome:
    """Compress one single-page PDF file. Runs in worker processes."""
    data = Path(page_path).read_bytes()
    compressor = DocumentCompressor(profile, CompressionMode.SEQUENTIAL)
    compressed, outcome = compressor.compress(data, source=Path(page_path).name)
    Path(output_path).write_bytes(compressed)
    return outcome


def _page_file_order(path: Path) -> int:
    number = page_number_from_name(path.name)
    return number if number is not None else 0


class DocumentCompressor:
    """
    Recompresses the raster images of a PDF under a compression profile.

    Three scheduling modes share the same output selection rules:
    - sequential: pages one after another on the calling thread
    - parallel: images of all pages recompressed on a thread pool
    - page-isolated: every page split into its own file and compressed
      independently, optionally on a process pool, then merged back

    Output never exceeds the input size; when recompression does not help,
    the original bytes are returned.
    """

    def __init__(
        self,
        profile: CompressionProfile = DEFAULT_PROFILE,
        mode: Union[CompressionMode, str] = CompressionMode.SEQUENTIAL,
        max_workers: Optional[int] = None,
        image_timeout: Optional[float] = None,
        parallel_pages: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize compressor.

        Args:
            profile: Compression profile applied to every image
            mode: Scheduling mode
            max_workers: Worker pool size (default: CPU count)
            image_timeout: Seconds to wait for one image in parallel mode
                before keeping it unchanged
            parallel_pages: Compress pages on a process pool in page-isolated mode
            progress_callback: Optional callback for progress updates (stage, percentage)
        """
        self.profile = profile
        self.mode = CompressionMode(mode)
        self.max_workers = max_workers
        self.image_timeout = image_timeout
        self.parallel_pages = parallel_pages
        self.progress_callback = progress_callback

    def _report_progress(self, stage: str, percentage: int):
        """Report progress if callback is set."""
        if self.progress_callback:
            self.progress_callback(stage, percentage)

    def _outcome(self, original_size: int, compressed_size: int, started: float,
                 stats: Optional[_RunStats] = None, **flags) -> CompressionOutcome:
        stats = stats or _RunStats()
        return CompressionOutcome(
            original_size=original_size,
            compressed_size=compressed_size,
            elapsed_seconds=time.perf_counter() - started,
            mode=self.mode.value,
            profile_name=self.profile.name,
            pages_processed=stats.pages_processed,
            images_processed=stats.images_processed,
            images_optimized=stats.images_optimized,
            pages_failed=stats.pages_failed,
            pages_dropped=stats.pages_dropped,
            **flags,
        )

    def compress(self, data: bytes, source: Optional[str] = None) -> Tuple[bytes, CompressionOutcome]:
        """
        Compress a PDF held in memory.

        Args:
            data: PDF bytes
            source: Name used in log and error messages

        Returns:
            (output bytes, CompressionOutcome)

        Raises:
            DocumentError: If the input is not a readable PDF
        """
        started = time.perf_counter()
        original_size = len(data)
        source = source or "document"

        if original_size < MIN_SIZE_FOR_COMPRESSION:
            logger.info("%s: too small to compress (%d bytes), keeping as is", source, original_size)
            return bytes(data), self._outcome(original_size, original_size, started, bypassed=True)

        logger.info(
            "%s: compressing %s with profile %s (%s)",
            source, format_size(original_size), self.profile.name, self.mode.value,
        )

        if self.mode is CompressionMode.PAGE_ISOLATED:
            output, stats = self._compress_isolated(data, source)
        else:
            output, stats = self._compress_whole(data, source)

        self._report_progress(CompressionStage.FINALIZING, 100)

        if len(output) >= original_size:
            logger.warning(
                "%s: compression did not reduce size (%d -> %d bytes), keeping original",
                source, original_size, len(output),
            )
            return bytes(data), self._outcome(original_size, original_size, started, stats, regressed=True)

        outcome = self._outcome(original_size, len(output), started, stats)
        logger.info(
            "%s: %s -> %s (%.1f%% smaller) in %.2fs, %d/%d images optimized",
            source,
            format_size(original_size),
            format_size(outcome.compressed_size),
            outcome.compression_ratio * 100,
            outcome.elapsed_seconds,
            stats.images_optimized,
            stats.images_processed,
        )
        if outcome.degraded:
            logger.warning(
                "%s: %d pages left uncompressed, %d pages dropped",
                source, stats.pages_failed, stats.pages_dropped,
            )
        return output, outcome

    def _compress_whole(self, data: bytes, source: str) -> Tuple[bytes, _RunStats]:
        """Recompress images in a single loaded document."""
        self._report_progress(CompressionStage.LOADING, 0)
        doc = document.load_document(data, source)
        stats = _RunStats()

        try:
            page_count = doc.page_count
            logger.debug("%s: loaded %d pages", source, page_count)
            self._report_progress(CompressionStage.LOADING, 100)

            if self.mode is CompressionMode.PARALLEL:
                self._optimize_pages_parallel(doc, stats)
            else:
                seen_xrefs: Set[int] = set()
                for page_index in range(page_count):
                    processed, optimized = optimize_page_images(
                        doc, page_index, self.profile, seen_xrefs
                    )
                    stats.images_processed += processed
                    stats.images_optimized += optimized
                    stats.pages_processed += 1
                    self._report_progress(
                        CompressionStage.PROCESSING_IMAGES,
                        int((page_index + 1) / page_count * 90),
                    )

            document.strip_metadata(doc)
            output = document.serialize(doc)
        finally:
            doc.close()

        return output, stats

    def _optimize_pages_parallel(self, doc: fitz.Document, stats: _RunStats):
        """
        Recompress the images of all pages on a thread pool.

        Extraction and write-back stay on this thread; only Pillow work is
        fanned out. Results are applied in page order.
        """
        seen_xrefs: Set[int] = set()
        pages = [
            collect_page_images(doc, page_index, seen_xrefs)
            for page_index in range(doc.page_count)
        ]
        total = sum(len(p.images) for p in pages) or 1
        done = 0

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            tasks: Dict[Tuple[int, int], _ImageTask] = {}
            for page in pages:
                for image in page.images:
                    task = _ImageTask(page_index=page.page_index, image=image)
                    task.future = executor.submit(_run_image_task, task, self.profile)
                    tasks[(page.page_index, image.xref)] = task

            for page in pages:
                results = []
                for image in page.images:
                    results.append(self._await_image(tasks[(page.page_index, image.xref)]))
                    done += 1
                    self._report_progress(CompressionStage.PROCESSING_IMAGES, int(done / total * 90))

                processed, optimized = apply_page_results(doc, page, results)
                stats.images_processed += processed
                stats.images_optimized += optimized
                stats.pages_processed += 1

    def _await_image(self, task: _ImageTask) -> ImageResult:
        """
        Wait for one image, giving it at most ``image_timeout`` seconds of run time.

        The clock starts when a worker picks the image up; time spent queued
        behind other images does not count.
        """
        if self.image_timeout is None:
            return task.future.result()

        while task.started_at is None:
            wait([task.future], timeout=QUEUE_POLL_SECONDS)
            if task.future.done():
                return task.future.result()

        remaining = task.started_at + self.image_timeout - time.monotonic()
        finished, _ = wait([task.future], timeout=max(remaining, 0.0))
        if finished:
            return task.future.result()

        # The worker thread cannot be interrupted; its late result is discarded
        logger.warning(
            "Page %d, image %d: timed out after %ss, keeping original",
            task.page_index + 1, task.image.xref, self.image_timeout,
        )
        return ImageResult.unchanged(task.image, error="timed out")

    def _compress_isolated(self, data: bytes, source: str) -> Tuple[bytes, _RunStats]:
        """Split into single-page files, compress each, merge in page order."""
        stats = _RunStats()

        with tempfile.TemporaryDirectory(prefix="pdfshrink_pages_") as pages_tmp, \
                tempfile.TemporaryDirectory(prefix="pdfshrink_result_") as result_tmp:
            pages_dir = Path(pages_tmp)
            result_dir = Path(result_tmp)

            self._report_progress(CompressionStage.SPLITTING_PAGES, 0)
            page_count = self._split_to_page_files(data, source, pages_dir)
            self._report_progress(CompressionStage.SPLITTING_PAGES, 100)

            page_files = sorted(pages_dir.glob("*.pdf"), key=_page_file_order)
            if self.parallel_pages:
                outcomes = self._compress_page_files_parallel(page_files, result_dir)
            else:
                outcomes = self._compress_page_files(page_files, result_dir)

            for page_file in page_files:
                if page_file.name not in outcomes:
                    # Merge the page as it was split
                    shutil.copyfile(page_file, result_dir / page_file.name)

            self._report_progress(CompressionStage.MERGING_PAGES, 0)
            output, dropped = self._merge_page_files(result_dir, source)

            # Only pages that made it into the output are counted
            for page_file in page_files:
                outcome = outcomes.get(page_file.name)
                if page_file.name in dropped:
                    stats.pages_dropped += 1
                elif outcome is None:
                    stats.pages_failed += 1
                else:
                    stats.pages_processed += 1
                    stats.images_processed += outcome.images_processed
                    stats.images_optimized += outcome.images_optimized

            self._report_progress(CompressionStage.MERGING_PAGES, 100)

        logger.debug("%s: %d/%d pages compressed independently", source, stats.pages_processed, page_count)
        return output, stats

    def _split_to_page_files(self, data: bytes, source: str, pages_dir: Path) -> int:
        doc = document.load_document(data, source)
        try:
            page_count = doc.page_count
            for page_index in range(page_count):
                single = document.single_page(doc, page_index)
                try:
                    document.save(single, pages_dir / f"page_{page_index + 1}.pdf")
                finally:
                    single.close()
        finally:
            doc.close()
        return page_count

    def _compress_page_files(self, page_files: List[Path], result_dir: Path) -> Dict[str, CompressionOutcome]:
        outcomes: Dict[str, CompressionOutcome] = {}
        for done, page_file in enumerate(page_files, start=1):
            try:
                outcomes[page_file.name] = _compress_page_file(
                    str(page_file), str(result_dir / page_file.name), self.profile
                )
            except Exception as e:
                logger.error("%s: compression failed, merging uncompressed: %s", page_file.name, e)
            self._report_progress(CompressionStage.PROCESSING_IMAGES, int(done / len(page_files) * 90))
        return outcomes

    def _compress_page_files_parallel(self, page_files: List[Path], result_dir: Path) -> Dict[str, CompressionOutcome]:
        outcomes: Dict[str, CompressionOutcome] = {}
        with ProcessPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(
                    _compress_page_file,
                    str(page_file),
                    str(result_dir / page_file.name),
                    self.profile,
                ): page_file
                for page_file in page_files
            }

            for done, future in enumerate(as_completed(futures), start=1):
                page_file = futures[future]
                try:
                    outcomes[page_file.name] = future.result()
                except Exception as e:
                    logger.error("%s: compression failed, merging uncompressed: %s", page_file.name, e)
                self._report_progress(CompressionStage.PROCESSING_IMAGES, int(done / len(page_files) * 90))
        return outcomes

    def _merge_page_files(self, result_dir: Path, source: str) -> Tuple[bytes, Set[str]]:
        """
        Merge single-page files in page-number order.

        Returns:
            (merged PDF bytes, names of the page files that could not be merged)
        """
        merged = fitz.open()
        dropped: Set[str] = set()
        try:
            for page_file in sorted(result_dir.glob("*.pdf"), key=_page_file_order):
                try:
                    with fitz.open(str(page_file)) as part:
                        merged.insert_pdf(part)
                except Exception as e:
                    logger.warning("%s: could not merge, page skipped: %s", page_file.name, e)
                    dropped.add(page_file.name)

            if merged.page_count == 0:
                raise DocumentError("no pages could be reassembled", source)

            logger.info("%s: merging %d compressed pages", source, merged.page_count)
            document.strip_metadata(merged)
            return document.serialize(merged), dropped
        finally:
            merged.close()


def compress_document(
    data: bytes,
    profile: CompressionProfile = DEFAULT_PROFILE,
    mode: Union[CompressionMode, str] = CompressionMode.SEQUENTIAL,
    **options,
) -> Tuple[bytes, CompressionOutcome]:
    """
    Compress PDF bytes.

    Args:
        data: PDF bytes
        profile: Compression profile
        mode: "sequential", "parallel" or "page-isolated"
        **options: Extra DocumentCompressor arguments

    Returns:
        (output bytes, CompressionOutcome)
    """
    return DocumentCompressor(profile, mode, **options).compress(data)


def compress_pdf(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    profile: CompressionProfile = DEFAULT_PROFILE,
    mode: Union[CompressionMode, str] = CompressionMode.SEQUENTIAL,
    **options,
) -> CompressionOutcome:
    """
    Compress a PDF file into another file.

    Args:
        input_path: Path to input PDF
        output_path: Path for output PDF
        profile: Compression profile
        mode: Scheduling mode
        **options: Extra DocumentCompressor arguments

    Returns:
        CompressionOutcome

    Raises:
        OSError: If the input cannot be read or the output cannot be written
        DocumentError: If the input is not a readable PDF
    """
    input_path = Path(input_path)
    output_path = Path(output_path)

    data = input_path.read_bytes()
    compressor = DocumentCompressor(profile, mode, **options)
    output, outcome = compressor.compress(data, source=input_path.name)
    output_path.write_bytes(output)

    logger.info("Saved %s (%s)", output_path, format_size(len(output)))
    return outcome


def compress_pdf_with_dpi(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    max_dpi: int,
    min_dpi: int,
    profile: CompressionProfile = DEFAULT_PROFILE,
    mode: Union[CompressionMode, str] = CompressionMode.SEQUENTIAL,
    **options,
) -> CompressionOutcome:
    """Compress a PDF file with ``profile`` but different DPI bounds."""
    custom = profile.with_dpi(max_dpi, min_dpi)
    logger.info(
        "Using custom DPI %d-%d based on profile %s",
        custom.min_dpi, custom.max_dpi, profile.name,
    )
    return compress_pdf(input_path, output_path, custom, mode, **options)


def run_benchmark(
    directory: Union[str, Path],
    output_directory: Union[str, Path],
    profile: CompressionProfile = DEFAULT_PROFILE,
    mode: Union[CompressionMode, str] = CompressionMode.SEQUENTIAL,
    **options,
) -> Dict[str, CompressionOutcome]:
    """
    Compress every PDF in a directory and report the results.

    Each file is written to ``output_directory/compressed_<name>``. Files that
    fail are logged and left out of the results.

    Returns:
        Mapping of file name to CompressionOutcome, in file-name order
    """
    input_dir = Path(directory)
    output_dir = Path(output_directory)
    output_dir.mkdir(parents=True, exist_ok=True)

    results: Dict[str, CompressionOutcome] = {}
    for path in sorted(input_dir.iterdir()):
        if path.suffix.lower() != ".pdf" or not path.is_file():
            continue
        try:
            results[path.name] = compress_pdf(
                path, output_dir / f"compressed_{path.name}", profile, mode, **options
            )
        except (PDFShrinkError, OSError) as e:
            logger.error("Benchmark failed for %s: %s", path.name, e)

    _log_benchmark_summary(results)
    return results


def _log_benchmark_summary(results: Dict[str, CompressionOutcome]):
    if not results:
        logger.info("No benchmark results")
        return

    total_original = sum(r.original_size for r in results.values())
    total_compressed = sum(r.compressed_size for r in results.values())
    total_seconds = sum(r.elapsed_seconds for r in results.values())
    improved = sum(1 for r in results.values() if r.compressed_size < r.original_size)

    logger.info("Benchmark: %d files, %d reduced, %d unchanged",
                len(results), improved, len(results) - improved)
    logger.info("Benchmark: %s -> %s (%.2f%% smaller), %.2fs total, %.2fs per file",
                format_size(total_original),
                format_size(total_compressed),
                size_reduction(total_original, total_compressed) * 100,
                total_seconds,
                total_seconds / len(results))
