import fitz  # PyMuPDF
import pytest

from conftest import build_pdf, page_texts
from pdfshrink import document
from pdfshrink.exceptions import DocumentError, InvalidArgumentError
from pdfshrink.splitter import (
    Partitioner,
    estimate_page_sizes,
    extract_page_range,
    extract_specific_pages,
    group_pages_by_size,
    merge_pdf_files,
    partition_by_size,
    split_all_pdfs_by_size,
    split_pdf_by_size,
    split_pdf_to_pages,
    write_parts,
)

MB = 1024 * 1024


class TestGroupPagesBySize:
    def test_first_fit_pairs(self):
        sizes = {i: 20 * MB for i in range(10)}
        groups = group_pages_by_size(sizes, 50 * MB)
        assert groups == [[0, 1], [2, 3], [4, 5], [6, 7], [8, 9]]

    def test_oversized_page_is_its_own_group(self):
        assert group_pages_by_size({0: 300 * MB}, 200 * MB) == [[0]]

    def test_oversized_page_flushes_current_group(self):
        sizes = {0: 10, 1: 10, 2: 500, 3: 10}
        assert group_pages_by_size(sizes, 100) == [[0, 1], [2], [3]]

    def test_exact_fit_stays_in_group(self):
        assert group_pages_by_size({0: 50, 1: 50, 2: 1}, 100) == [[0, 1], [2]]

    def test_groups_are_ordered_and_complete(self):
        sizes = {i: (i * 37) % 90 + 5 for i in range(40)}
        groups = group_pages_by_size(sizes, 150)

        assert [p for group in groups for p in group] == list(range(40))
        for group in groups:
            assert group
            assert sum(sizes[p] for p in group) <= 150

    @pytest.mark.parametrize("ceiling", [0, -1])
    def test_ceiling_must_be_positive(self, ceiling):
        with pytest.raises(InvalidArgumentError):
            group_pages_by_size({0: 1}, ceiling)

    def test_no_pages(self):
        assert group_pages_by_size({}, 100) == []


def test_estimate_page_sizes(mixed_pdf):
    doc = document.load_document(mixed_pdf)
    try:
        sizes = estimate_page_sizes(doc)
    finally:
        doc.close()

    assert sorted(sizes) == [0, 1, 2, 3]
    # Pages 2 and 4 carry the images
    assert sizes[1] > sizes[0] * 10
    assert sizes[3] > sizes[2] * 10


class TestPartitioner:
    def test_rejects_bad_ceiling(self):
        with pytest.raises(InvalidArgumentError):
            Partitioner(0)

    def test_rejects_empty_document(self):
        doc = fitz.open()
        try:
            with pytest.raises(InvalidArgumentError):
                Partitioner(1000).partition_document(doc)
        finally:
            doc.close()

    def test_rejects_malformed_input(self):
        with pytest.raises(DocumentError):
            Partitioner(1000).partition(b"garbage " * 300)

    def test_partition_is_complete_and_bounded(self):
        data = build_pdf(6, image_size=(200, 200))
        doc = document.load_document(data)
        try:
            sizes = estimate_page_sizes(doc)
        finally:
            doc.close()

        ceiling = max(sizes.values()) * 2 + 1
        result = Partitioner(ceiling).partition(data)

        assert result.page_count == 6
        assert [p for part in result.parts for p in part.pages] == list(range(6))
        assert [part.sequence for part in result.parts] == list(range(1, len(result.parts) + 1))
        assert not result.oversized_parts

        texts = []
        for part in result.parts:
            assert part.estimated_size <= ceiling
            assert 1 <= len(part.pages) <= 2
            texts.extend(page_texts(part.data))
        assert texts == [f"Page {n}" for n in range(1, 7)]

    def test_oversized_page_is_reported(self):
        data = build_pdf(3, image_size=(300, 300), image_pages={1})
        result = Partitioner(50_000).partition(data)

        assert [part.pages for part in result.parts] == [[0], [1], [2]]
        assert [part.pages for part in result.oversized_parts] == [[1]]
        assert result.to_dict()["oversized_parts"] == [2]


def test_partition_by_size_returns_bytes_in_order(mixed_pdf):
    parts = partition_by_size(mixed_pdf, 10 * MB)

    assert len(parts) == 1
    assert page_texts(parts[0]) == ["Page 1", "Page 2", "Page 3", "Page 4"]


def test_split_pdf_by_size_names_parts(tmp_path, mixed_pdf):
    source = tmp_path / "book.pdf"
    source.write_bytes(mixed_pdf)
    output_dir = tmp_path / "parts"

    paths = split_pdf_by_size(source, output_dir, 300_000)

    assert output_dir.is_dir()
    assert [p.name for p in paths] == [f"book_{n:03d}.pdf" for n in range(1, len(paths) + 1)]
    texts = [text for path in paths for text in page_texts(path.read_bytes())]
    assert texts == ["Page 1", "Page 2", "Page 3", "Page 4"]


def test_split_all_pdfs_by_size(tmp_path, mixed_pdf, text_pdf):
    input_dir = tmp_path / "in"
    input_dir.mkdir()
    (input_dir / "one.pdf").write_bytes(mixed_pdf)
    (input_dir / "two.pdf").write_bytes(text_pdf)
    (input_dir / "bad.pdf").write_bytes(b"garbage " * 300)

    total = split_all_pdfs_by_size(input_dir, tmp_path / "out", 10 * MB)

    assert total == 2
    assert (tmp_path / "out" / "one_split" / "one_001.pdf").exists()
    assert (tmp_path / "out" / "two_split" / "two_001.pdf").exists()


def test_split_pdf_to_pages(tmp_path, mixed_pdf):
    source = tmp_path / "doc.pdf"
    source.write_bytes(mixed_pdf)

    count = split_pdf_to_pages(source, tmp_path / "pages")

    assert count == 4
    for n in range(1, 5):
        assert page_texts((tmp_path / "pages" / f"page_{n:03d}.pdf").read_bytes()) == [f"Page {n}"]


class TestExtractPages:
    @pytest.fixture
    def source(self, tmp_path, text_pdf):
        path = tmp_path / "doc.pdf"
        path.write_bytes(text_pdf)
        return path

    def test_page_range(self, source, tmp_path):
        out = tmp_path / "range.pdf"
        assert extract_page_range(source, out, 3, 5) == 3
        assert page_texts(out.read_bytes()) == ["Page 3", "Page 4", "Page 5"]

    def test_page_range_end_is_clamped(self, source, tmp_path):
        out = tmp_path / "range.pdf"
        assert extract_page_range(source, out, 11, 99) == 2

    @pytest.mark.parametrize("start, end", [(0, 3), (5, 4), (20, 30)])
    def test_invalid_page_range(self, source, tmp_path, start, end):
        with pytest.raises(InvalidArgumentError):
            extract_page_range(source, tmp_path / "range.pdf", start, end)

    def test_specific_pages_keep_given_order(self, source, tmp_path):
        out = tmp_path / "picked.pdf"
        assert extract_specific_pages(source, out, [5, 1, 99, 2]) == 3
        assert page_texts(out.read_bytes()) == ["Page 5", "Page 1", "Page 2"]

    def test_no_valid_pages(self, source, tmp_path):
        with pytest.raises(InvalidArgumentError):
            extract_specific_pages(source, tmp_path / "picked.pdf", [0, 100])


class TestMerge:
    def test_merge_in_argument_order(self, tmp_path):
        first = tmp_path / "first.pdf"
        second = tmp_path / "second.pdf"
        first.write_bytes(build_pdf(2))
        second.write_bytes(build_pdf(1))
        out = tmp_path / "merged.pdf"

        assert merge_pdf_files(out, second, first) == 3
        assert page_texts(out.read_bytes()) == ["Page 1", "Page 1", "Page 2"]

    def test_unreadable_input_is_skipped(self, tmp_path):
        good = tmp_path / "good.pdf"
        good.write_bytes(build_pdf(2))
        out = tmp_path / "merged.pdf"

        assert merge_pdf_files(out, tmp_path / "missing.pdf", good) == 2

    def test_no_inputs(self, tmp_path):
        with pytest.raises(InvalidArgumentError):
            merge_pdf_files(tmp_path / "merged.pdf")

    def test_nothing_mergeable(self, tmp_path):
        with pytest.raises(InvalidArgumentError):
            merge_pdf_files(tmp_path / "merged.pdf", tmp_path / "missing.pdf")


def test_write_parts_names_parts_by_sequence(tmp_path, mixed_pdf):
    result = Partitioner(300_000).partition(mixed_pdf)

    paths = write_parts(result, tmp_path / "out" / "nested", "report")

    assert [p.name for p in paths] == [f"report_{part.sequence:03d}.pdf" for part in result.parts]
    for part, path in zip(result.parts, paths):
        assert path.read_bytes() == part.data
