from pathlib import Path

import pytest

from pdfshrink.exceptions import InvalidArgumentError
from pdfshrink.utils import (
    default_output_path,
    default_split_dir,
    format_size,
    numbered_filename,
    page_number_from_name,
    parse_size,
    size_reduction,
)


@pytest.mark.parametrize("text, expected", [
    ("50MB", 50 * 1024 * 1024),
    ("800kb", 800 * 1024),
    ("800k", 800 * 1024),
    ("1.5GB", int(1.5 * 1024 ** 3)),
    ("1.5GiB", int(1.5 * 1024 ** 3)),
    ("2 M", 2 * 1024 * 1024),
    ("1024", 1024),
    ("1024B", 1024),
])
def test_parse_size(text, expected):
    assert parse_size(text) == expected


@pytest.mark.parametrize("text", ["", "MB", "fifty MB", "1.2.3MB", "10TB", "-5MB"])
def test_parse_size_invalid(text):
    with pytest.raises(InvalidArgumentError, match="Invalid size format"):
        parse_size(text)


def test_parse_size_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_size("lots")


@pytest.mark.parametrize("size, expected", [
    (0, "0 B"),
    (512, "512 B"),
    (2048, "2.0 KB"),
    (5 * 1024 * 1024, "5.00 MB"),
    (3 * 1024 ** 3, "3.00 GB"),
])
def test_format_size(size, expected):
    assert format_size(size) == expected


def test_size_reduction():
    assert size_reduction(100, 35) == pytest.approx(0.65)
    assert size_reduction(100, 100) == 0.0
    assert size_reduction(0, 0) == 0.0


def test_default_paths():
    assert default_output_path("docs/report.pdf") == Path("docs/report_compressed.pdf")
    assert default_output_path("report.pdf", suffix="_small") == Path("report_small.pdf")
    assert default_split_dir("docs/report.pdf") == Path("docs/report_split")


def test_numbered_filename_is_zero_padded():
    assert numbered_filename("report_", 7) == "report_007.pdf"
    assert numbered_filename("page_", 1234) == "page_1234.pdf"


def test_page_number_from_name():
    assert page_number_from_name("page_12.pdf") == 12
    assert page_number_from_name("page_003.PDF") == 3
    assert page_number_from_name("cover.pdf") is None
