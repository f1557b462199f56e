"""Shared fixtures: small real PDFs built with PyMuPDF and Pillow."""

import io
import os

import fitz  # PyMuPDF
import pytest
from PIL import Image


def noise_png(width, height, mode="RGB"):
    """Random pixels, so the image cannot be encoded much smaller losslessly."""
    image = Image.frombytes(mode, (width, height), os.urandom(width * height * len(mode)))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def build_pdf(page_count, image_size=None, image_pages=None, mode="RGB", shared_image=False,
              images_per_page=1):
    """
    Build a PDF whose pages read "Page 1", "Page 2", ...

    Args:
        page_count: Number of pages
        image_size: (width, height) of the noise image drawn on image pages
        image_pages: 0-based pages that get an image (default: all)
        mode: Pillow mode of the images
        shared_image: Draw the same image object on every image page
        images_per_page: Distinct images stacked on each image page
    """
    doc = fitz.open()
    shared_xref = 0
    shared_data = noise_png(*image_size, mode=mode) if image_size and shared_image else None

    for page_index in range(page_count):
        page = doc.new_page(width=612, height=792)
        page.insert_text((72, 72), f"Page {page_index + 1}", fontsize=24)

        if image_size and (image_pages is None or page_index in image_pages):
            rect = fitz.Rect(72, 120, 540, 700)
            if shared_image:
                if shared_xref:
                    page.insert_image(rect, xref=shared_xref)
                else:
                    shared_xref = page.insert_image(rect, stream=shared_data)
            else:
                height = rect.height / images_per_page
                for slot in range(images_per_page):
                    top = rect.y0 + slot * height
                    page.insert_image(
                        fitz.Rect(rect.x0, top, rect.x1, top + height),
                        stream=noise_png(*image_size, mode=mode),
                    )

    doc.set_metadata({"title": "Fixture", "author": "Test Suite"})
    data = doc.tobytes(deflate=True)
    doc.close()
    return data


def page_texts(data):
    """The text of every page of a PDF held in memory, in order."""
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [page.get_text().strip() for page in doc]


@pytest.fixture
def text_pdf():
    """Twelve text-only pages, comfortably above the bypass threshold."""
    return build_pdf(12)


@pytest.fixture
def image_pdf():
    """Three pages, each with an 800x800 noise image."""
    return build_pdf(3, image_size=(800, 800))


@pytest.fixture
def mixed_pdf():
    """Four pages; only pages 2 and 4 carry images."""
    return build_pdf(4, image_size=(400, 400), image_pages={1, 3})


@pytest.fixture
def image_pdf_file(tmp_path, image_pdf):
    path = tmp_path / "scan.pdf"
    path.write_bytes(image_pdf)
    return path
