import io
from types import SimpleNamespace

import fitz
import pytest
from PIL import Image

from utils import ocr


class FakeTesseract:
    TesseractNotFoundError = OSError

    def __init__(self, texts=None):
        self.texts = list(texts or [])
        self.seen = []

    def get_tesseract_version(self):
        return "5.3.0"

    def image_to_string(self, image, lang=None):
        self.seen.append((image.size, lang))
        return self.texts.pop(0) if self.texts else f"страница {len(self.seen)}"


def _blank_pdf(pages: int) -> bytes:
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=200, height=200)
    data = doc.tobytes()
    doc.close()
    return data


def _broken_fitz():
    def open_(*args, **kwargs):
        raise RuntimeError("cannot open broken document")
    return SimpleNamespace(open=open_)


@pytest.fixture
def tesseract(monkeypatch):
    fake = FakeTesseract()
    monkeypatch.setattr(ocr, "pytesseract", fake)
    return fake


def test_pymupdf_renders_at_most_max_pages():
    images = ocr.render_pdf_pages(_blank_pdf(5), dpi=36, max_pages=2)
    assert len(images) == 2
    assert all(isinstance(image, Image.Image) for image in images)


def test_pdf2image_is_used_when_pymupdf_fails(monkeypatch):
    calls = []

    def convert(content, dpi, first_page, last_page):
        calls.append((content, dpi, first_page, last_page))
        return [Image.new("RGB", (20, 20), "white")]

    monkeypatch.setattr(ocr, "fitz", _broken_fitz())
    monkeypatch.setattr(ocr, "convert_from_bytes", convert)

    images = ocr.render_pdf_pages(b"%PDF-broken", dpi=150, max_pages=3)

    assert len(images) == 1
    assert calls == [(b"%PDF-broken", 150, 1, 3)]


def test_no_renderer_left_is_an_ocr_error(monkeypatch):
    monkeypatch.setattr(ocr, "fitz", _broken_fitz())
    monkeypatch.setattr(ocr, "convert_from_bytes", None)
    with pytest.raises(ocr.OCRError):
        ocr.render_pdf_pages(b"%PDF-broken")


def test_ocr_pdf_joins_pages_with_markers(monkeypatch, tesseract):
    tesseract.texts = ["Договор поставки", "  ", "Подписи сторон"]
    monkeypatch.setattr(ocr, "fitz", _broken_fitz())
    monkeypatch.setattr(ocr, "convert_from_bytes", lambda content, **kwargs: [
        Image.new("RGB", (20, 20), "white") for _ in range(3)
    ])

    text = ocr.ocr_pdf(b"%PDF-scan", lang="rus")

    assert text == "--- Страница 1 ---\nДоговор поставки\n\n--- Страница 3 ---\nПодписи сторон"
    assert [lang for _, lang in tesseract.seen] == ["rus", "rus", "rus"]


def test_ocr_pdf_respects_page_cap(monkeypatch, tesseract):
    monkeypatch.setattr(ocr.settings, "OCR_MAX_PAGES", 2)
    text = ocr.ocr_pdf(_blank_pdf(4), dpi=36)
    assert len(tesseract.seen) == 2
    assert "--- Страница 2 ---" in text
    assert "--- Страница 3 ---" not in text


def test_ocr_pdf_without_tesseract(monkeypatch):
    monkeypatch.setattr(ocr, "pytesseract", None)
    with pytest.raises(ocr.OCRError):
        ocr.ocr_pdf(_blank_pdf(1))


def test_ocr_image_bytes_converts_palette_images(tesseract):
    image = Image.new("P", (30, 30))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")

    assert ocr.ocr_image_bytes(buffer.getvalue()) == "страница 1"
    assert tesseract.seen == [((30, 30), ocr.settings.OCR_LANG)]
