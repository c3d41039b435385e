"""
OCR helpers: render PDF pages to images and run Tesseract over them.

PyMuPDF is the primary page renderer; pdf2image (poppler) is used when
PyMuPDF is missing or cannot open the document.
"""
import io
import logging
from typing import List, Union

try:
    import fitz  # PyMuPDF
except ImportError:
    fitz = None

try:
    from pdf2image import convert_from_bytes
except ImportError:
    convert_from_bytes = None

try:
    import pytesseract
    from PIL import Image
except ImportError:
    pytesseract = None
    Image = None

from config import settings
from constants import PAGE_MARKER

logger = logging.getLogger(__name__)


class OCRError(Exception):
    """Raised when pages cannot be rendered or recognised."""
    pass


def is_tesseract_available() -> bool:
    """Return True when the tesseract binary can be invoked."""
    if pytesseract is None:
        return False
    try:
        version = pytesseract.get_tesseract_version()
        logger.debug(f"Tesseract version: {version}")
        return True
    except (pytesseract.TesseractNotFoundError, OSError) as e:
        logger.warning(f"Tesseract is not available: {e}")
        return False


def ocr_image(image, lang: str = None) -> str:
    """Recognise text on a single PIL image."""
    if pytesseract is None:
        raise OCRError("pytesseract is not installed. Install with: pip install pytesseract Pillow")
    try:
        return pytesseract.image_to_string(image, lang=lang or settings.OCR_LANG)
    except Exception as e:
        raise OCRError(f"Tesseract failed: {e}") from e


def ocr_image_bytes(file_content: Union[bytes, io.BytesIO], lang: str = None) -> str:
    """Recognise text on an uploaded photo or scanned image."""
    if Image is None:
        raise OCRError("Pillow is not installed. Install with: pip install Pillow")
    if isinstance(file_content, bytes):
        file_content = io.BytesIO(file_content)
    try:
        image = Image.open(file_content)
        image.load()
    except Exception as e:
        raise OCRError(f"Cannot open image: {e}") from e
    # Tesseract is happier with plain RGB / grayscale input
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    return ocr_image(image, lang).strip()


def _render_with_pymupdf(file_content: bytes, dpi: int, max_pages: int) -> List:
    images = []
    with fitz.open(stream=file_content, filetype="pdf") as doc:
        for page_num, page in enumerate(doc):
            if page_num >= max_pages:
                break
            pix = page.get_pixmap(dpi=dpi)
            images.append(Image.open(io.BytesIO(pix.tobytes("png"))))
    return images


def render_pdf_pages(file_content: bytes, dpi: int = None, max_pages: int = None) -> List:
    """
    Render the first ``max_pages`` pages of a PDF to PIL images.

    Raises:
        OCRError: If neither renderer is usable
    """
    dpi = dpi or settings.OCR_DPI
    max_pages = max_pages or settings.OCR_MAX_PAGES

    if fitz is not None and Image is not None:
        try:
            return _render_with_pymupdf(file_content, dpi, max_pages)
        except Exception as e:
            logger.warning(f"PyMuPDF could not render PDF, trying pdf2image: {e}")

    if convert_from_bytes is None:
        raise OCRError("No PDF renderer available. Install PyMuPDF or pdf2image")
    try:
        return convert_from_bytes(file_content, dpi=dpi, first_page=1, last_page=max_pages)
    except Exception as e:
        raise OCRError(f"pdf2image could not render PDF: {e}") from e


def ocr_pdf(file_content: bytes, dpi: int = None, max_pages: int = None, lang: str = None) -> str:
    """Render PDF pages and OCR them, joining pages with page markers."""
    if not is_tesseract_available():
        raise OCRError("Tesseract OCR is not installed on this host")

    pages = render_pdf_pages(file_content, dpi=dpi, max_pages=max_pages)
    logger.info(f"Running OCR over {len(pages)} PDF page(s)")

    text_parts = []
    for page_num, image in enumerate(pages, start=1):
        try:
            page_text = ocr_image(image, lang).strip()
        except OCRError as e:
            logger.warning(f"OCR failed on page {page_num}: {e}")
            continue
        if page_text:
            text_parts.append(f"{PAGE_MARKER.format(page=page_num)}\n{page_text}")

    return "\n\n".join(text_parts)
