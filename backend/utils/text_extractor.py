"""
Text Extraction Layer

Converts uploaded files (PDF, DOC, DOCX, RTF, HTML, TXT, photos) to clean
raw text.  PDFs try the embedded text layer first and fall back to OCR when
the layer is missing or too sparse.
"""

import asyncio
import io
import logging
import os
import re as _re
import subprocess
import tempfile
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

try:
    from PyPDF2 import PdfReader
except ImportError:
    PdfReader = None

try:
    from docx import Document as DocxDocument
except ImportError:
    DocxDocument = None

import chardet
from bs4 import BeautifulSoup
from striprtf.striprtf import rtf_to_text

from config import settings
from constants import (
    IMAGE_FILE_TYPES,
    MAX_FILE_SIZE_MB,
    MAX_PDF_PAGES,
    MAX_RTF_SIZE_MB,
    MAX_TEXT_CHARS,
    TRUNCATION_MARKER,
)
from utils import ocr

logger = logging.getLogger(__name__)


class TextExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


class DownloadFailure(TextExtractionError):
    """The source file could not be fetched from the chat platform."""
    pass


class DownloadTooLarge(DownloadFailure):
    """The source file exceeds the download size cap."""
    pass


class UnsupportedFormat(TextExtractionError):
    pass


class ExtractionTimeout(TextExtractionError):
    pass


class EmptyResult(TextExtractionError):
    pass


class ParserFailure(TextExtractionError):
    pass


@dataclass
class ExtractionResult:
    text: str
    method: str
    page_count: int = 0
    ocr_used: bool = False
    truncated: bool = False


def _as_bytes(file_content: Union[bytes, io.BytesIO]) -> bytes:
    if isinstance(file_content, io.BytesIO):
        return file_content.getvalue()
    return file_content


def extract_text_from_pdf(file_content: Union[bytes, io.BytesIO]) -> ExtractionResult:
    """
    Extract text from a PDF file, falling back to OCR for scanned documents.

    Args:
        file_content: PDF file content as bytes or BytesIO object

    Returns:
        ExtractionResult with ``ocr_used`` set when the text came from OCR

    Raises:
        EmptyResult: If neither the text layer nor OCR produced any text
    """
    content = _as_bytes(file_content)
    raw_text = ""
    page_count = 0

    if PdfReader is None:
        logger.warning("PyPDF2 is not installed, going straight to OCR")
    else:
        try:
            pdf_reader = PdfReader(io.BytesIO(content))
            page_count = len(pdf_reader.pages)

            text_parts = []
            for page_num, page in enumerate(pdf_reader.pages):
                if page_num >= MAX_PDF_PAGES:
                    logger.info(f"PDF has {page_count} pages, reading only the first {MAX_PDF_PAGES}")
                    break
                try:
                    page_text = page.extract_text()
                    if page_text:
                        text_parts.append(page_text)
                except Exception as e:
                    logger.warning(f"Failed to extract text from page {page_num + 1}: {e}")
                    continue

            raw_text = _clean_pdf_text("\n\n".join(text_parts), min(page_count, MAX_PDF_PAGES)).strip()
        except Exception as e:
            logger.warning(f"PDF text layer is unreadable: {e}")

    if not _is_sparse(raw_text, page_count):
        return ExtractionResult(text=raw_text, method="pdf", page_count=page_count)

    # ── Scanned or image-only PDF: OCR the rendered pages ──
    logger.info(f"PDF text layer too sparse ({len(raw_text)} chars / {page_count} pages), running OCR")
    ocr_text = ""
    try:
        ocr_text = ocr.ocr_pdf(content).strip()
    except ocr.OCRError as e:
        logger.warning(f"OCR fallback failed: {e}")

    if ocr_text and len(ocr_text) > len(raw_text):
        return ExtractionResult(text=ocr_text, method="pdf_ocr", page_count=page_count, ocr_used=True)
    if raw_text:
        return ExtractionResult(text=raw_text, method="pdf", page_count=page_count)
    raise EmptyResult("No text could be extracted from PDF, even with OCR")


def _is_sparse(raw_text: str, num_pages: int) -> bool:
    """True when the text layer holds fewer characters than expected for the page count."""
    if not raw_text:
        return True
    pages = max(1, min(num_pages, MAX_PDF_PAGES))
    return len(raw_text) < settings.PDF_MIN_CHARS_PER_PAGE * pages


def _clean_pdf_text(raw_text: str, num_pages: int) -> str:
    """
    PDF-specific cleanup:
    - Remove repeated header / footer lines that appear on most pages
    - Strip standalone page numbers ("5", "- 3 -", "Страница 2")
    """
    lines = raw_text.split('\n')
    if num_pages < 2 or len(lines) < 10:
        return raw_text

    def _normalise_line(line: str) -> str:
        """Collapse page-number-like tokens so header variants match."""
        s = line.strip()
        s = _re.sub(r'\|\s*\d{1,4}\s', '| # ', s)
        s = _re.sub(r'(?:^|\s)\d{1,4}(?:\s|$)', ' # ', s)
        return ' '.join(s.split())

    norm_counts = Counter()
    for line in lines:
        stripped = line.strip()
        if stripped:
            norm_counts[_normalise_line(stripped)] += 1

    # Lines whose normalised form appears on >40 % of pages are headers/footers
    repeat_threshold = max(2, int(num_pages * 0.4))
    repeated_norms = {norm for norm, cnt in norm_counts.items()
                      if cnt >= repeat_threshold and len(norm) < 140}

    cleaned = []
    for line in lines:
        stripped = line.strip()
        if stripped and _normalise_line(stripped) in repeated_norms:
            continue
        if _re.match(r'^\s*[-–]?\s*(?:page\s+|стр\.?\s*|страница\s+)?\d{1,4}\s*[-–]?\s*$', line, _re.IGNORECASE):
            continue
        cleaned.append(line)

    return '\n'.join(cleaned)


def extract_text_from_docx(file_content: Union[bytes, io.BytesIO]) -> str:
    """
    Extract text from a DOCX file.

    Args:
        file_content: DOCX file content as bytes or BytesIO object

    Returns:
        Extracted text as a string

    Raises:
        TextExtractionError: If DOCX extraction fails
    """
    if DocxDocument is None:
        raise ParserFailure("python-docx is not installed. Install with: pip install python-docx")

    try:
        if isinstance(file_content, bytes):
            file_content = io.BytesIO(file_content)

        doc = DocxDocument(file_content)

        text_parts = []
        for paragraph in doc.paragraphs:
            if paragraph.text.strip():
                text_parts.append(paragraph.text)

        # Requisites usually live in tables; skip purely numeric ones
        for table in doc.tables:
            total_cells = 0
            numeric_cells = 0
            for row in table.rows:
                for cell in row.cells:
                    txt = cell.text.strip()
                    if txt:
                        total_cells += 1
                        if _re.match(r'^[\d\s\.\,\$\%\€\₽\(\)\-\+\/\|:]+$', txt):
                            numeric_cells += 1
            if total_cells > 0 and (numeric_cells / total_cells) > 0.5:
                continue
            for row in table.rows:
                for cell in row.cells:
                    if cell.text.strip():
                        text_parts.append(cell.text)

        raw_text = "\n\n".join(text_parts)

        if not raw_text.strip():
            raise EmptyResult("No text could be extracted from DOCX")

        return raw_text.strip()

    except Exception as e:
        if isinstance(e, TextExtractionError):
            raise
        raise ParserFailure(f"Failed to extract text from DOCX: {str(e)}")


def extract_text_from_doc(file_content: Union[bytes, io.BytesIO]) -> str:
    """
    Extract text from a legacy Word (.doc) file with the ``antiword`` tool.

    Some ".doc" uploads are really DOCX files with the wrong extension, so
    python-docx is tried when antiword is missing or rejects the file.
    """
    content = _as_bytes(file_content)
    fd, tmp_path = tempfile.mkstemp(suffix=".doc", dir=_temp_dir())
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        try:
            completed = subprocess.run(
                ["antiword", "-m", "UTF-8.txt", tmp_path],
                capture_output=True,
                timeout=settings.DOC_CONVERT_TIMEOUT_SECONDS,
                check=True,
            )
            raw_text = completed.stdout.decode("utf-8", errors="replace").strip()
            if raw_text:
                return raw_text
            raise EmptyResult("No text could be extracted from DOC")
        except subprocess.TimeoutExpired:
            raise ExtractionTimeout(
                f"DOC conversion took longer than {settings.DOC_CONVERT_TIMEOUT_SECONDS}s"
            )
        except (FileNotFoundError, subprocess.CalledProcessError) as e:
            logger.warning(f"antiword could not read the file ({e}), trying python-docx")
            try:
                return extract_text_from_docx(content)
            except TextExtractionError:
                raise ParserFailure(f"Failed to extract text from DOC: {e}")
    finally:
        Path(tmp_path).unlink(missing_ok=True)


def extract_text_from_rtf(file_content: Union[bytes, io.BytesIO]) -> str:
    """Extract text from an RTF file using the code page the file declares."""
    content = _as_bytes(file_content)
    if len(content) > MAX_RTF_SIZE_MB * 1024 * 1024:
        raise DownloadTooLarge(f"RTF file is larger than {MAX_RTF_SIZE_MB} MB")

    try:
        # RTF is 7-bit; non-ASCII characters are escaped against \ansicpgNNNN
        raw = content.decode("latin-1")
        codepage = _re.search(r'\\ansicpg(\d+)', raw)
        encoding = f"cp{codepage.group(1)}" if codepage else "cp1251"
        raw_text = rtf_to_text(raw, encoding=encoding, errors="ignore")
    except Exception as e:
        raise ParserFailure(f"Failed to extract text from RTF: {str(e)}")

    if not raw_text.strip():
        raise EmptyResult("No text could be extracted from RTF")
    return raw_text.strip()


def extract_text_from_html(file_content: Union[bytes, io.BytesIO]) -> str:
    """Extract visible text from an HTML page."""
    try:
        soup = BeautifulSoup(_as_bytes(file_content), "html.parser")
        for tag in soup(["script", "style", "head", "noscript"]):
            tag.decompose()
        raw_text = soup.get_text("\n")
    except Exception as e:
        raise ParserFailure(f"Failed to extract text from HTML: {str(e)}")

    raw_text = _re.sub(r'[ \t]+', ' ', raw_text)
    raw_text = _re.sub(r'\n\s*\n+', '\n\n', raw_text).strip()
    if not raw_text:
        raise EmptyResult("No text could be extracted from HTML")
    return raw_text


def extract_text_from_txt(file_content: Union[bytes, io.BytesIO]) -> str:
    """
    Extract text from a TXT file.

    UTF-8 is tried first, then the encoding chardet detects, then cp1251
    (the usual encoding of Russian documents saved on Windows).
    """
    content = _as_bytes(file_content)
    raw_text = None
    try:
        raw_text = content.decode("utf-8")
    except UnicodeDecodeError:
        detected = chardet.detect(content)
        encoding = detected.get("encoding")
        if encoding:
            try:
                raw_text = content.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                raw_text = None
        if raw_text is None:
            raw_text = content.decode("cp1251", errors="replace")

    if not raw_text.strip():
        raise EmptyResult("No text could be extracted from TXT file")
    return raw_text.strip()


def extract_text_from_image(file_content: Union[bytes, io.BytesIO]) -> str:
    """OCR a photo or scanned image."""
    try:
        raw_text = ocr.ocr_image_bytes(file_content)
    except ocr.OCRError as e:
        raise ParserFailure(f"Failed to recognise text on image: {e}")
    if not raw_text:
        raise EmptyResult("No text could be recognised on the image")
    return raw_text


def extract_document(file_content: Union[bytes, io.BytesIO], filename: str) -> ExtractionResult:
    """
    Extract text from a file based on its extension.

    Args:
        file_content: File content as bytes or BytesIO object
        filename: Name of the file (used to determine file type)

    Returns:
        ExtractionResult with the cleaned, size-capped text

    Raises:
        TextExtractionError: Always one of the typed subclasses
    """
    content = _as_bytes(file_content)
    if len(content) > MAX_FILE_SIZE_MB * 1024 * 1024:
        raise DownloadTooLarge(
            f"File too large ({len(content) / (1024 * 1024):.1f} MB). Maximum allowed: {MAX_FILE_SIZE_MB} MB"
        )

    ext = Path(filename).suffix.lower()
    try:
        if ext == '.pdf':
            result = extract_text_from_pdf(content)
        elif ext == '.docx':
            result = ExtractionResult(extract_text_from_docx(content), "docx")
        elif ext == '.doc':
            result = ExtractionResult(extract_text_from_doc(content), "doc")
        elif ext == '.rtf':
            result = ExtractionResult(extract_text_from_rtf(content), "rtf")
        elif ext in ('.html', '.htm'):
            result = ExtractionResult(extract_text_from_html(content), "html")
        elif ext in IMAGE_FILE_TYPES:
            result = ExtractionResult(extract_text_from_image(content), "image_ocr", ocr_used=True)
        elif ext == '.txt':
            result = ExtractionResult(extract_text_from_txt(content), "txt")
        else:
            # Unknown extension: accept it only if it looks like plain text
            if b"\x00" in content[:8192]:
                raise UnsupportedFormat(f"Unsupported file type: {ext or 'no extension'}")
            logger.info(f"Unknown extension '{ext}', reading as plain text")
            result = ExtractionResult(extract_text_from_txt(content), "txt")
    except Exception as e:
        if isinstance(e, TextExtractionError):
            raise
        raise ParserFailure(f"Failed to extract text from {ext or 'file'}: {str(e)}") from e

    result.text = clean_text(result.text)
    if not result.text:
        raise EmptyResult(f"No text could be extracted from {filename}")

    if len(result.text) > MAX_TEXT_CHARS:
        logger.info(f"Text of {filename} truncated from {len(result.text)} to {MAX_TEXT_CHARS} chars")
        result.text = result.text[:MAX_TEXT_CHARS] + TRUNCATION_MARKER
        result.truncated = True

    logger.info(
        f"Extracted {len(result.text)} chars from {filename} "
        f"(method={result.method}, ocr={result.ocr_used})"
    )
    return result


def extract_text(file_content: Union[bytes, io.BytesIO], filename: str) -> str:
    """Extract text from a file and return only the text."""
    return extract_document(file_content, filename).text


def extract_from_path(path: Union[str, Path], filename: Optional[str] = None) -> ExtractionResult:
    """
    Extract text from a downloaded temporary file and delete the file afterwards,
    whether or not extraction succeeded.
    """
    path = Path(path)
    try:
        content = path.read_bytes()
        return extract_document(content, filename or path.name)
    except OSError as e:
        raise ParserFailure(f"Cannot read downloaded file: {e}") from e
    finally:
        path.unlink(missing_ok=True)
        logger.debug(f"Removed temporary file {path}")


async def extract_from_path_async(path: Union[str, Path], filename: Optional[str] = None,
                                  timeout: Optional[float] = None) -> ExtractionResult:
    """
    Run :func:`extract_from_path` in a worker thread with a hard timeout.

    The worker thread is not killed on timeout; it finishes in the background
    and still removes the temporary file.
    """
    timeout = timeout or settings.EXTRACTION_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(asyncio.to_thread(extract_from_path, path, filename), timeout)
    except asyncio.TimeoutError:
        raise ExtractionTimeout(f"Extraction did not finish within {timeout:.0f}s")


def clean_text(raw_text: str) -> str:
    """
    Clean extracted text by removing excessive whitespace and normalizing line breaks.

    Args:
        raw_text: Raw extracted text

    Returns:
        Cleaned text
    """
    lines = [line.strip() for line in raw_text.replace('\r\n', '\n').split('\n')]
    lines = [line for line in lines if line]
    cleaned = '\n'.join(lines)
    cleaned = _re.sub(r'[ \t\u00a0]+', ' ', cleaned)
    return cleaned


def _temp_dir() -> str:
    os.makedirs(settings.TEMP_DIR, exist_ok=True)
    return settings.TEMP_DIR
