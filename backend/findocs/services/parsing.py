import io
import math
from dataclasses import dataclass, field
from typing import List

import fitz  # PyMuPDF
import pytesseract
from PIL import Image
from docx import Document as DocxDocument
from loguru import logger

from findocs.core.config import get_settings, PDF, DOCX

PDF_FAILED_TEXT = "Failed to extract PDF text. The document may be scanned or image-based."
SPREADSHEET_TEXT = "Excel/CSV content extraction not yet implemented."
IMAGE_TEXT = "Image OCR not yet implemented."
UNSUPPORTED_TEXT = "Unsupported document type for text extraction."

settings = get_settings()


@dataclass
class ExtractionResult:
    page_texts: List[str] = field(default_factory=list)
    page_count: int = 1
    full_text: str = ""


def _placeholder(text: str) -> ExtractionResult:
    return ExtractionResult(page_texts=[text], page_count=1, full_text=text)


def split_evenly(text: str, page_count: int) -> List[str]:
    """Approximate per-page text by cutting ``text`` into ``page_count`` slices of ceil(len/N) chars."""
    if not text:
        return []
    page_count = max(1, page_count)
    per_page = math.ceil(len(text) / page_count)
    return [text[i * per_page:min((i + 1) * per_page, len(text))] for i in range(page_count)]


def parse_pdf(data: bytes) -> ExtractionResult:
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            native_pages = [page.get_text() for page in doc]
            page_count = doc.page_count or 1
    except Exception as e:  # any parser failure degrades to the sentinel page
        logger.warning(f"PDF parsing error: {e}")
        return _placeholder(PDF_FAILED_TEXT)
    full_text = "".join(native_pages)
    if settings.pdf_native_pages:
        page_texts = native_pages if full_text else []
    else:
        page_texts = split_evenly(full_text, page_count)
    logger.info(f"PDF parsed: {page_count} pages, {len(full_text)} characters")
    return ExtractionResult(page_texts=page_texts, page_count=page_count, full_text=full_text)


def parse_docx(data: bytes) -> ExtractionResult:
    doc = DocxDocument(io.BytesIO(data))
    paragraphs = []
    for p in doc.paragraphs:
        t = p.text.strip()
        if t:
            paragraphs.append(t)
    joined = "\n".join(paragraphs)
    return ExtractionResult(page_texts=[joined], page_count=1, full_text=joined)


def parse_image(data: bytes) -> ExtractionResult:
    img = Image.open(io.BytesIO(data))
    text = pytesseract.image_to_string(img).strip()
    if not text:
        return _placeholder(IMAGE_TEXT)
    return ExtractionResult(page_texts=[text], page_count=1, full_text=text)


def extract(data: bytes, content_type: str) -> ExtractionResult:
    """Turn a stored blob into page texts according to its declared MIME type."""
    content_type = (content_type or "").lower()
    if content_type == PDF:
        return parse_pdf(data)
    if "spreadsheet" in content_type or "excel" in content_type:
        return _placeholder(SPREADSHEET_TEXT)
    if "image" in content_type:
        if settings.ocr_images:
            return parse_image(data)
        return _placeholder(IMAGE_TEXT)
    if content_type == DOCX and settings.extract_docx:
        return parse_docx(data)
    return _placeholder(UNSUPPORTED_TEXT)
