"""PDF processing utilities."""
import logging
import os

import fitz  # PyMuPDF
import pdfplumber

from errors import ExtractionFailed

logger = logging.getLogger("Ledger.PDF")


def get_metadata(file_path: str) -> dict:
    """Extract PDF metadata using PyMuPDF."""
    doc = fitz.open(file_path)
    try:
        metadata = dict(doc.metadata or {})
        metadata["page_count"] = doc.page_count
        metadata["is_encrypted"] = doc.is_encrypted or doc.needs_pass
    finally:
        doc.close()
    return metadata


def extract_text_with_pdfplumber(file_path: str) -> list[dict]:
    """
    Extract text from each page of a PDF using pdfplumber.
    Returns a list of {page_number, text} dicts.
    """
    pages = []
    with pdfplumber.open(file_path) as pdf:
        for i, page in enumerate(pdf.pages):
            text = page.extract_text() or ""
            pages.append({"page_number": i + 1, "text": text})
    return pages


def extract_text(file_path: str) -> str:
    """Extract all text from a PDF, concatenated page by page.

    Raises FileNotFoundError when the path does not exist and
    ExtractionFailed when the file is encrypted or cannot be parsed.
    A readable PDF without a text layer yields an empty string.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"PDF file not found: {file_path}")

    try:
        metadata = get_metadata(file_path)
    except Exception as e:
        logger.error(f"Could not open PDF {file_path}: {e}")
        raise ExtractionFailed("The PDF could not be read (corrupt or unsupported file)") from e

    if metadata["is_encrypted"]:
        raise ExtractionFailed("The PDF is password protected")

    try:
        pages = extract_text_with_pdfplumber(file_path)
    except Exception as e:
        logger.error(f"Text extraction failed for {file_path}: {e}")
        raise ExtractionFailed("Text could not be extracted from the PDF") from e

    text = "\n\n".join(p["text"] for p in pages).strip()
    logger.info(f"  📄 Extracted {len(text)} characters from {metadata['page_count']} page(s)")
    return text
