"""PDF parsing and text extraction."""

import logging

import fitz  # PyMuPDF

from kbchat.core.errors import InvalidSourceError
from kbchat.core.utils import normalize_block_text

logger = logging.getLogger(__name__)


def extract_pdf_text(pdf_bytes: bytes) -> tuple[str, dict]:
    """Extract text from an uploaded PDF, one paragraph block per page."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        logger.error(f"Error opening PDF: {e}")
        raise InvalidSourceError("The uploaded file is not a readable PDF") from e

    pages = []
    try:
        for page in doc:
            text = normalize_block_text(page.get_text())
            if text:
                pages.append(text)
        metadata = {
            "page_count": len(doc),
            "title": (doc.metadata or {}).get("title") or None,
            "author": (doc.metadata or {}).get("author") or None,
        }
    finally:
        doc.close()

    if not pages:
        # Scanned/image-only PDFs have no text layer
        raise InvalidSourceError(
            "No extractable text found in PDF. It may be a scanned document; "
            "paste the content as text instead."
        )

    return "\n\n".join(pages), metadata
