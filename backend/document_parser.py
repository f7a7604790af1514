"""
Document text extraction for AI task extraction.

PDF text comes from pdfplumber; email messages (.eml) are read with the
standard library email package.
"""

import logging
import re
from email import policy
from email.parser import BytesParser
from typing import Any, Dict, List

import pdfplumber

logger = logging.getLogger(__name__)


class PDFTextParser:
    """
    Reads the text layer of a PDF document.

    Usage:
        with PDFTextParser(path) as parser:
            text = parser.extract_text()
    """

    def __init__(self, pdf_path: str):
        """
        Initialize the PDF parser.

        Args:
            pdf_path: Path to the PDF file to read
        """
        self.pdf_path = pdf_path
        self.pdf = None
        self.text_content = None

    def __enter__(self):
        """Context manager entry."""
        self.pdf = pdfplumber.open(self.pdf_path)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        if self.pdf:
            self.pdf.close()

    @property
    def page_count(self) -> int:
        return len(self.pdf.pages) if self.pdf else 0

    def extract_text(self) -> str:
        """
        Extract all text content from the PDF.

        Returns:
            Combined text from all pages, separated by blank lines
        """
        if self.text_content is None:
            text_parts = []
            for page in self.pdf.pages:
                text = page.extract_text()
                if text:
                    text_parts.append(text)
            self.text_content = "\n\n".join(text_parts)
        return self.text_content


def extract_pdf_text(pdf_path: str) -> Dict[str, Any]:
    """
    Extract the text of a PDF file.

    Returns:
        {"text": str, "page_count": int}

    Raises:
        ValueError: If the PDF has no extractable text (e.g. a scanned image)
    """
    logger.info(f"Extracting text from PDF: {pdf_path}")
    with PDFTextParser(pdf_path) as parser:
        text = parser.extract_text()
        page_count = parser.page_count

    if not text.strip():
        raise ValueError("No extractable text found in PDF")
    return {"text": text, "page_count": page_count}


def html_to_text(html: str) -> str:
    """Very basic HTML to text conversion: drop style/script blocks and tags."""
    if not html:
        return ""
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", html, flags=re.IGNORECASE)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def parse_email(raw: bytes) -> Dict[str, Any]:
    """
    Parse an RFC 822 message.

    Args:
        raw: Message bytes as read from an .eml file

    Returns:
        Dictionary with subject, from, date, text, html, has_attachments
        and attachments (file names)
    """
    message = BytesParser(policy=policy.default).parsebytes(raw)

    plain_parts: List[str] = []
    html_parts: List[str] = []
    attachments: List[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        disposition = part.get_content_disposition()
        if disposition == "attachment":
            attachments.append(part.get_filename() or "unnamed")
            continue

        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content = part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")

        if content_type == "text/plain":
            plain_parts.append(content)
        else:
            html_parts.append(content)

    html = "\n".join(html_parts)
    text = "\n".join(plain_parts).strip()
    if not text and html:
        text = html_to_text(html)

    return {
        "subject": str(message.get("subject", "") or ""),
        "from": str(message.get("from", "") or ""),
        "date": str(message.get("date", "") or ""),
        "text": text,
        "html": html,
        "has_attachments": bool(attachments),
        "attachments": attachments,
    }
