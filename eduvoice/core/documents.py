"""
Source document handling.

Quizzes and interviews are built from uploaded PDFs, which arrive either as
raw bytes or as base64 data URIs.
"""

import base64
import binascii
import io

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .errors import EduVoiceError


class DocumentError(EduVoiceError):
    """The uploaded document could not be read."""


def decode_data_uri(data_uri: str) -> bytes:
    """Decode a ``data:<mime>;base64,<payload>`` URI.

    Raises:
        DocumentError: If the URI is not base64 encoded or is malformed
    """
    if not data_uri.startswith("data:") or "," not in data_uri:
        raise DocumentError("Expected a data URI")
    header, payload = data_uri.split(",", 1)
    if not header.endswith(";base64"):
        raise DocumentError("Data URI must use base64 encoding")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DocumentError(f"Invalid base64 payload: {exc}") from exc


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every page.

    Raises:
        DocumentError: If the PDF cannot be parsed or has no text
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError) as exc:
        raise DocumentError(f"Could not read PDF: {exc}") from exc

    text = "\n\n".join(p.strip() for p in pages if p.strip())
    if not text:
        raise DocumentError("PDF contains no extractable text")
    return text


def document_text(source: str) -> str:
    """Text of a document given as a PDF data URI or as plain text."""
    if source.startswith("data:"):
        return extract_pdf_text(decode_data_uri(source))
    return source
