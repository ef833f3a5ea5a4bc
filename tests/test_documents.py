"""
Unit tests for source document handling.
"""

import base64

import pytest

from eduvoice.core.documents import (
    DocumentError,
    decode_data_uri,
    document_text,
    extract_pdf_text,
)


def _pdf_bytes(text):
    """Build a one-page PDF showing text in Helvetica."""
    content = f"BT /F1 18 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        b"<< /Length " + str(len(content)).encode() + b" >>\nstream\n"
        + content + b"\nendstream",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


def _data_uri(data, mime="application/pdf"):
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


class TestDataUri:
    """Test data URI decoding."""

    def test_decode(self):
        assert decode_data_uri(_data_uri(b"hello", "text/plain")) == b"hello"

    def test_not_a_data_uri(self):
        with pytest.raises(DocumentError, match="Expected a data URI"):
            decode_data_uri("https://example.com/notes.pdf")

    def test_requires_base64(self):
        with pytest.raises(DocumentError, match="base64"):
            decode_data_uri("data:text/plain,hello")

    def test_invalid_payload(self):
        with pytest.raises(DocumentError, match="Invalid base64"):
            decode_data_uri("data:application/pdf;base64,@@@")


class TestPdfText:
    """Test PDF text extraction."""

    def test_extracts_page_text(self):
        text = extract_pdf_text(_pdf_bytes("Photosynthesis basics"))
        assert "Photosynthesis basics" in text

    def test_garbage_rejected(self):
        with pytest.raises(DocumentError):
            extract_pdf_text(b"this is not a pdf")

    def test_document_text_from_data_uri(self):
        text = document_text(_data_uri(_pdf_bytes("Cell membranes")))
        assert "Cell membranes" in text

    def test_document_text_passes_plain_text(self):
        assert document_text("Already extracted notes") == "Already extracted notes"
