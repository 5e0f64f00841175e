import io

import pytest

from paperqc.application.extraction import (
    DOCX_MIME,
    PDF_MIME,
    ExtractionClient,
    is_multimodal,
    resolve_mime,
)
from paperqc.core.errors import ExtractionError
from paperqc.infra.ocr.mock import MockOCR


class StaticOCR:
    provider_name = "static"

    def __init__(self, text: str):
        self.text = text

    def extract(self, image_bytes: bytes) -> dict:
        return {"text": self.text, "confidence": 0.9}


def _docx_bytes() -> bytes:
    import docx

    document = docx.Document()
    document.add_paragraph("Question: Unit of charge?")
    document.add_paragraph("Answer: Coulomb")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Solution"
    table.rows[0].cells[1].text = "SI unit of charge"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _pdf_bytes(text: str) -> bytes:
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.mark.parametrize(
    "content_type, filename, expected",
    [
        ("text/plain; charset=utf-8", "notes.txt", "text/plain"),
        ("application/octet-stream", "paper.docx", DOCX_MIME),
        (None, "scan.PNG", "image/png"),
        ("", "notes.md", "text/markdown"),
        (None, None, "application/octet-stream"),
    ],
)
def test_resolve_mime(content_type, filename, expected):
    assert resolve_mime(content_type, filename) == expected


def test_is_multimodal():
    assert is_multimodal(PDF_MIME)
    assert is_multimodal("image/jpeg")
    assert not is_multimodal(DOCX_MIME)
    assert not is_multimodal("text/plain")


def test_plain_text_is_normalized():
    text = ExtractionClient().extract_text(b"Question: 1+1?\r\nSolution: 2\r\n", "text/plain")

    assert text == "Question: 1+1?\nSolution: 2"


def test_docx_paragraphs_and_tables():
    text = ExtractionClient().extract_text(_docx_bytes(), DOCX_MIME, "unit.docx")

    assert "Question: Unit of charge?" in text
    assert "Solution | SI unit of charge" in text


def test_pdf_embedded_text():
    text = ExtractionClient().extract_text(_pdf_bytes("Question: Speed of sound?"), PDF_MIME, "paper.pdf")

    assert "Speed of sound" in text


def test_corrupt_documents_raise_extraction_error():
    client = ExtractionClient()

    with pytest.raises(ExtractionError) as exc_info:
        client.extract_text(b"not a zip", DOCX_MIME, "broken.docx")
    assert exc_info.value.filename == "broken.docx"

    with pytest.raises(ExtractionError):
        client.extract_text(b"not a pdf", PDF_MIME, "broken.pdf")


def test_images_go_through_ocr():
    assert ExtractionClient(ocr=StaticOCR("Question: 2+2?")).extract_text(b"img", "image/png") == "Question: 2+2?"

    assert "Question: What is 6 x 7?" in ExtractionClient(ocr=MockOCR()).extract_text(b"img", "image/png")
    with pytest.raises(ExtractionError, match="empty"):
        ExtractionClient(ocr=MockOCR()).extract_text(b"", "image/png")
    with pytest.raises(ExtractionError):
        ExtractionClient(ocr=None).extract_text(b"img", "image/png")


def test_empty_and_unsupported_inputs():
    client = ExtractionClient()

    with pytest.raises(ExtractionError):
        client.extract_text(b"   \n", "text/plain")
    with pytest.raises(ExtractionError, match="Unsupported"):
        client.extract_text(b"PK", "application/zip", "bundle.zip")
