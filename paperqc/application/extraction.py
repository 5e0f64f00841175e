from __future__ import annotations

import io
import mimetypes

from paperqc.core.errors import ExtractionError
from paperqc.infra.ports.ocr import OCRPort

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MIME = "application/pdf"
_TEXT_MIMES = ("text/plain", "text/markdown")
_IMAGE_MIMES = ("image/png", "image/jpeg", "image/webp")
SUPPORTED_MIMES = (PDF_MIME, DOCX_MIME, *_TEXT_MIMES, *_IMAGE_MIMES)


def resolve_mime(content_type: str | None, filename: str | None) -> str:
    """Prefer the declared type; fall back to the file extension for generic uploads."""
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime and mime != "application/octet-stream":
        return mime
    lower_name = (filename or "").lower()
    if lower_name.endswith(".docx"):
        return DOCX_MIME
    if lower_name.endswith(".md"):
        return "text/markdown"
    guessed, _ = mimetypes.guess_type(lower_name)
    return (guessed or "application/octet-stream").lower()


def is_multimodal(mime_type: str) -> bool:
    """PDF and images can go straight to a media-capable audit engine."""
    return mime_type == PDF_MIME or mime_type in _IMAGE_MIMES


def _normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


class ExtractionClient:
    def __init__(self, *, ocr: OCRPort | None = None):
        self.ocr = ocr

    def extract_text(self, data: bytes, mime_type: str, filename: str | None = None) -> str:
        if mime_type not in SUPPORTED_MIMES:
            raise ExtractionError(f"Unsupported file format: {mime_type}", filename=filename)

        if mime_type in _TEXT_MIMES:
            text = data.decode("utf-8", errors="replace")
        elif mime_type == DOCX_MIME:
            text = self._extract_docx(data, filename)
        elif mime_type == PDF_MIME:
            text = self._extract_pdf(data, filename)
        else:
            text = self._extract_image(data, filename)

        text = _normalize_text(text)
        if not text:
            raise ExtractionError("Document appears to be empty or unreadable", filename=filename)
        return text

    @staticmethod
    def _extract_docx(data: bytes, filename: str | None) -> str:
        import docx

        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(f"Could not read DOCX: {exc}", filename=filename) from exc

        lines = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                lines.append(" | ".join(cell.text.strip() for cell in row.cells))
        return "\n".join(lines)

    @staticmethod
    def _extract_pdf(data: bytes, filename: str | None) -> str:
        import fitz

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(f"Could not open PDF: {exc}", filename=filename) from exc
        try:
            return "\n\n".join(_normalize_text(page.get_text("text")) for page in doc)
        finally:
            doc.close()

    def _extract_image(self, data: bytes, filename: str | None) -> str:
        if self.ocr is None:
            raise ExtractionError("No OCR engine configured for images", filename=filename)
        try:
            extracted = self.ocr.extract(data)
        except Exception as exc:
            raise ExtractionError(f"OCR failed: {exc}", filename=filename) from exc
        return str(extracted.get("text") or "")
