from __future__ import annotations

import io
from typing import Any

from paperqc.infra.ports.ocr import OCRPort


class TesseractOCR(OCRPort):
    provider_name = "tesseract"

    def __init__(self, *, lang: str = "eng"):
        try:
            import pytesseract  # type: ignore
            from PIL import Image  # type: ignore
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("pytesseract and Pillow are required for PAPERQC_OCR_BACKEND=tesseract") from exc

        self._pytesseract = pytesseract
        self._image = Image
        self.lang = lang.strip() or "eng"

    def extract(self, image_bytes: bytes) -> dict[str, Any]:
        image = self._image.open(io.BytesIO(image_bytes))
        text = self._pytesseract.image_to_string(image, lang=self.lang, config="--oem 1 --psm 6").strip()
        if not text:
            text = self._pytesseract.image_to_string(image).strip()
        return {"text": text, "confidence": 0.82 if text else 0.0}
