from __future__ import annotations

from typing import Any

from paperqc.infra.ports.ocr import OCRPort


class MockOCR(OCRPort):
    """Offline OCR: every non-empty image reads as one fixed labelled question."""

    provider_name = "mock"

    def extract(self, image_bytes: bytes) -> dict[str, Any]:
        if not image_bytes:
            return {"text": "", "confidence": 0.0}
        return {
            "text": (
                f"Topic: Scanned image ({len(image_bytes)} bytes)\n"
                "Question: What is 6 x 7?\n"
                "Answer: 42\n"
                "Solution: 6 x 7 = 42"
            ),
            "confidence": 0.91,
        }
