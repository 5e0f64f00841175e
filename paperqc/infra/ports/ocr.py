from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class OCRPort(ABC):
    provider_name: str = "ocr"

    @abstractmethod
    def extract(self, image_bytes: bytes) -> dict[str, Any]:
        """Return ``{"text": str, "confidence": float}`` for one image."""
