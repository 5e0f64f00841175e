from __future__ import annotations

from functools import lru_cache

from paperqc.application.audit import AuditClient
from paperqc.application.extraction import ExtractionClient
from paperqc.application.workflow import WorkflowController
from paperqc.core.config import get_settings
from paperqc.infra.llm.gemini import GeminiLLM
from paperqc.infra.llm.mock import MockLLM
from paperqc.infra.ocr.mock import MockOCR
from paperqc.infra.ports.llm import LLMPort
from paperqc.infra.ports.ocr import OCRPort
from paperqc.infra.ports.paper_store import PaperStorePort
from paperqc.infra.store.memory import MemoryPaperStore


@lru_cache(maxsize=1)
def get_store() -> PaperStorePort:
    settings = get_settings()
    if settings.store_backend == "memory":
        return MemoryPaperStore(latency_ms=settings.store_latency_ms)

    from paperqc.infra.db.store import DatabasePaperStore

    return DatabasePaperStore()


@lru_cache(maxsize=1)
def get_ocr() -> OCRPort:
    settings = get_settings()
    if settings.ocr_backend == "tesseract":
        from paperqc.infra.ocr.tesseract import TesseractOCR

        return TesseractOCR(lang=settings.ocr_lang)
    return MockOCR()


@lru_cache(maxsize=1)
def get_llm() -> LLMPort:
    settings = get_settings()
    if settings.llm_backend == "gemini" and settings.gemini_api_key:
        return GeminiLLM(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )
    return MockLLM()


def get_audit_client() -> AuditClient:
    return AuditClient(llm=get_llm(), model=get_settings().gemini_model)


def get_extraction_client() -> ExtractionClient:
    return ExtractionClient(ocr=get_ocr())


@lru_cache(maxsize=1)
def get_controller() -> WorkflowController:
    settings = get_settings()
    return WorkflowController(
        store=get_store(),
        audit_client=get_audit_client(),
        extraction_client=get_extraction_client(),
        history_retention=settings.history_retention,
        audit_timeout_seconds=settings.audit_timeout_seconds,
        extraction_timeout_seconds=settings.extraction_timeout_seconds,
        default_author=settings.default_author,
        default_subject=settings.default_subject,
    )


async def provide_controller() -> WorkflowController:
    controller = get_controller()
    await controller.ensure_loaded()
    return controller
