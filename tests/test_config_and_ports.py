import logging

from paperqc.core.config import get_settings
from paperqc.core.logging import configure_logging
from paperqc.infra.llm.mock import MockLLM
from paperqc.infra.ocr.mock import MockOCR
from paperqc.infra.ports.llm import LLMPort
from paperqc.utils.ids import new_public_id


def test_settings_defaults_and_overrides(monkeypatch):
    monkeypatch.setenv("PAPERQC_CORS_ORIGINS", "http://a.test, http://b.test,,")
    monkeypatch.setenv("PAPERQC_HISTORY_RETENTION", "3")
    monkeypatch.setenv("PAPERQC_AUDIT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("PAPERQC_DEFAULT_AUTHOR", "Dr. Rao")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.cors_origins == ["http://a.test", "http://b.test"]
        assert settings.history_retention == 3
        assert settings.audit_timeout_seconds == 2.5
        assert settings.extraction_timeout_seconds == 60.0
        assert settings.default_author == "Dr. Rao"
        assert settings.default_subject == "General"
        assert settings.llm_backend == "mock"
        assert settings.gemini_model
    finally:
        get_settings.cache_clear()


def test_settings_fall_back_on_malformed_numbers(monkeypatch):
    monkeypatch.setenv("PAPERQC_HISTORY_RETENTION", "many")
    monkeypatch.setenv("PAPERQC_AUDIT_TIMEOUT_SECONDS", "-4")
    monkeypatch.setenv("PAPERQC_STORE_LATENCY_MS", "slow")
    monkeypatch.setenv("PAPERQC_STORE_BACKEND", " MEMORY ")
    get_settings.cache_clear()

    try:
        settings = get_settings()
        assert settings.history_retention == 5
        assert settings.audit_timeout_seconds == 120.0
        assert settings.store_latency_ms == 0
        assert settings.store_backend == "memory"
    finally:
        get_settings.cache_clear()


def test_configure_logging_is_idempotent():
    configure_logging(logging.INFO)
    configure_logging(logging.INFO)

    named = [h for h in logging.getLogger().handlers if h.get_name() == "paperqc"]
    assert len(named) == 1


def test_mock_ocr_reads_a_labelled_question():
    ocr = MockOCR().extract(b"img-bytes")
    blank = MockOCR().extract(b"")

    assert ocr["text"].startswith("Topic: Scanned image (9 bytes)")
    assert "Question:" in ocr["text"] and "Solution:" in ocr["text"]
    assert isinstance(ocr["confidence"], float)
    assert blank == {"text": "", "confidence": 0.0}


def test_mock_llm_batch_output_shape():
    llm = MockLLM()
    output = llm.generate_structured(
        prompt='Raw input: """ Q: 1+1?\nAns: 2\nExplanation: add """',
        schema={"type": "array"},
    )

    assert output[0]["status"] == "APPROVED"
    assert output[0]["originalParsed"]["correctAnswer"] == "2"
    assert output[0]["clean"] == output[0]["originalParsed"]
    assert llm.supports_media is False


def test_llm_port_media_detection():
    class MediaLLM(LLMPort):
        def generate_structured(self, *, prompt, schema, system_prompt=None, model=None):
            return {}

        def generate_structured_from_media(self, **kwargs):
            return []

    assert MediaLLM().supports_media is True


def test_public_ids_are_prefixed_and_unique():
    ids = {new_public_id("q_") for _ in range(50)}

    assert len(ids) == 50
    assert all(item.startswith("q_") and len(item) == 28 for item in ids)
