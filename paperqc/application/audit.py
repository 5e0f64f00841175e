from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from paperqc.core.errors import AuditError, ValidationError
from paperqc.domain.models import (
    LOG_TYPES,
    QUESTION_STATUSES,
    SEVERITIES,
    AuditLog,
    AuditResult,
    QuestionContent,
    RedlineContent,
    content_from_dict,
    content_to_dict,
)
from paperqc.domain.redlines import accepted_text, parse_redline
from paperqc.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a strict academic quality control auditor for high-stakes examinations.
Perform an ERROR-INTOLERANT audit of exam questions.

Every question needs: question text, options (if MCQ), the correct answer or marked option, and a detailed solution.

Audit rules:
- Identify conceptual, numerical, logical or grammatical errors.
- Verify that the marked option matches the solution logic.
- Verify numerical calculations step by step.
- Produce REDLINES: <del>text</del> for errors, immediately followed by <ins>text</ins> for the correction.
- Produce a CLEAN version: the final, error-free, exam-ready question.
- Categorize every finding as CONCEPTUAL, NUMERICAL, LOGICAL or GRAMMATICAL with HIGH, MEDIUM or LOW severity.

Constraints:
- No creativity and no stylistic rephrasing. Only corrections for accuracy.
- No LaTeX. Use plain text or Unicode.
- If a core component is missing, report it as a HIGH severity finding."""

_LOG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type", "message", "severity"],
    "properties": {
        "type": {"type": "string", "enum": list(LOG_TYPES)},
        "message": {"type": "string"},
        "severity": {"type": "string", "enum": list(SEVERITIES)},
    },
}
_CONTENT_PROPERTIES: dict[str, Any] = {
    "question": {"type": "string"},
    "options": {"type": "array", "items": {"type": "string"}},
    "correctOptionIndex": {"type": "integer"},
    "correctAnswer": {"type": "string"},
    "solution": {"type": "string"},
}
_RESULT_PROPERTIES: dict[str, Any] = {
    "topic": {"type": "string"},
    "status": {"type": "string", "enum": ["APPROVED", "NEEDS_CORRECTION", "REJECTED"]},
    "auditLogs": {"type": "array", "items": _LOG_SCHEMA},
    "redlines": {
        "type": "object",
        "required": ["question", "solution"],
        "properties": {
            "question": {"type": "string"},
            "options": {"type": "array", "items": {"type": "string"}},
            "correctAnswer": {"type": "string"},
            "solution": {"type": "string"},
        },
    },
    "clean": {"type": "object", "required": ["question", "solution"], "properties": _CONTENT_PROPERTIES},
}
AUDIT_RESULT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["status", "topic", "auditLogs", "redlines", "clean"],
    "properties": _RESULT_PROPERTIES,
}
RAW_AUDIT_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["status", "topic", "auditLogs", "redlines", "clean", "originalParsed"],
        "properties": {
            **_RESULT_PROPERTIES,
            "originalParsed": {"type": "object", "required": ["question", "solution"], "properties": _CONTENT_PROPERTIES},
        },
    },
}


@dataclass(frozen=True)
class RawAuditItem:
    """One element of a batch audit: either a parsed result with its original, or an item error."""

    index: int
    original: QuestionContent | None = None
    result: AuditResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _coerce_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _check_redline(markup: str, label: str) -> str:
    try:
        parse_redline(markup)
    except ValidationError as exc:
        raise AuditError(f"Malformed redline markup in {label}: {exc.message}") from exc
    return markup


def _warn_on_redline_drift(redlines: RedlineContent, clean: QuestionContent) -> None:
    for label, markup, text in (
        ("question", redlines.question, clean.question),
        ("solution", redlines.solution, clean.solution),
    ):
        if markup and accepted_text(markup).strip() != text.strip():
            logger.warning("Accepted %s redline does not match the clean version", label)


def parse_audit_result(data: Any) -> AuditResult:
    """Validate one structured audit payload; raises ``AuditError`` when it is unusable."""
    if not isinstance(data, dict):
        raise AuditError("Audit result is not a JSON object")

    status = _coerce_text(data.get("status")).upper()
    if status not in QUESTION_STATUSES:
        raise AuditError(f"Unknown audit status: {data.get('status')!r}")

    logs: list[AuditLog] = []
    for item in data.get("auditLogs") or []:
        if not isinstance(item, dict):
            raise AuditError("Audit log entry is not an object")
        log_type = _coerce_text(item.get("type")).upper()
        severity = _coerce_text(item.get("severity")).upper()
        if log_type not in LOG_TYPES or severity not in SEVERITIES:
            raise AuditError(f"Invalid audit log type/severity: {log_type!r}/{severity!r}")
        logs.append(AuditLog(type=log_type, severity=severity, message=_coerce_text(item.get("message"))))  # type: ignore[arg-type]

    clean_data = data.get("clean")
    if not isinstance(clean_data, dict):
        raise AuditError("Audit result has no clean version")
    try:
        clean = content_from_dict(clean_data)
    except ValidationError as exc:
        raise AuditError(f"Clean version is incomplete: {exc.message}") from exc

    redline_data = data.get("redlines")
    if not isinstance(redline_data, dict):
        raise AuditError("Audit result has no redlines")
    options = redline_data.get("options")
    correct_answer = redline_data.get("correctAnswer")
    redlines = RedlineContent(
        question=_check_redline(str(redline_data.get("question") or ""), "question"),
        solution=_check_redline(str(redline_data.get("solution") or ""), "solution"),
        options=(
            tuple(_check_redline(str(item), f"option {idx + 1}") for idx, item in enumerate(options))
            if isinstance(options, list) and options
            else None
        ),
        correct_answer=_check_redline(correct_answer, "answer") if isinstance(correct_answer, str) else None,
    )
    _warn_on_redline_drift(redlines, clean)

    return AuditResult(
        status=status,  # type: ignore[arg-type]
        logs=tuple(logs),
        redlines=redlines,
        clean=clean,
        topic=_coerce_text(data.get("topic")) or None,
    )


def parse_raw_items(data: Any) -> list[RawAuditItem]:
    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        data = data["questions"]
    if not isinstance(data, list):
        raise AuditError("Batch audit output is not a JSON array")

    items: list[RawAuditItem] = []
    for idx, entry in enumerate(data):
        try:
            if isinstance(entry, dict) and _coerce_text(entry.get("error")):
                raise AuditError(_coerce_text(entry["error"]))
            if not isinstance(entry, dict) or not isinstance(entry.get("originalParsed"), dict):
                raise AuditError("Audit item has no parsed original question")
            try:
                original = content_from_dict(entry["originalParsed"])
            except ValidationError as exc:
                raise AuditError(f"Parsed original is incomplete: {exc.message}") from exc
            items.append(RawAuditItem(index=idx, original=original, result=parse_audit_result(entry)))
        except AuditError as exc:
            items.append(RawAuditItem(index=idx, error=exc.message))
    return items


def question_prompt(content: QuestionContent, topic: str | None) -> str:
    return (
        "Perform a strict audit on this question. Identify errors, provide redlines and a clean version.\n"
        f"topic={topic or ''}\n"
        f"question={json.dumps(content_to_dict(content), ensure_ascii=False)}"
    )


def raw_prompt(text: str) -> str:
    return (
        "Perform a strict audit on these questions. Separate them, parse each original into "
        "originalParsed, identify errors, and provide redlines and clean versions.\n"
        f'Raw input: """ {text} """'
    )


class AuditClient:
    """Single external audit boundary. Synchronous; the controller runs it off the event loop."""

    def __init__(self, *, llm: LLMPort, model: str | None = None):
        self.llm = llm
        self.model = model

    def supports_media(self) -> bool:
        flag = getattr(self.llm, "supports_media", None)
        if isinstance(flag, bool):
            return flag
        return callable(getattr(self.llm, "generate_structured_from_media", None))

    def _call(self, **kwargs: Any) -> Any:
        try:
            return self.llm.generate_structured(system_prompt=SYSTEM_PROMPT, model=self.model, **kwargs)
        except AuditError:
            raise
        except Exception as exc:
            raise AuditError(f"Audit engine call failed: {exc}") from exc

    def audit_question(self, content: QuestionContent, topic: str | None = None) -> AuditResult:
        return parse_audit_result(self._call(prompt=question_prompt(content, topic), schema=AUDIT_RESULT_SCHEMA))

    def audit_raw(self, text: str) -> list[RawAuditItem]:
        items = parse_raw_items(self._call(prompt=raw_prompt(text), schema=RAW_AUDIT_SCHEMA))
        for item in items:
            if not item.ok:
                logger.warning("Could not audit pasted question #%d: %s", item.index + 1, item.error)
        return items

    def audit_document(self, data: bytes, mime_type: str) -> list[RawAuditItem]:
        if not self.supports_media():
            raise AuditError(f"Configured audit engine cannot read {mime_type} documents directly")

        prompt = (
            "Extract and strictly audit all questions from this document. Ensure question, options, "
            "answer and solution are extracted into originalParsed. Return JSON."
        )
        try:
            output = self.llm.generate_structured_from_media(
                prompt=prompt,
                schema=RAW_AUDIT_SCHEMA,
                media_bytes=data,
                media_mime_type=mime_type,
                system_prompt=SYSTEM_PROMPT,
                model=self.model,
            )
        except Exception as exc:
            raise AuditError(f"Document audit failed: {exc}") from exc
        return parse_raw_items(output)
