from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Union

from paperqc.core.errors import ValidationError
from paperqc.utils.ids import new_public_id

QuestionStatus = Literal["PENDING", "NEEDS_CORRECTION", "APPROVED", "REJECTED"]
PaperStatus = Literal["DRAFT", "IN_REVIEW", "PENDING_QC", "LOCKED"]
LogType = Literal["CONCEPTUAL", "NUMERICAL", "LOGICAL", "GRAMMATICAL"]
Severity = Literal["HIGH", "MEDIUM", "LOW"]
QuestionStage = Literal["pending", "audited", "locked"]

QUESTION_STATUSES: tuple[str, ...] = ("PENDING", "NEEDS_CORRECTION", "APPROVED", "REJECTED")
LOG_TYPES: tuple[str, ...] = ("CONCEPTUAL", "NUMERICAL", "LOGICAL", "GRAMMATICAL")
SEVERITIES: tuple[str, ...] = ("HIGH", "MEDIUM", "LOW")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class McqContent:
    question: str
    options: tuple[str, ...]
    correct_index: int
    solution: str


@dataclass(frozen=True)
class NumericalContent:
    """Numerical or subjective question: no options, free-form answer (may be empty)."""

    question: str
    correct_answer: str
    solution: str


QuestionContent = Union[McqContent, NumericalContent]


@dataclass(frozen=True)
class RedlineContent:
    question: str
    solution: str
    options: tuple[str, ...] | None = None
    correct_answer: str | None = None


@dataclass(frozen=True)
class AuditLog:
    type: LogType
    severity: Severity
    message: str
    log_id: str = field(default_factory=lambda: new_public_id("log_"))


@dataclass(frozen=True)
class AuditResult:
    status: QuestionStatus
    logs: tuple[AuditLog, ...]
    redlines: RedlineContent
    clean: QuestionContent
    topic: str | None = None


@dataclass(frozen=True)
class AuditSnapshot:
    redlines: RedlineContent
    clean: QuestionContent
    logs: tuple[AuditLog, ...] = ()


@dataclass(frozen=True)
class Question:
    question_id: str
    topic: str
    status: QuestionStatus
    original: QuestionContent
    audited: AuditSnapshot | None = None
    approved: QuestionContent | None = None
    version: int = 1
    last_modified: datetime = field(default_factory=utcnow)

    @property
    def locked(self) -> bool:
        return self.approved is not None

    @property
    def stage(self) -> QuestionStage:
        if self.approved is not None:
            return "locked"
        if self.audited is not None:
            return "audited"
        return "pending"


@dataclass(frozen=True)
class Paper:
    paper_id: str
    title: str
    subject: str
    created_by: str
    questions: tuple[Question, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    archived_at: datetime | None = None

    @property
    def status(self) -> PaperStatus:
        from paperqc.domain.lifecycle import derive_paper_status

        return derive_paper_status(self)

    @property
    def archived(self) -> bool:
        return self.archived_at is not None

    def find_question(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.question_id == question_id:
                return question
        return None


def _coerce_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def make_content(
    *,
    question: Any,
    solution: Any,
    options: Any = None,
    correct_index: Any = None,
    correct_answer: Any = None,
) -> QuestionContent:
    """Build the MCQ or numerical variant from loosely-typed fields.

    Options present (non-empty list) means MCQ and requires a valid index;
    otherwise the question is numerical/subjective and ``correct_answer`` may be
    empty.
    """
    question_text = _coerce_text(question)
    solution_text = _coerce_text(solution)
    if not question_text:
        raise ValidationError("Question text is required", field="question")
    if not solution_text:
        raise ValidationError("Solution text is required", field="solution")

    if options:
        if not isinstance(options, (list, tuple)):
            raise ValidationError("Options must be a list of strings", field="options")
        normalized = tuple(_coerce_text(item) for item in options)
        if isinstance(correct_index, bool) or not isinstance(correct_index, (int, float)):
            raise ValidationError("A correct option index is required for MCQ questions", field="correctIndex")
        index = int(correct_index)
        if index != correct_index or not 0 <= index < len(normalized):
            raise ValidationError(
                f"Correct option index {correct_index} is out of range for {len(normalized)} options",
                field="correctIndex",
            )
        return McqContent(question=question_text, options=normalized, correct_index=index, solution=solution_text)

    answer = correct_answer if isinstance(correct_answer, str) else ("" if correct_answer is None else str(correct_answer))
    return NumericalContent(question=question_text, correct_answer=answer.strip(), solution=solution_text)


def content_to_dict(content: QuestionContent) -> dict[str, Any]:
    if isinstance(content, McqContent):
        return {
            "kind": "mcq",
            "question": content.question,
            "options": list(content.options),
            "correctOptionIndex": content.correct_index,
            "solution": content.solution,
        }
    return {
        "kind": "numerical",
        "question": content.question,
        "correctAnswer": content.correct_answer,
        "solution": content.solution,
    }


def content_from_dict(data: dict[str, Any]) -> QuestionContent:
    return make_content(
        question=data.get("question"),
        solution=data.get("solution"),
        options=data.get("options"),
        correct_index=data.get("correctOptionIndex"),
        correct_answer=data.get("correctAnswer"),
    )


def redlines_to_dict(redlines: RedlineContent) -> dict[str, Any]:
    out: dict[str, Any] = {"question": redlines.question, "solution": redlines.solution}
    if redlines.options is not None:
        out["options"] = list(redlines.options)
    if redlines.correct_answer is not None:
        out["correctAnswer"] = redlines.correct_answer
    return out


def redlines_from_dict(data: dict[str, Any]) -> RedlineContent:
    options = data.get("options")
    correct_answer = data.get("correctAnswer")
    return RedlineContent(
        question=str(data.get("question") or ""),
        solution=str(data.get("solution") or ""),
        options=tuple(str(item) for item in options) if isinstance(options, list) else None,
        correct_answer=correct_answer if isinstance(correct_answer, str) else None,
    )


def log_to_dict(log: AuditLog) -> dict[str, Any]:
    return {"id": log.log_id, "type": log.type, "severity": log.severity, "message": log.message}


def log_from_dict(data: dict[str, Any]) -> AuditLog:
    return AuditLog(
        type=data["type"],
        severity=data["severity"],
        message=str(data.get("message") or ""),
        log_id=str(data.get("id") or new_public_id("log_")),
    )


def snapshot_to_dict(snapshot: AuditSnapshot) -> dict[str, Any]:
    return {
        "redlines": redlines_to_dict(snapshot.redlines),
        "clean": content_to_dict(snapshot.clean),
        "logs": [log_to_dict(item) for item in snapshot.logs],
    }


def snapshot_from_dict(data: dict[str, Any]) -> AuditSnapshot:
    return AuditSnapshot(
        redlines=redlines_from_dict(data.get("redlines") or {}),
        clean=content_from_dict(data.get("clean") or {}),
        logs=tuple(log_from_dict(item) for item in data.get("logs") or []),
    )
