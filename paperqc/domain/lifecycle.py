"""Question lifecycle engine.

Pure transitions over immutable ``Question``/``Paper`` values. Nothing here
performs I/O; the workflow controller persists whatever these functions return.

Per question::

    PENDING --audit--> NEEDS_CORRECTION | APPROVED* | REJECTED*   (* advisory)
    audited --approve--> APPROVED (locked, terminal)
    audited --reject--> REJECTED (human, eligible for re-audit)

Every state-changing transition bumps ``version`` by one. Approving an
already-approved question is a no-op and does not bump the version.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence

from paperqc.core.errors import InvariantViolation, ValidationError
from paperqc.domain.models import (
    AuditResult,
    AuditSnapshot,
    Paper,
    PaperStatus,
    Question,
    QuestionContent,
    utcnow,
)
from paperqc.utils.ids import new_public_id

DEFAULT_RETENTION_CAP = 5
DEFAULT_PAPER_TITLE = "Untitled Paper"
DEFAULT_TOPIC = "General"


def create_question(
    original: QuestionContent,
    topic: str | None = None,
    *,
    question_id: str | None = None,
    now: datetime | None = None,
) -> Question:
    if not original.question.strip():
        raise ValidationError("Question text is required", field="question")
    if not original.solution.strip():
        raise ValidationError("Solution text is required", field="solution")

    return Question(
        question_id=question_id or new_public_id("q_"),
        topic=(topic or "").strip() or DEFAULT_TOPIC,
        status="PENDING",
        original=original,
        version=1,
        last_modified=now or utcnow(),
    )


def apply_audit_result(question: Question, result: AuditResult, *, now: datetime | None = None) -> Question:
    if question.locked:
        raise InvariantViolation("Cannot audit a locked question", question_id=question.question_id)

    topic = (result.topic or "").strip() or question.topic
    return replace(
        question,
        topic=topic,
        status=result.status,
        audited=AuditSnapshot(redlines=result.redlines, clean=result.clean, logs=tuple(result.logs)),
        version=question.version + 1,
        last_modified=now or utcnow(),
    )


def approve(question: Question, *, now: datetime | None = None) -> Question:
    if question.locked:
        return question
    if question.audited is None:
        raise InvariantViolation("Cannot approve a question that has not been audited", question_id=question.question_id)

    return replace(
        question,
        status="APPROVED",
        approved=question.audited.clean,
        version=question.version + 1,
        last_modified=now or utcnow(),
    )


def reject(question: Question, *, now: datetime | None = None) -> Question:
    if question.locked:
        raise InvariantViolation("Cannot reject an approved (locked) question", question_id=question.question_id)
    if question.audited is None:
        raise InvariantViolation("Cannot reject a question that has not been audited", question_id=question.question_id)

    # The audit snapshot is kept for the resubmission cycle.
    return replace(
        question,
        status="REJECTED",
        version=question.version + 1,
        last_modified=now or utcnow(),
    )


def derive_paper_status(paper: Paper) -> PaperStatus:
    """LOCKED > PENDING_QC > IN_REVIEW, with DRAFT for an empty paper."""
    stages = [question.stage for question in paper.questions]
    if not stages:
        return "DRAFT"
    if all(stage == "locked" for stage in stages):
        return "LOCKED"
    if all(stage != "pending" for stage in stages):
        return "PENDING_QC"
    return "IN_REVIEW"


def new_paper(
    *,
    title: str | None,
    subject: str,
    created_by: str,
    questions: Iterable[Question] = (),
    paper_id: str | None = None,
    now: datetime | None = None,
) -> Paper:
    timestamp = now or utcnow()
    return Paper(
        paper_id=paper_id or new_public_id("paper_"),
        title=(title or "").strip() or DEFAULT_PAPER_TITLE,
        subject=subject,
        created_by=created_by,
        questions=tuple(questions),
        created_at=timestamp,
        updated_at=timestamp,
    )


def append_questions(paper: Paper, questions: Iterable[Question], *, now: datetime | None = None) -> Paper:
    added = tuple(questions)
    if not added:
        return paper
    return replace(paper, questions=paper.questions + added, updated_at=now or utcnow())


def replace_question(paper: Paper, question: Question, *, now: datetime | None = None) -> Paper:
    if paper.find_question(question.question_id) is None:
        raise InvariantViolation(
            f"Question {question.question_id} does not belong to paper {paper.paper_id}",
            question_id=question.question_id,
        )
    return replace(
        paper,
        questions=tuple(question if q.question_id == question.question_id else q for q in paper.questions),
        updated_at=now or utcnow(),
    )


def approve_all(
    paper: Paper,
    *,
    question_ids: Iterable[str] | None = None,
    now: datetime | None = None,
) -> tuple[Paper, list[str]]:
    """Approve every audited, unlocked question (optionally limited to ``question_ids``).

    Returns the updated paper and the ids that were approved.
    """
    only = set(question_ids) if question_ids is not None else None
    timestamp = now or utcnow()
    approved_ids: list[str] = []
    questions: list[Question] = []
    for question in paper.questions:
        if question.stage == "audited" and (only is None or question.question_id in only):
            question = approve(question, now=timestamp)
            approved_ids.append(question.question_id)
        questions.append(question)

    if not approved_ids:
        return paper, approved_ids
    return replace(paper, questions=tuple(questions), updated_at=timestamp), approved_ids


def archive_paper(
    current_questions: Sequence[Question],
    history: Sequence[Paper],
    retention_cap: int = DEFAULT_RETENTION_CAP,
    *,
    subject: str,
    created_by: str,
    paper_id: str | None = None,
    now: datetime | None = None,
) -> tuple[Paper, tuple[Paper, ...]]:
    """Snapshot the working questions as an archived paper, newest first, capped."""
    if not current_questions:
        raise ValidationError("Cannot archive an empty session")
    if retention_cap < 1:
        raise InvariantViolation(f"Retention cap must be positive, got {retention_cap}")

    timestamp = now or utcnow()
    paper = replace(
        new_paper(
            title=current_questions[0].topic,
            subject=subject,
            created_by=created_by,
            questions=current_questions,
            paper_id=paper_id,
            now=timestamp,
        ),
        archived_at=timestamp,
    )
    return paper, (paper, *history)[:retention_cap]
