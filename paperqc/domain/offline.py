"""Deterministic offline auditing.

Parses ``Question:/Options:/Answer:/Solution:`` blocks and runs structural
checks only. Content passes through unchanged, so the redlines carry no
markup and the clean version equals the original.
"""

from __future__ import annotations

import re

from paperqc.core.errors import ValidationError
from paperqc.domain.models import (
    AuditLog,
    AuditResult,
    McqContent,
    QuestionContent,
    RedlineContent,
    make_content,
)

QUESTION_SEPARATOR = "\n\n---NEXT QUESTION---\n\n"

_LABEL_PATTERN = re.compile(
    r"(?im)^\s*(question|q|options?|choices|answer|ans|correct answer|solution|explanation|topic)\s*[:\-]\s*"
)
_OPTION_LINE_PATTERN = re.compile(r"^\s*\(?([A-Ha-h]|[1-8])[).:]\s+(.+)$")
_QUESTION_START = re.compile(r"(?im)^\s*(?:question|q)\s*[:\-]")
_LABEL_ALIASES = {
    "q": "question",
    "option": "options",
    "choices": "options",
    "ans": "answer",
    "correct answer": "answer",
    "explanation": "solution",
}


def strip_separators(text: str) -> str:
    return text.replace(QUESTION_SEPARATOR.strip(), "\n")


def split_blocks(raw_text: str) -> list[str]:
    text = raw_text.replace("\r\n", "\n").replace("\r", "\n")
    chunks = [chunk.strip() for chunk in text.split(QUESTION_SEPARATOR.strip())]
    blocks: list[str] = []
    for chunk in chunks:
        if not chunk:
            continue
        # Several labelled questions pasted in one snippet.
        starts = [m.start() for m in _QUESTION_START.finditer(chunk)]
        if len(starts) <= 1:
            blocks.append(chunk)
            continue
        for idx, start in enumerate(starts):
            end = starts[idx + 1] if idx + 1 < len(starts) else len(chunk)
            blocks.append(chunk[start:end].strip())
    return blocks


def _labelled_fields(block: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    matches = list(_LABEL_PATTERN.finditer(block))
    for idx, match in enumerate(matches):
        label = match.group(1).lower()
        label = _LABEL_ALIASES.get(label, label)
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(block)
        fields.setdefault(label, block[match.end():end].strip())
    return fields


def _strip_option_label(item: str) -> str:
    match = _OPTION_LINE_PATTERN.match(item)
    return (match.group(2) if match else item).strip()


def _split_options(raw: str) -> list[str]:
    lines = [line for line in raw.splitlines() if line.strip()]
    if len(lines) > 1:
        return [_strip_option_label(line) for line in lines]
    for separator in ("|", ";"):
        if separator in raw:
            return [_strip_option_label(item) for item in raw.split(separator) if item.strip()]
    return [_strip_option_label(item) for item in raw.split(",") if item.strip()]


def _resolve_answer_index(answer: str, options: list[str]) -> int | None:
    token = answer.strip().strip("().").strip()
    if not token:
        return None
    for idx, option in enumerate(options):
        if token.lower() == option.lower():
            return idx
    if len(token) == 1 and token.isalpha():
        idx = ord(token.upper()) - ord("A")
        return idx if 0 <= idx < len(options) else None
    if token.isdigit():
        idx = int(token) - 1
        return idx if 0 <= idx < len(options) else None
    return None


def parse_labelled_question(block: str) -> tuple[QuestionContent, str | None]:
    """Parse one labelled block into content and an optional topic."""
    fields = _labelled_fields(block)
    options = _split_options(fields["options"]) if fields.get("options") else []
    answer = fields.get("answer", "")
    if options:
        index = _resolve_answer_index(answer, options)
        if index is None:
            raise ValidationError(f"Answer {answer!r} does not match any option", field="answer")
        content = make_content(
            question=fields.get("question"), solution=fields.get("solution"), options=options, correct_index=index
        )
    else:
        content = make_content(question=fields.get("question"), solution=fields.get("solution"), correct_answer=answer)
    return content, fields.get("topic") or None


def _plain_redlines(content: QuestionContent) -> RedlineContent:
    if isinstance(content, McqContent):
        return RedlineContent(question=content.question, solution=content.solution, options=content.options)
    return RedlineContent(question=content.question, solution=content.solution, correct_answer=content.correct_answer)


def rule_based_audit(content: QuestionContent, topic: str | None = None) -> AuditResult:
    logs: list[AuditLog] = []
    if isinstance(content, McqContent):
        if len(content.options) < 2:
            logs.append(AuditLog(type="LOGICAL", severity="HIGH", message="MCQ has fewer than two options"))
        if any(not option for option in content.options):
            logs.append(AuditLog(type="LOGICAL", severity="HIGH", message="One or more options are empty"))
        if len({option.lower() for option in content.options}) != len(content.options):
            logs.append(AuditLog(type="LOGICAL", severity="HIGH", message="Options are not distinct"))
    elif not content.correct_answer:
        logs.append(AuditLog(type="NUMERICAL", severity="HIGH", message="Correct answer is missing"))

    return AuditResult(
        status="NEEDS_CORRECTION" if logs else "APPROVED",
        logs=tuple(logs),
        redlines=_plain_redlines(content),
        clean=content,
        topic=topic,
    )
