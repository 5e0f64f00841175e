from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from paperqc.domain.models import LOG_TYPES, SEVERITIES, Question


@dataclass
class LogSummary:
    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)


def summarize_logs(questions: Iterable[Question]) -> LogSummary:
    """Count audit findings by type and severity across audited questions."""
    types: Counter[str] = Counter()
    severities: Counter[str] = Counter()
    for question in questions:
        if question.audited is None:
            continue
        for log in question.audited.logs:
            types[log.type] += 1
            severities[log.severity] += 1

    return LogSummary(
        total=sum(types.values()),
        by_type={name: types.get(name, 0) for name in LOG_TYPES},
        by_severity={name: severities.get(name, 0) for name in SEVERITIES},
    )
