"""Parser for audit redline markup.

``<del>x</del>`` marks flawed original text, ``<ins>y</ins>`` the accepted
correction. A deletion immediately followed by an insertion is a replacement;
unmarked text is unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from paperqc.core.errors import ValidationError
from paperqc.domain.models import RedlineContent

SegmentKind = Literal["unchanged", "deleted", "inserted", "replaced"]

_TAG_PATTERN = re.compile(r"<(/?)(del|ins)>", re.IGNORECASE)


@dataclass(frozen=True)
class RedlineSegment:
    kind: SegmentKind
    text: str
    replacement: str | None = None


def _tokenize(markup: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    open_tag: str | None = None
    cursor = 0
    for match in _TAG_PATTERN.finditer(markup):
        closing, tag = match.group(1) == "/", match.group(2).lower()
        chunk = markup[cursor:match.start()]
        cursor = match.end()

        if not closing:
            if open_tag is not None:
                raise ValidationError(f"Nested <{tag}> inside <{open_tag}> at offset {match.start()}")
            if chunk:
                tokens.append(("unchanged", chunk))
            open_tag = tag
            continue

        if open_tag != tag:
            raise ValidationError(f"Unexpected </{tag}> at offset {match.start()}")
        tokens.append((tag, chunk))
        open_tag = None

    if open_tag is not None:
        raise ValidationError(f"Unclosed <{open_tag}> in redline markup")
    tail = markup[cursor:]
    if tail:
        tokens.append(("unchanged", tail))
    return tokens


def parse_redline(markup: str) -> list[RedlineSegment]:
    segments: list[RedlineSegment] = []
    for kind, text in _tokenize(markup or ""):
        if kind == "ins" and segments and segments[-1].kind == "deleted":
            segments[-1] = RedlineSegment(kind="replaced", text=segments[-1].text, replacement=text)
        elif kind == "del":
            segments.append(RedlineSegment(kind="deleted", text=text))
        elif kind == "ins":
            segments.append(RedlineSegment(kind="inserted", text=text))
        else:
            segments.append(RedlineSegment(kind="unchanged", text=text))
    return segments


def accepted_text(markup: str) -> str:
    parts: list[str] = []
    for segment in parse_redline(markup):
        if segment.kind == "replaced":
            parts.append(segment.replacement or "")
        elif segment.kind != "deleted":
            parts.append(segment.text)
    return "".join(parts)


def count_changes(markup: str) -> int:
    return sum(1 for segment in parse_redline(markup) if segment.kind != "unchanged")


def total_changes(redlines: RedlineContent) -> int:
    fields = [redlines.question, redlines.solution, *(redlines.options or ()), redlines.correct_answer or ""]
    return sum(count_changes(markup) for markup in fields)
