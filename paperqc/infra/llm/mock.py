from __future__ import annotations

import json
import re
from typing import Any

from paperqc.core.errors import ValidationError
from paperqc.domain.models import AuditResult, content_from_dict, content_to_dict, redlines_to_dict
from paperqc.domain.offline import parse_labelled_question, rule_based_audit, split_blocks
from paperqc.infra.ports.llm import LLMPort

_TOPIC_LINE = re.compile(r"^topic=(.*)$", re.MULTILINE)
_QUESTION_LINE = re.compile(r"^question=(\{.*\})$", re.MULTILINE)
_RAW_INPUT = re.compile(r'Raw input: """ (.*) """\s*\Z', re.DOTALL)


def _result_payload(result: AuditResult) -> dict[str, Any]:
    return {
        "topic": result.topic or "",
        "status": result.status,
        "auditLogs": [{"type": log.type, "severity": log.severity, "message": log.message} for log in result.logs],
        "redlines": redlines_to_dict(result.redlines),
        "clean": content_to_dict(result.clean),
    }


class MockLLM(LLMPort):
    """Offline engine: answers audit prompts with the deterministic structural audit."""

    provider_name = "mock"
    model_name = "mock-llm-v2"

    def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        if schema.get("type") == "array":
            raw = _RAW_INPUT.search(prompt)
            if raw is None:
                raise ValueError("Mock engine expected a raw input block in the prompt")
            return [self._raw_entry(block) for block in split_blocks(raw.group(1))]

        question = _QUESTION_LINE.search(prompt)
        if question is None:
            raise ValueError("Mock engine expected a question payload in the prompt")
        topic = _TOPIC_LINE.search(prompt)
        content = content_from_dict(json.loads(question.group(1)))
        return _result_payload(rule_based_audit(content, (topic.group(1).strip() if topic else "") or None))

    @staticmethod
    def _raw_entry(block: str) -> dict[str, Any]:
        try:
            content, topic = parse_labelled_question(block)
        except ValidationError as exc:
            return {"error": exc.message}
        return {**_result_payload(rule_based_audit(content, topic)), "originalParsed": content_to_dict(content)}
