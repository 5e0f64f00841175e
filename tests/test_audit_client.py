import pytest

from paperqc.application.audit import (
    AUDIT_RESULT_SCHEMA,
    RAW_AUDIT_SCHEMA,
    SYSTEM_PROMPT,
    AuditClient,
    parse_audit_result,
    parse_raw_items,
)
from paperqc.core.errors import AuditError, ValidationError
from paperqc.domain.models import McqContent, NumericalContent, make_content
from paperqc.domain.offline import parse_labelled_question, rule_based_audit
from paperqc.infra.llm.mock import MockLLM


def _payload(**overrides):
    payload = {
        "topic": "Arithmetic",
        "status": "NEEDS_CORRECTION",
        "auditLogs": [{"type": "NUMERICAL", "severity": "HIGH", "message": "Marked option is wrong"}],
        "redlines": {
            "question": "What is 2+2?",
            "options": ["3", "4", "5", "6"],
            "solution": "2+2=<del>5</del><ins>4</ins>",
        },
        "clean": {
            "question": "What is 2+2?",
            "options": ["3", "4", "5", "6"],
            "correctOptionIndex": 1,
            "solution": "2+2=4",
        },
    }
    payload.update(overrides)
    return payload


class StubLLM:
    provider_name = "gemini"
    model_name = "stub"

    def __init__(self, output=None, *, error=None):
        self.output = output
        self.error = error
        self.calls = []

    def generate_structured(self, *, prompt, schema, system_prompt=None, model=None):
        self.calls.append({"prompt": prompt, "schema": schema, "system_prompt": system_prompt, "model": model})
        if self.error:
            raise self.error
        return self.output


class MediaStubLLM(StubLLM):
    def generate_structured_from_media(
        self, *, prompt, schema, media_bytes, media_mime_type, system_prompt=None, model=None
    ):
        self.calls.append({"mime": media_mime_type, "size": len(media_bytes), "schema": schema})
        return self.output


def test_parse_audit_result_valid_payload():
    result = parse_audit_result(_payload(status="needs_correction"))

    assert result.status == "NEEDS_CORRECTION"
    assert result.topic == "Arithmetic"
    assert isinstance(result.clean, McqContent)
    assert result.clean.correct_index == 1
    assert result.redlines.options == ("3", "4", "5", "6")
    assert result.logs[0].type == "NUMERICAL"
    assert result.logs[0].log_id.startswith("log_")


@pytest.mark.parametrize(
    "overrides",
    [
        {"status": "MAYBE"},
        {"auditLogs": [{"type": "STYLE", "severity": "HIGH", "message": "x"}]},
        {"auditLogs": ["not an object"]},
        {"clean": None},
        {"clean": {"question": "Q", "options": ["a", "b"], "correctOptionIndex": 5, "solution": "s"}},
        {"clean": {"question": "Q", "options": ["a", "b"], "solution": "s"}},
        {"redlines": None},
        {"redlines": {"question": "<del>open", "solution": "s"}},
    ],
)
def test_parse_audit_result_rejects_unusable_output(overrides):
    with pytest.raises(AuditError):
        parse_audit_result(_payload(**overrides))


def test_parse_audit_result_requires_object():
    with pytest.raises(AuditError):
        parse_audit_result(["not", "an", "object"])


def test_parse_raw_items_isolates_bad_elements():
    good = {**_payload(), "originalParsed": _payload()["clean"]}
    bad_status = {**good, "status": "???"}
    no_original = _payload()

    items = parse_raw_items({"questions": [good, bad_status, no_original]})

    assert [item.ok for item in items] == [True, False, False]
    assert items[0].original.correct_index == 1
    assert "status" in items[1].error
    assert items[2].index == 2


def test_parse_raw_items_keeps_engine_item_errors():
    items = parse_raw_items([{"error": "Answer does not match any option"}, {"error": "   "}])

    assert items[0].error == "Answer does not match any option"
    assert items[1].error == "Audit item has no parsed original question"


def test_redline_drift_is_logged_not_rejected(caplog):
    payload = _payload(redlines={"question": "What is <del>2+2</del><ins>3+3</ins>?", "solution": "2+2=4"})

    with caplog.at_level("WARNING", logger="paperqc.application.audit"):
        result = parse_audit_result(payload)

    assert result.clean.question == "What is 2+2?"
    assert "does not match the clean version" in caplog.text


def test_parse_raw_items_requires_array():
    with pytest.raises(AuditError):
        parse_raw_items({"unexpected": True})


def test_parse_labelled_question_mcq_multiline_options():
    block = """Topic: Algebra
Question: Solve x + 2 = 5
Options:
(a) 1
(b) 2
(c) 3
Answer: c
Solution: x = 5 - 2 = 3"""

    content, topic = parse_labelled_question(block)

    assert topic == "Algebra"
    assert content.options == ("1", "2", "3")
    assert content.correct_index == 2


def test_parse_labelled_question_numerical_and_answer_by_text():
    numerical, _ = parse_labelled_question("Q: g on Earth?\nAns: 9.8 m/s^2\nExplanation: standard gravity")
    by_text, _ = parse_labelled_question(
        "Question: Capital of France?\nChoices: Berlin, Paris, Rome\nAnswer: Paris\nSolution: Paris is the capital."
    )

    assert isinstance(numerical, NumericalContent)
    assert numerical.correct_answer == "9.8 m/s^2"
    assert numerical.solution == "standard gravity"
    assert by_text.correct_index == 1


def test_parse_labelled_question_missing_solution():
    with pytest.raises(ValidationError):
        parse_labelled_question("Question: 1+1?\nAnswer: 2")


def test_rule_based_audit_flags_structural_problems():
    ok = rule_based_audit(make_content(question="Q", options=["a", "b"], correct_index=0, solution="s"), "T")
    duplicate = rule_based_audit(McqContent(question="Q", options=("a", "A"), correct_index=0, solution="s"))
    no_answer = rule_based_audit(NumericalContent(question="Q", correct_answer="", solution="s"))

    assert ok.status == "APPROVED" and ok.logs == () and ok.topic == "T"
    assert ok.redlines.options == ("a", "b")
    assert duplicate.status == "NEEDS_CORRECTION"
    assert duplicate.logs[0].severity == "HIGH"
    assert no_answer.logs[0].type == "NUMERICAL"


def test_mock_engine_answers_single_question_prompts():
    client = AuditClient(llm=MockLLM())
    content = make_content(question="2+2?", options=["3", "4"], correct_index=1, solution="4")

    result = client.audit_question(content, "Arithmetic")
    unanswered = client.audit_question(NumericalContent(question="Q", correct_answer="", solution="s"))

    assert result.status == "APPROVED"
    assert result.clean == content
    assert result.topic == "Arithmetic"
    assert result.redlines.options == ("3", "4")
    assert unanswered.status == "NEEDS_CORRECTION"
    assert unanswered.logs[0].type == "NUMERICAL"
    assert unanswered.topic is None
    assert client.supports_media() is False


def test_mock_engine_answers_batch_prompts_per_block():
    text = (
        "Question: 2+2?\nOptions: 3 | 4\nAnswer: B\nSolution: 4\n\n---NEXT QUESTION---\n\n"
        "Question: Capital of Peru?\nOptions: Lima | Quito\nAnswer: Bogota\nSolution: Lima"
    )

    items = AuditClient(llm=MockLLM()).audit_raw(text)

    assert [item.ok for item in items] == [True, False]
    assert items[0].original.correct_index == 1
    assert items[0].result.clean == items[0].original
    assert "Bogota" in items[1].error


def test_mock_engine_rejects_prompts_without_payload():
    with pytest.raises(AuditError):
        AuditClient(llm=MockLLM())._call(prompt="hello", schema=AUDIT_RESULT_SCHEMA)


def test_audit_question_sends_schema_and_system_prompt():
    llm = StubLLM(_payload())
    client = AuditClient(llm=llm, model="gemini-test")
    content = make_content(question="What is 2+2?", options=["3", "4", "5", "6"], correct_index=2, solution="2+2=4")

    result = client.audit_question(content, "Arithmetic")

    call = llm.calls[0]
    assert call["schema"] is AUDIT_RESULT_SCHEMA
    assert call["system_prompt"] == SYSTEM_PROMPT
    assert call["model"] == "gemini-test"
    assert '"correctOptionIndex": 2' in call["prompt"]
    assert result.clean.correct_index == 1


def test_audit_question_wraps_engine_failures():
    client = AuditClient(llm=StubLLM(error=RuntimeError("HTTP 500")))

    with pytest.raises(AuditError) as exc_info:
        client.audit_question(NumericalContent(question="Q", correct_answer="1", solution="s"))

    assert "HTTP 500" in exc_info.value.message


def test_audit_raw_uses_batch_schema():
    item = {**_payload(), "originalParsed": _payload()["clean"]}
    llm = StubLLM([item, {"status": "APPROVED"}])

    items = AuditClient(llm=llm).audit_raw("Question: ...")

    assert llm.calls[0]["schema"] is RAW_AUDIT_SCHEMA
    assert [entry.ok for entry in items] == [True, False]


def test_audit_document_requires_media_support():
    with pytest.raises(AuditError):
        AuditClient(llm=StubLLM([])).audit_document(b"%PDF", "application/pdf")


def test_audit_document_with_media_capable_engine():
    item = {**_payload(), "originalParsed": _payload()["clean"]}
    llm = MediaStubLLM([item])
    client = AuditClient(llm=llm)

    items = client.audit_document(b"%PDF-1.4", "application/pdf")

    assert client.supports_media() is True
    assert llm.calls[0]["mime"] == "application/pdf"
    assert items[0].ok
