import asyncio
import time

from paperqc.domain import lifecycle
from paperqc.domain.models import AuditLog, AuditResult, RedlineContent, make_content
from paperqc.infra.db.session import init_db
from paperqc.infra.db.store import DatabasePaperStore
from paperqc.infra.store.memory import MemoryPaperStore


def _sample_paper(title: str = "Mechanics"):
    mcq = make_content(question="Unit of force?", options=["Joule", "Newton"], correct_index=1, solution="F = ma")
    numerical = make_content(question="g on Earth?", correct_answer="9.8", solution="Standard gravity")
    audited = lifecycle.apply_audit_result(
        lifecycle.create_question(mcq, "Forces"),
        AuditResult(
            status="NEEDS_CORRECTION",
            logs=(AuditLog(type="CONCEPTUAL", severity="MEDIUM", message="Clarify SI unit"),),
            redlines=RedlineContent(
                question="Unit of <del>force</del><ins>force (SI)</ins>?",
                solution="F = ma",
                options=("Joule", "Newton"),
            ),
            clean=make_content(
                question="Unit of force (SI)?", options=["Joule", "Newton"], correct_index=1, solution="F = ma"
            ),
        ),
    )
    approved = lifecycle.approve(audited)
    pending = lifecycle.create_question(numerical, "Gravity")
    return lifecycle.new_paper(title=title, subject="Physics", created_by="tester", questions=[approved, pending])


def test_memory_store_roundtrip_and_latency():
    store = MemoryPaperStore(latency_ms=30)
    paper = _sample_paper()

    async def _run():
        started = time.monotonic()
        await store.save(paper)
        elapsed = time.monotonic() - started
        listed = await store.list()
        await store.delete(paper.paper_id)
        await store.delete("paper_unknown")
        return elapsed, listed, await store.list()

    elapsed, listed, after_delete = asyncio.run(_run())

    assert elapsed >= 0.025
    assert listed == [paper]
    assert after_delete == []


def test_database_store_persists_across_instances():
    init_db()
    paper = _sample_paper("Persisted")

    asyncio.run(DatabasePaperStore().save(paper))
    stored = {item.paper_id: item for item in asyncio.run(DatabasePaperStore().list())}

    loaded = stored[paper.paper_id]
    assert loaded.title == "Persisted"
    assert loaded.status == paper.status == "IN_REVIEW"
    assert [q.question_id for q in loaded.questions] == [q.question_id for q in paper.questions]
    assert loaded.questions[0] == paper.questions[0]
    assert loaded.questions[0].audited.logs[0].log_id == paper.questions[0].audited.logs[0].log_id
    assert loaded.questions[1].original.correct_answer == "9.8"
    assert loaded.created_at == paper.created_at


def test_database_store_save_replaces_questions_and_delete():
    init_db()
    store = DatabasePaperStore()
    paper = _sample_paper("Replace me")

    async def _run():
        await store.save(paper)
        trimmed = lifecycle.approve_all(paper)[0]
        _, history = lifecycle.archive_paper(trimmed.questions[:1], (), subject="Physics", created_by="tester")
        await store.save(history[0])
        after_save = {item.paper_id: item for item in await store.list()}
        await store.delete(paper.paper_id)
        await store.delete(history[0].paper_id)
        return history[0], after_save, {item.paper_id for item in await store.list()}

    archived, after_save, remaining = asyncio.run(_run())

    assert after_save[archived.paper_id].archived
    assert len(after_save[archived.paper_id].questions) == 1
    assert len(after_save[paper.paper_id].questions) == 2
    assert paper.paper_id not in remaining
    assert archived.paper_id not in remaining
