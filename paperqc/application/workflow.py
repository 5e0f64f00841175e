"""Workflow controller: turns user intents into lifecycle transitions and persisted papers.

Concurrency model (single event loop, single owner of the active session):

* one lock per question id serializes audit/approve/reject on that question;
  a second audit request while one is in flight is rejected with
  ``AuditInProgressError`` instead of being queued;
* one lock per paper id serializes store writes, and every write re-reads the
  current session under that lock, so concurrent operations on different
  questions never overwrite each other;
* in-memory state is replaced only after the store accepted the write.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Sequence

from paperqc.application.audit import AuditClient, RawAuditItem
from paperqc.application.extraction import ExtractionClient, is_multimodal, resolve_mime
from paperqc.core.errors import (
    AuditError,
    AuditInProgressError,
    AuditTimeoutError,
    ConfirmationRequiredError,
    ExtractionError,
    NotFoundError,
    PaperQCError,
    PersistenceError,
    StaleResultError,
    TransitionRefusedError,
    ValidationError,
)
from paperqc.domain import lifecycle
from paperqc.domain.analytics import LogSummary, summarize_logs
from paperqc.domain.models import Paper, Question, QuestionContent, make_content
from paperqc.domain.offline import QUESTION_SEPARATOR, strip_separators
from paperqc.infra.ports.paper_store import PaperStorePort

logger = logging.getLogger(__name__)

_NEW_SESSION_KEY = "__new_session__"

_BULK_MARKERS: dict[str, re.Pattern[str]] = {
    "question": re.compile(r"\bquestions?\b|^\s*q\s*[:.)\-]", re.IGNORECASE | re.MULTILINE),
    "answer or options": re.compile(r"\b(?:answers?|ans|options?|choices?)\b", re.IGNORECASE),
    "solution": re.compile(r"\b(?:solutions?|explanations?)\b", re.IGNORECASE),
}


@dataclass(frozen=True)
class UploadedFile:
    filename: str | None
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class ItemFailure:
    source: str
    index: int | None
    message: str


@dataclass
class BulkReport:
    paper_id: str | None = None
    created: list[str] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)

    @property
    def state_changed(self) -> bool:
        return bool(self.created)


class _KeyedLocks:
    """asyncio locks created on demand and dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def validate_manual_fields(
    *,
    question: str | None,
    solution: str | None,
    options: Sequence[str] | None = None,
    correct_index: int | None = None,
    correct_answer: str | None = None,
) -> QuestionContent:
    if not (question or "").strip():
        raise ValidationError("Question text is required", field="question")
    if not (solution or "").strip():
        raise ValidationError("Solution text is required", field="solution")

    if options is not None:
        cleaned = [(item or "").strip() for item in options]
        if len(cleaned) < 2:
            raise ValidationError("An MCQ needs at least two options", field="options")
        if any(not item for item in cleaned):
            raise ValidationError("Every option must be filled in", field="options")
        if len({item.lower() for item in cleaned}) != len(cleaned):
            raise ValidationError("Options must be distinct", field="options")
        if correct_index is None:
            raise ValidationError("Mark the correct option", field="correctIndex")
        return make_content(question=question, solution=solution, options=cleaned, correct_index=correct_index)

    if not (correct_answer or "").strip():
        raise ValidationError("A correct answer is required when no options are given", field="correctAnswer")
    return make_content(question=question, solution=solution, correct_answer=correct_answer)


def validate_bulk_text(text: str) -> None:
    if not text.strip():
        raise ValidationError("Nothing to submit", field="rawText")
    checked = strip_separators(text)
    missing = [name for name, pattern in _BULK_MARKERS.items() if not pattern.search(checked)]
    if missing:
        raise ValidationError(
            f"Pasted content is missing required markers: {', '.join(missing)}",
            field="rawText",
        )


class WorkflowController:
    def __init__(
        self,
        *,
        store: PaperStorePort,
        audit_client: AuditClient,
        extraction_client: ExtractionClient,
        history_retention: int = lifecycle.DEFAULT_RETENTION_CAP,
        audit_timeout_seconds: float = 120.0,
        extraction_timeout_seconds: float = 60.0,
        default_author: str = "Faculty Teacher",
        default_subject: str = "General",
    ):
        self.store = store
        self.audit_client = audit_client
        self.extraction_client = extraction_client
        self.history_retention = max(1, history_retention)
        self.audit_timeout_seconds = audit_timeout_seconds
        self.extraction_timeout_seconds = extraction_timeout_seconds
        self.default_author = default_author
        self.default_subject = default_subject

        self._active: Paper | None = None
        self._loaded_questions: tuple[Question, ...] | None = None
        self._history: tuple[Paper, ...] = ()
        self._auditing: set[str] = set()
        self._pending_writes = 0
        self._loaded = False
        self._question_locks = _KeyedLocks()
        self._paper_locks = _KeyedLocks()

    # -- read side -------------------------------------------------------

    @property
    def active_paper(self) -> Paper | None:
        return self._active

    @property
    def history(self) -> tuple[Paper, ...]:
        return self._history

    @property
    def auditing_ids(self) -> frozenset[str]:
        return frozenset(self._auditing)

    @property
    def is_syncing(self) -> bool:
        return self._pending_writes > 0

    @property
    def has_unarchived_work(self) -> bool:
        if self._active is None or not self._active.questions:
            return False
        return self._active.questions != self._loaded_questions

    def session_analytics(self) -> LogSummary:
        return summarize_logs(self._active.questions if self._active else ())

    def _require_question(self, question_id: str) -> tuple[Paper, Question]:
        paper = self._active
        question = paper.find_question(question_id) if paper else None
        if paper is None or question is None:
            raise NotFoundError(f"Question {question_id} is not in the active session", question_id=question_id)
        return paper, question

    # -- persistence -----------------------------------------------------

    async def _store_call(self, operation: str, call, *, paper_id: str | None) -> Any:
        self._pending_writes += 1
        try:
            return await call
        except PersistenceError as exc:
            exc.paper_id = exc.paper_id or paper_id
            logger.exception("Store %s failed for paper %s", operation, paper_id)
            raise
        except Exception as exc:
            logger.exception("Store %s failed for paper %s", operation, paper_id)
            raise PersistenceError(f"Could not {operation} paper {paper_id}: {exc}", paper_id=paper_id) from exc
        finally:
            self._pending_writes -= 1

    async def _commit(
        self,
        paper_id: str,
        transform: Callable[[Paper], Paper | None],
        *,
        question_id: str | None = None,
    ) -> Paper:
        """Apply ``transform`` to the current session under the paper lock, save, then publish."""
        async with self._paper_locks.hold(paper_id):
            current = self._active
            if current is None or current.paper_id != paper_id:
                raise StaleResultError(
                    f"Paper {paper_id} is no longer the active session; result discarded",
                    paper_id=paper_id,
                    question_id=question_id,
                )
            updated = transform(current)
            if updated is None:
                raise StaleResultError(
                    f"Question {question_id} changed or vanished; result discarded",
                    paper_id=paper_id,
                    question_id=question_id,
                )
            if updated is current:
                return current
            try:
                await self._store_call("save", self.store.save(updated), paper_id=paper_id)
            except PersistenceError as exc:
                exc.question_id = exc.question_id or question_id
                raise
            self._active = updated
            return updated

    async def _append_to_session(
        self,
        questions: Sequence[Question],
        *,
        subject: str | None = None,
        created_by: str | None = None,
    ) -> Paper:
        """Append to the active paper, or open a new one; subject and author only apply to a new paper."""
        async with self._paper_locks.hold(_NEW_SESSION_KEY):
            if self._active is None:
                paper = lifecycle.new_paper(
                    title=questions[0].topic if questions else None,
                    subject=(subject or "").strip() or self.default_subject,
                    created_by=(created_by or "").strip() or self.default_author,
                    questions=questions,
                )
                await self._store_call("save", self.store.save(paper), paper_id=paper.paper_id)
                self._active = paper
                self._loaded_questions = None
                return paper
        return await self._commit(self._active.paper_id, lambda paper: lifecycle.append_questions(paper, questions))

    async def _replace_session(self, replacement: Paper | None, *, loaded: bool = False) -> None:
        current = self._active
        if current is None:
            if replacement is not None:
                await self._store_call("save", self.store.save(replacement), paper_id=replacement.paper_id)
            self._active = replacement
            self._loaded_questions = replacement.questions if loaded and replacement else None
            return

        async with self._paper_locks.hold(current.paper_id):
            if self._active is not current:
                raise StaleResultError("Active session changed concurrently", paper_id=current.paper_id)
            if replacement is not None:
                await self._store_call("save", self.store.save(replacement), paper_id=replacement.paper_id)
            self._active = replacement
            self._loaded_questions = replacement.questions if loaded and replacement else None
            try:
                await self._store_call("delete", self.store.delete(current.paper_id), paper_id=current.paper_id)
            except PersistenceError as exc:
                exc.state_changed = True
                raise

    # -- external calls --------------------------------------------------

    async def _call_external(self, func: Callable[..., Any], *args: Any, timeout: float, extraction: bool = False) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if extraction:
                raise ExtractionError(f"Extraction timed out after {timeout:g}s") from exc
            raise AuditTimeoutError(f"Audit timed out after {timeout:g}s") from exc
        except PaperQCError:
            raise
        except Exception as exc:
            if extraction:
                raise ExtractionError(f"Extraction failed: {exc}") from exc
            raise AuditError(f"Audit failed: {exc}") from exc

    # -- intents ---------------------------------------------------------

    async def load(self) -> None:
        papers = await self._store_call("list", self.store.list(), paper_id=None)
        archived = sorted((p for p in papers if p.archived), key=lambda p: p.archived_at, reverse=True)
        working = [p for p in papers if not p.archived]

        self._history = tuple(archived[: self.history_retention])
        self._active = max(working, key=lambda p: p.updated_at) if working else None
        self._loaded_questions = None
        self._loaded = True
        if len(working) > 1:
            logger.warning("Found %d working papers; resuming %s", len(working), self._active.paper_id)
        for stale in archived[self.history_retention :]:
            await self._store_call("delete", self.store.delete(stale.paper_id), paper_id=stale.paper_id)

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def submit_manual(
        self,
        *,
        question: str | None,
        solution: str | None,
        options: Sequence[str] | None = None,
        correct_index: int | None = None,
        correct_answer: str | None = None,
        topic: str | None = None,
        subject: str | None = None,
        created_by: str | None = None,
    ) -> Question:
        content = validate_manual_fields(
            question=question,
            solution=solution,
            options=options,
            correct_index=correct_index,
            correct_answer=correct_answer,
        )
        created = lifecycle.create_question(content, topic)
        await self._append_to_session([created], subject=subject, created_by=created_by)
        return created

    def _questions_from_items(
        self, items: Sequence[RawAuditItem], *, source: str, topic_prefix: str | None = None
    ) -> tuple[list[Question], list[ItemFailure]]:
        questions: list[Question] = []
        failures: list[ItemFailure] = []
        for item in items:
            if not item.ok or item.original is None or item.result is None:
                logger.warning("Skipping item %d from %s: %s", item.index, source, item.error)
                failures.append(ItemFailure(source=source, index=item.index, message=item.error or "Unusable item"))
                continue
            result = item.result
            if topic_prefix:
                result = replace(result, topic=f"[{topic_prefix}] {result.topic or lifecycle.DEFAULT_TOPIC}")
            try:
                question = lifecycle.create_question(item.original, result.topic)
            except ValidationError as exc:
                failures.append(ItemFailure(source=source, index=item.index, message=exc.message))
                continue
            questions.append(lifecycle.apply_audit_result(question, result))
        return questions, failures

    async def submit_bulk(
        self,
        raw: str | Sequence[str],
        *,
        subject: str | None = None,
        created_by: str | None = None,
    ) -> BulkReport:
        snippets = [raw] if isinstance(raw, str) else list(raw)
        staged = [item.strip() for item in snippets if item and item.strip()]
        if not staged:
            raise ValidationError("Nothing to submit", field="rawText")
        # Each staged snippet is checked alone; the joining separator must not count as a marker.
        for snippet in staged:
            validate_bulk_text(snippet)
        text = QUESTION_SEPARATOR.join(staged)

        items = await self._call_external(self.audit_client.audit_raw, text, timeout=self.audit_timeout_seconds)
        questions, failures = self._questions_from_items(items, source="paste")

        report = BulkReport(failures=failures)
        if questions:
            paper = await self._append_to_session(questions, subject=subject, created_by=created_by)
            report.paper_id = paper.paper_id
            report.created = [q.question_id for q in questions]
        logger.info("Bulk paste: %d created, %d failed", len(report.created), len(failures))
        return report

    async def submit_files(
        self,
        files: Sequence[UploadedFile],
        *,
        subject: str | None = None,
        created_by: str | None = None,
    ) -> BulkReport:
        if not files:
            raise ValidationError("No files uploaded", field="files")

        report = BulkReport()
        questions: list[Question] = []
        for idx, upload in enumerate(files):
            name = upload.filename or f"file-{idx + 1}"
            mime = resolve_mime(upload.content_type, upload.filename)
            try:
                if is_multimodal(mime) and self.audit_client.supports_media():
                    items = await self._call_external(
                        self.audit_client.audit_document, upload.data, mime, timeout=self.audit_timeout_seconds
                    )
                else:
                    text = await self._call_external(
                        self.extraction_client.extract_text,
                        upload.data,
                        mime,
                        name,
                        timeout=self.extraction_timeout_seconds,
                        extraction=True,
                    )
                    items = await self._call_external(
                        self.audit_client.audit_raw, text, timeout=self.audit_timeout_seconds
                    )
            except (ExtractionError, AuditError) as exc:
                logger.warning("Skipping file %s: %s", name, exc.message)
                report.failures.append(ItemFailure(source=name, index=None, message=exc.message))
                continue

            created, failures = self._questions_from_items(items, source=name, topic_prefix=name)
            questions.extend(created)
            report.failures.extend(failures)

        if questions:
            paper = await self._append_to_session(questions, subject=subject, created_by=created_by)
            report.paper_id = paper.paper_id
            report.created = [q.question_id for q in questions]
        logger.info("File upload: %d created, %d failed", len(report.created), len(report.failures))
        return report

    async def request_audit(self, question_id: str) -> Question:
        self._require_question(question_id)
        if question_id in self._auditing:
            raise AuditInProgressError(f"Question {question_id} is already being audited", question_id=question_id)

        self._auditing.add(question_id)
        try:
            async with self._question_locks.hold(question_id):
                # Re-read: an approve/reject may have been queued ahead of this audit.
                paper, question = self._require_question(question_id)
                if question.locked:
                    raise TransitionRefusedError(
                        f"Question {question_id} is approved and locked", question_id=question_id
                    )

                logger.info("Auditing question %s (v%d)", question_id, question.version)
                try:
                    result = await self._call_external(
                        self.audit_client.audit_question,
                        question.original,
                        question.topic,
                        timeout=self.audit_timeout_seconds,
                    )
                except AuditError as exc:
                    exc.question_id = question_id
                    exc.paper_id = paper.paper_id
                    logger.warning("Audit failed for question %s: %s", question_id, exc.message)
                    raise

                def _apply(current: Paper) -> Paper | None:
                    latest = current.find_question(question_id)
                    if latest is None or latest.version != question.version:
                        return None
                    return lifecycle.replace_question(current, lifecycle.apply_audit_result(latest, result))

                try:
                    updated = await self._commit(paper.paper_id, _apply, question_id=question_id)
                except StaleResultError:
                    logger.warning("Discarding audit result for vanished question %s", question_id)
                    raise
                logger.info("Audit finished for question %s", question_id)
                return updated.find_question(question_id)
        finally:
            self._auditing.discard(question_id)

    async def approve_question(self, question_id: str) -> Question:
        async with self._question_locks.hold(question_id):
            paper, question = self._require_question(question_id)
            if question.locked:
                return question
            if question.audited is None:
                raise TransitionRefusedError(
                    f"Question {question_id} has not been audited yet", question_id=question_id
                )

            def _apply(current: Paper) -> Paper | None:
                latest = current.find_question(question_id)
                if latest is None:
                    return None
                return lifecycle.replace_question(current, lifecycle.approve(latest))

            updated = await self._commit(paper.paper_id, _apply, question_id=question_id)
            return updated.find_question(question_id)

    async def reject_question(self, question_id: str) -> Question:
        async with self._question_locks.hold(question_id):
            paper, question = self._require_question(question_id)
            if question.locked:
                raise TransitionRefusedError(
                    f"Question {question_id} is approved and locked", question_id=question_id
                )
            if question.audited is None:
                raise TransitionRefusedError(
                    f"Question {question_id} has not been audited yet", question_id=question_id
                )

            def _apply(current: Paper) -> Paper | None:
                latest = current.find_question(question_id)
                if latest is None:
                    return None
                return lifecycle.replace_question(current, lifecycle.reject(latest))

            updated = await self._commit(paper.paper_id, _apply, question_id=question_id)
            return updated.find_question(question_id)

    async def approve_all(self) -> list[str]:
        paper = self._active
        if paper is None:
            return []
        candidates = sorted(q.question_id for q in paper.questions if q.stage == "audited")
        if not candidates:
            return []

        async with AsyncExitStack() as stack:
            # Sorted acquisition; waits out any in-flight audit on these ids.
            for question_id in candidates:
                await stack.enter_async_context(self._question_locks.hold(question_id))

            approved: list[str] = []

            def _apply(current: Paper) -> Paper | None:
                updated, ids = lifecycle.approve_all(current, question_ids=candidates)
                approved.extend(ids)
                return updated

            await self._commit(paper.paper_id, _apply)
            logger.info("Approved %d questions in paper %s", len(approved), paper.paper_id)
            return approved

    async def archive_and_reset(self) -> Paper:
        current = self._active
        if current is None or not current.questions:
            raise ValidationError("Cannot archive an empty session")

        async with self._paper_locks.hold(current.paper_id):
            if self._active is not current:
                raise StaleResultError("Active session changed concurrently", paper_id=current.paper_id)

            archived, history = lifecycle.archive_paper(
                current.questions,
                self._history,
                self.history_retention,
                subject=current.subject,
                created_by=current.created_by,
            )
            await self._store_call("save", self.store.save(archived), paper_id=archived.paper_id)

            kept = {paper.paper_id for paper in history}
            evicted = [paper.paper_id for paper in self._history if paper.paper_id not in kept]
            self._history = history
            self._active = None
            self._loaded_questions = None
            try:
                for paper_id in [*evicted, current.paper_id]:
                    await self._store_call("delete", self.store.delete(paper_id), paper_id=paper_id)
            except PersistenceError as exc:
                exc.state_changed = True
                raise
            logger.info("Archived paper %s (%d questions)", archived.paper_id, len(archived.questions))
            return archived

    async def load_from_history(self, paper_id: str, *, confirm: bool = False) -> Paper:
        source = next((paper for paper in self._history if paper.paper_id == paper_id), None)
        if source is None:
            raise NotFoundError(f"Paper {paper_id} is not in the history", paper_id=paper_id)
        if self.has_unarchived_work and not confirm:
            raise ConfirmationRequiredError(
                "Loading a paper discards the unarchived active session; confirm to continue",
                paper_id=self._active.paper_id if self._active else None,
            )

        working = lifecycle.new_paper(
            title=source.title,
            subject=source.subject,
            created_by=source.created_by,
            questions=source.questions,
        )
        await self._replace_session(working, loaded=True)
        return working

    async def delete_from_history(self, paper_id: str) -> None:
        if not any(paper.paper_id == paper_id for paper in self._history):
            raise NotFoundError(f"Paper {paper_id} is not in the history", paper_id=paper_id)
        await self._store_call("delete", self.store.delete(paper_id), paper_id=paper_id)
        self._history = tuple(paper for paper in self._history if paper.paper_id != paper_id)

    async def clear_active_session(self, *, confirm: bool = False) -> None:
        if self.has_unarchived_work and not confirm:
            raise ConfirmationRequiredError(
                "Clearing discards the unarchived active session; confirm to continue",
                paper_id=self._active.paper_id if self._active else None,
            )
        await self._replace_session(None)
