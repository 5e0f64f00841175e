from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from sqlalchemy import delete, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from paperqc.core.errors import PersistenceError
from paperqc.domain.models import (
    Paper,
    Question,
    content_from_dict,
    content_to_dict,
    snapshot_from_dict,
    snapshot_to_dict,
)
from paperqc.infra.db.models import PaperRow, QuestionRow
from paperqc.infra.db.session import get_session_factory
from paperqc.infra.ports.paper_store import PaperStorePort


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabasePaperStore(PaperStorePort):
    """Persistence layer backed by SQLAlchemy. Blocking session work runs in a worker thread."""

    def __init__(self):
        self._session_factory = get_session_factory()

    @staticmethod
    def _to_question(row: QuestionRow) -> Question:
        return Question(
            question_id=row.public_id,
            topic=row.topic,
            status=row.status,  # type: ignore[arg-type]
            original=content_from_dict(row.original_json or {}),
            audited=snapshot_from_dict(row.audited_json) if row.audited_json else None,
            approved=content_from_dict(row.approved_json) if row.approved_json else None,
            version=row.version,
            last_modified=_aware(row.last_modified),
        )

    @classmethod
    def _to_paper(cls, row: PaperRow) -> Paper:
        return Paper(
            paper_id=row.public_id,
            title=row.title,
            subject=row.subject,
            created_by=row.created_by,
            questions=tuple(cls._to_question(item) for item in row.questions),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            archived_at=_aware(row.archived_at),
        )

    @staticmethod
    def _to_question_row(question: Question, *, order_index: int) -> QuestionRow:
        return QuestionRow(
            public_id=question.question_id,
            order_index=order_index,
            topic=question.topic,
            status=question.status,
            version=question.version,
            original_json=content_to_dict(question.original),
            audited_json=snapshot_to_dict(question.audited) if question.audited else None,
            approved_json=content_to_dict(question.approved) if question.approved else None,
            last_modified=question.last_modified,
        )

    def _list_sync(self) -> list[Paper]:
        with self._session_factory() as db:
            stmt = (
                select(PaperRow)
                .options(selectinload(PaperRow.questions))
                .order_by(desc(PaperRow.created_at), desc(PaperRow.id))
            )
            rows = db.execute(stmt).scalars().all()
            return [self._to_paper(row) for row in rows]

    def _save_sync(self, paper: Paper) -> None:
        with self._session_factory() as db:
            row = db.execute(select(PaperRow).where(PaperRow.public_id == paper.paper_id)).scalar_one_or_none()
            if row is None:
                row = PaperRow(public_id=paper.paper_id, created_at=paper.created_at)
                db.add(row)

            row.title = paper.title
            row.subject = paper.subject
            row.created_by = paper.created_by
            row.status = paper.status
            row.updated_at = paper.updated_at
            row.archived_at = paper.archived_at
            db.flush()

            db.execute(delete(QuestionRow).where(QuestionRow.paper_id == row.id))
            for idx, question in enumerate(paper.questions):
                question_row = self._to_question_row(question, order_index=idx)
                question_row.paper_id = row.id
                db.add(question_row)

            db.commit()

    def _delete_sync(self, paper_id: str) -> None:
        with self._session_factory() as db:
            row = db.execute(select(PaperRow).where(PaperRow.public_id == paper_id)).scalar_one_or_none()
            if row is None:
                return
            db.delete(row)
            db.commit()

    async def list(self) -> list[Paper]:
        try:
            return await asyncio.to_thread(self._list_sync)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list papers: {exc}") from exc

    async def save(self, paper: Paper) -> None:
        try:
            await asyncio.to_thread(self._save_sync, paper)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save paper {paper.paper_id}: {exc}", paper_id=paper.paper_id) from exc

    async def delete(self, paper_id: str) -> None:
        try:
            await asyncio.to_thread(self._delete_sync, paper_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete paper {paper_id}: {exc}", paper_id=paper_id) from exc
