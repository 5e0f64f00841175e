from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paperqc.infra.db.base import Base


class PaperRow(Base):
    __tablename__ = "papers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    title: Mapped[str] = mapped_column(Text)
    subject: Mapped[str] = mapped_column(String(128))
    created_by: Mapped[str] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(32), default="DRAFT", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    questions: Mapped[list[QuestionRow]] = relationship(
        back_populates="paper",
        cascade="all, delete-orphan",
        order_by="QuestionRow.order_index",
    )


class QuestionRow(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(64), index=True)
    paper_id: Mapped[int] = mapped_column(ForeignKey("papers.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    topic: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    original_json: Mapped[dict] = mapped_column("original", JSON)
    audited_json: Mapped[dict | None] = mapped_column("audited", JSON, nullable=True)
    approved_json: Mapped[dict | None] = mapped_column("approved", JSON, nullable=True)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    paper: Mapped[PaperRow] = relationship(back_populates="questions")
