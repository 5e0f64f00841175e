from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from paperqc.api.v2.schemas.question import QuestionResponse

PaperStatus = Literal["DRAFT", "IN_REVIEW", "PENDING_QC", "LOCKED"]


class PaperResponse(BaseModel):
    paperId: str
    title: str
    subject: str
    createdBy: str
    status: PaperStatus
    createdAt: datetime
    updatedAt: datetime
    archivedAt: datetime | None = None
    questionCount: int
    questions: list[QuestionResponse] = Field(default_factory=list)


class SessionResponse(BaseModel):
    paper: PaperResponse | None = None
    hasUnarchivedWork: bool
    isSyncing: bool
    auditingIds: list[str] = Field(default_factory=list)


class HistoryResponse(BaseModel):
    papers: list[PaperResponse]
    count: int
    retention: int


class DeleteResponse(BaseModel):
    ok: bool = True
    paperId: str | None = None
