from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

QuestionStatus = Literal["PENDING", "NEEDS_CORRECTION", "APPROVED", "REJECTED"]
QuestionStage = Literal["pending", "audited", "locked"]


class QuestionContentModel(BaseModel):
    kind: Literal["mcq", "numerical"]
    question: str
    options: list[str] | None = None
    correctOptionIndex: int | None = None
    correctAnswer: str | None = None
    solution: str


class RedlineModel(BaseModel):
    question: str
    solution: str
    options: list[str] | None = None
    correctAnswer: str | None = None


class AuditLogItem(BaseModel):
    id: str
    type: Literal["CONCEPTUAL", "NUMERICAL", "LOGICAL", "GRAMMATICAL"]
    severity: Literal["HIGH", "MEDIUM", "LOW"]
    message: str


class AuditSnapshotModel(BaseModel):
    redlines: RedlineModel
    clean: QuestionContentModel
    logs: list[AuditLogItem] = Field(default_factory=list)
    changeCount: int = 0


class QuestionResponse(BaseModel):
    questionId: str
    topic: str
    status: QuestionStatus
    stage: QuestionStage
    locked: bool
    auditing: bool = False
    version: int
    lastModified: datetime
    original: QuestionContentModel
    audited: AuditSnapshotModel | None = None
    approved: QuestionContentModel | None = None


class ManualQuestionRequest(BaseModel):
    question: str | None = None
    solution: str | None = None
    options: list[str] | None = None
    correctIndex: int | None = None
    correctAnswer: str | None = None
    topic: str | None = None
    subject: str | None = None
    createdBy: str | None = None
