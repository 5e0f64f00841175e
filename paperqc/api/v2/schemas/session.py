from pydantic import BaseModel, Field

from paperqc.api.v2.schemas.paper import PaperResponse


class BulkSubmitRequest(BaseModel):
    rawText: str | None = None
    snippets: list[str] = Field(default_factory=list)
    subject: str | None = None
    createdBy: str | None = None


class ItemFailureItem(BaseModel):
    source: str
    index: int | None = None
    message: str


class BulkReportResponse(BaseModel):
    paperId: str | None = None
    created: list[str] = Field(default_factory=list)
    failures: list[ItemFailureItem] = Field(default_factory=list)
    stateChanged: bool


class ApproveAllResponse(BaseModel):
    approvedIds: list[str] = Field(default_factory=list)
    paper: PaperResponse | None = None


class AnalyticsResponse(BaseModel):
    total: int
    byType: dict[str, int] = Field(default_factory=dict)
    bySeverity: dict[str, int] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    detail: str
    questionId: str | None = None
    paperId: str | None = None
    stateChanged: bool = False
