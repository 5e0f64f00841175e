from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from paperqc.api.v2.dependencies import provide_controller
from paperqc.api.v2.schemas.paper import DeleteResponse, HistoryResponse, PaperResponse, SessionResponse
from paperqc.api.v2.schemas.question import (
    AuditLogItem,
    AuditSnapshotModel,
    ManualQuestionRequest,
    QuestionContentModel,
    QuestionResponse,
    RedlineModel,
)
from paperqc.api.v2.schemas.session import (
    AnalyticsResponse,
    ApproveAllResponse,
    BulkReportResponse,
    BulkSubmitRequest,
    ItemFailureItem,
)
from paperqc.application.workflow import BulkReport, UploadedFile, WorkflowController
from paperqc.domain.models import (
    AuditSnapshot,
    Paper,
    Question,
    QuestionContent,
    content_to_dict,
    log_to_dict,
    redlines_to_dict,
)
from paperqc.domain.redlines import total_changes

router = APIRouter(prefix="/v2", tags=["v2"])


def _content_model(content: QuestionContent | None) -> QuestionContentModel | None:
    if content is None:
        return None
    return QuestionContentModel(**content_to_dict(content))


def _snapshot_model(snapshot: AuditSnapshot | None) -> AuditSnapshotModel | None:
    if snapshot is None:
        return None
    return AuditSnapshotModel(
        redlines=RedlineModel(**redlines_to_dict(snapshot.redlines)),
        clean=_content_model(snapshot.clean),
        logs=[AuditLogItem(**log_to_dict(item)) for item in snapshot.logs],
        changeCount=total_changes(snapshot.redlines),
    )


def _question_response(question: Question, auditing: frozenset[str] = frozenset()) -> QuestionResponse:
    return QuestionResponse(
        questionId=question.question_id,
        topic=question.topic,
        status=question.status,
        stage=question.stage,
        locked=question.locked,
        auditing=question.question_id in auditing,
        version=question.version,
        lastModified=question.last_modified,
        original=_content_model(question.original),
        audited=_snapshot_model(question.audited),
        approved=_content_model(question.approved),
    )


def _paper_response(paper: Paper, auditing: frozenset[str] = frozenset()) -> PaperResponse:
    return PaperResponse(
        paperId=paper.paper_id,
        title=paper.title,
        subject=paper.subject,
        createdBy=paper.created_by,
        status=paper.status,
        createdAt=paper.created_at,
        updatedAt=paper.updated_at,
        archivedAt=paper.archived_at,
        questionCount=len(paper.questions),
        questions=[_question_response(item, auditing) for item in paper.questions],
    )


def _session_response(controller: WorkflowController) -> SessionResponse:
    auditing = controller.auditing_ids
    paper = controller.active_paper
    return SessionResponse(
        paper=_paper_response(paper, auditing) if paper else None,
        hasUnarchivedWork=controller.has_unarchived_work,
        isSyncing=controller.is_syncing,
        auditingIds=sorted(auditing),
    )


def _bulk_response(report: BulkReport) -> BulkReportResponse:
    return BulkReportResponse(
        paperId=report.paper_id,
        created=report.created,
        failures=[
            ItemFailureItem(source=item.source, index=item.index, message=item.message) for item in report.failures
        ],
        stateChanged=report.state_changed,
    )


@router.get("/session", response_model=SessionResponse)
async def get_session(controller: WorkflowController = Depends(provide_controller)):
    return _session_response(controller)


@router.delete("/session", response_model=SessionResponse)
async def clear_session(
    confirm: bool = Query(default=False),
    controller: WorkflowController = Depends(provide_controller),
):
    await controller.clear_active_session(confirm=confirm)
    return _session_response(controller)


@router.post("/session/questions", response_model=QuestionResponse, status_code=201)
async def submit_question(payload: ManualQuestionRequest, controller: WorkflowController = Depends(provide_controller)):
    question = await controller.submit_manual(
        question=payload.question,
        solution=payload.solution,
        options=payload.options,
        correct_index=payload.correctIndex,
        correct_answer=payload.correctAnswer,
        topic=payload.topic,
        subject=payload.subject,
        created_by=payload.createdBy,
    )
    return _question_response(question)


@router.post("/session/bulk", response_model=BulkReportResponse)
async def submit_bulk(payload: BulkSubmitRequest, controller: WorkflowController = Depends(provide_controller)):
    snippets = list(payload.snippets)
    if payload.rawText:
        snippets.append(payload.rawText)
    report = await controller.submit_bulk(snippets, subject=payload.subject, created_by=payload.createdBy)
    return _bulk_response(report)


@router.post("/session/files", response_model=BulkReportResponse)
async def submit_files(
    files: list[UploadFile] = File(...),
    subject: str | None = Form(None),
    createdBy: str | None = Form(None),
    controller: WorkflowController = Depends(provide_controller),
):
    if not files:
        raise HTTPException(status_code=422, detail="No files uploaded")

    uploads = [
        UploadedFile(filename=item.filename, content_type=item.content_type, data=await item.read())
        for item in files
    ]
    report = await controller.submit_files(uploads, subject=subject, created_by=createdBy)
    return _bulk_response(report)


@router.post("/session/approve-all", response_model=ApproveAllResponse)
async def approve_all(controller: WorkflowController = Depends(provide_controller)):
    approved_ids = await controller.approve_all()
    paper = controller.active_paper
    return ApproveAllResponse(
        approvedIds=approved_ids,
        paper=_paper_response(paper, controller.auditing_ids) if paper else None,
    )


@router.post("/session/archive", response_model=PaperResponse)
async def archive_session(controller: WorkflowController = Depends(provide_controller)):
    archived = await controller.archive_and_reset()
    return _paper_response(archived)


@router.get("/session/analytics", response_model=AnalyticsResponse)
async def session_analytics(controller: WorkflowController = Depends(provide_controller)):
    summary = controller.session_analytics()
    return AnalyticsResponse(total=summary.total, byType=summary.by_type, bySeverity=summary.by_severity)


@router.post("/questions/{questionId}/audit", response_model=QuestionResponse)
async def audit_question(questionId: str, controller: WorkflowController = Depends(provide_controller)):
    question = await controller.request_audit(questionId)
    return _question_response(question, controller.auditing_ids)


@router.post("/questions/{questionId}/approve", response_model=QuestionResponse)
async def approve_question(questionId: str, controller: WorkflowController = Depends(provide_controller)):
    question = await controller.approve_question(questionId)
    return _question_response(question, controller.auditing_ids)


@router.post("/questions/{questionId}/reject", response_model=QuestionResponse)
async def reject_question(questionId: str, controller: WorkflowController = Depends(provide_controller)):
    question = await controller.reject_question(questionId)
    return _question_response(question, controller.auditing_ids)


@router.get("/history", response_model=HistoryResponse)
async def list_history(controller: WorkflowController = Depends(provide_controller)):
    papers = [_paper_response(item) for item in controller.history]
    return HistoryResponse(papers=papers, count=len(papers), retention=controller.history_retention)


@router.post("/history/{paperId}/load", response_model=SessionResponse)
async def load_history(
    paperId: str,
    confirm: bool = Query(default=False),
    controller: WorkflowController = Depends(provide_controller),
):
    await controller.load_from_history(paperId, confirm=confirm)
    return _session_response(controller)


@router.delete("/history/{paperId}", response_model=DeleteResponse)
async def delete_history(paperId: str, controller: WorkflowController = Depends(provide_controller)):
    await controller.delete_from_history(paperId)
    return DeleteResponse(paperId=paperId)
