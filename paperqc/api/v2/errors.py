from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paperqc.core.errors import (
    AuditError,
    AuditInProgressError,
    AuditTimeoutError,
    ConfirmationRequiredError,
    ExtractionError,
    InvariantViolation,
    NotFoundError,
    PaperQCError,
    PersistenceError,
    StaleResultError,
    TransitionRefusedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[Exception], int] = {
    ValidationError: 422,
    ExtractionError: 422,
    NotFoundError: 404,
    AuditInProgressError: 409,
    ConfirmationRequiredError: 409,
    TransitionRefusedError: 409,
    StaleResultError: 409,
    AuditTimeoutError: 504,
    AuditError: 502,
    PersistenceError: 503,
}


def status_for(exc: Exception) -> int:
    # Most specific class wins, e.g. AuditTimeoutError over AuditError.
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


def _body(exc: PaperQCError) -> dict:
    return {
        "detail": exc.message,
        "questionId": exc.question_id,
        "paperId": exc.paper_id,
        "stateChanged": exc.state_changed,
    }


async def paperqc_error_handler(_: Request, exc: PaperQCError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("Request failed with %s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=status_code, content=_body(exc))


async def invariant_violation_handler(_: Request, exc: InvariantViolation) -> JSONResponse:
    logger.error("Lifecycle invariant violated: %s", exc.message)
    return JSONResponse(
        status_code=409,
        content={"detail": exc.message, "questionId": exc.question_id, "paperId": None, "stateChanged": False},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PaperQCError, paperqc_error_handler)
    app.add_exception_handler(InvariantViolation, invariant_violation_handler)
