"""Error taxonomy shared by the lifecycle engine, the controller and the API.

Controller-raised errors carry the affected question/paper ids and whether any
state changed. A failed operation never commits partial state, so
``state_changed`` is ``False`` unless an error explicitly says otherwise.
"""

from __future__ import annotations


class PaperQCError(Exception):
    def __init__(
        self,
        message: str,
        *,
        question_id: str | None = None,
        paper_id: str | None = None,
        state_changed: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.question_id = question_id
        self.paper_id = paper_id
        self.state_changed = state_changed


class ValidationError(PaperQCError):
    """User input is missing mandatory fields or is malformed."""

    def __init__(self, message: str, *, field: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field


class AuditError(PaperQCError):
    """The external audit call failed or returned unusable output."""


class AuditTimeoutError(AuditError):
    pass


class AuditInProgressError(AuditError):
    """An audit for the same question is already in flight."""


class ExtractionError(PaperQCError):
    def __init__(self, message: str, *, filename: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.filename = filename


class PersistenceError(PaperQCError):
    """A store call failed; the in-memory change was not committed."""


class NotFoundError(PaperQCError):
    pass


class ConfirmationRequiredError(PaperQCError):
    """The intent would discard unarchived work and was not confirmed."""


class InvariantViolation(AssertionError):
    """Lifecycle contract broken by the caller, e.g. approving an unaudited question."""

    def __init__(self, message: str, *, question_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.question_id = question_id


class TransitionRefusedError(PaperQCError):
    """The intent is not legal in the question's current state (locked, or not yet audited)."""


class StaleResultError(PaperQCError):
    """The paper or question changed underneath an in-flight operation; its result was discarded."""
