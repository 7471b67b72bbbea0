"""
Structured errors raised by the evaluation and ledger services.

Every error carries a stable ``code`` so the calling layer can translate it
into a user-facing message or an HTTP status without parsing text:

- EngineError: base class
- InvalidScore, DuplicateEvaluation, SubjectNotAssigned, BudgetExceeded: grade validation
- GradeNotFound, EnrollmentNotFound, TermNotFound, ClassNotFound: missing records
- InvalidBudget: curriculum administration
- DuplicateEnrollment, GradesAccessDenied: enrollment directory
- InvalidLedgerEntry, StaleLedger: financial ledger
- ThresholdNotConfigured: recovered internally, never surfaced to callers
"""
from decimal import Decimal


class EngineError(Exception):
    """
    Base exception for the engine.

    Attributes:
        message: Human-readable error description.
        details: Dictionary with additional error context.
    """
    code = 'error'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self):
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message

    def to_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


class InvalidScore(EngineError):
    code = 'invalid_score'


class DuplicateEvaluation(EngineError):
    code = 'duplicate_evaluation'


class SubjectNotAssigned(EngineError):
    code = 'subject_not_assigned'


class BudgetExceeded(EngineError):
    """Adding or growing an evaluation would overshoot the subject budget."""
    code = 'budget_exceeded'

    def __init__(self, message, remaining, details=None):
        self.remaining = Decimal(str(remaining))
        details = dict(details or {})
        details['remaining'] = str(self.remaining)
        super().__init__(message, details)


class GradeNotFound(EngineError):
    code = 'grade_not_found'


class EnrollmentNotFound(EngineError):
    code = 'enrollment_not_found'


class TermNotFound(EngineError):
    code = 'term_not_found'


class ClassNotFound(EngineError):
    code = 'class_not_found'


class InvalidBudget(EngineError):
    code = 'invalid_budget'


class DuplicateEnrollment(EngineError):
    code = 'duplicate_enrollment'


class GradesAccessDenied(EngineError):
    code = 'grades_access_denied'


class InvalidLedgerEntry(EngineError):
    code = 'invalid_ledger_entry'


class StaleLedger(EngineError):
    """The ledger changed since the caller read it."""
    code = 'stale_ledger'


class ThresholdNotConfigured(EngineError):
    code = 'threshold_not_configured'
