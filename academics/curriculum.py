"""
Curriculum registry: which subjects a class takes in a given year, and the
point budget ("max grade") of each.

The grade ledger reads budgets through ``budget_for``; the remaining
functions are the administrative side (assign, unassign, resize).
Arguments accept either model instances or primary keys.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction

from core.exceptions import InvalidBudget, SubjectNotAssigned
from gradebook import config
from .models import ClassSubject

logger = logging.getLogger(__name__)


def get_entry(year, class_assigned, subject):
    """Return the ClassSubject for (year, class, subject) or None."""
    return ClassSubject.objects.filter(
        academic_year=year,
        class_assigned=class_assigned,
        subject=subject
    ).first()


def budget_for(year, class_assigned, subject):
    """
    Point budget of a subject for a class in a year.

    Raises:
        SubjectNotAssigned: the subject is not part of that class's curriculum
    """
    max_grade = ClassSubject.objects.filter(
        academic_year=year,
        class_assigned=class_assigned,
        subject=subject
    ).values_list('max_grade', flat=True).first()

    if max_grade is None:
        raise SubjectNotAssigned(
            "Subject is not assigned to this class.",
            details={
                'year': getattr(year, 'pk', year),
                'class': getattr(class_assigned, 'pk', class_assigned),
                'subject': getattr(subject, 'pk', subject),
            }
        )
    return Decimal(max_grade)


def assigned_subjects(year, class_assigned):
    """Curriculum of a class for a year, ordered by subject name."""
    return list(
        ClassSubject.objects.filter(
            academic_year=year,
            class_assigned=class_assigned
        ).select_related('subject').order_by('subject__name')
    )


def assign_subject(year, class_assigned, subject, max_grade=None):
    """
    Add a subject to a class curriculum.

    Assigning a subject that is already assigned returns the existing entry
    untouched.
    """
    existing = get_entry(year, class_assigned, subject)
    if existing:
        return existing

    budget = _clean_budget(config.DEFAULT_SUBJECT_BUDGET if max_grade is None else max_grade)
    try:
        with transaction.atomic():
            entry = ClassSubject.objects.create(
                academic_year_id=getattr(year, 'pk', year),
                class_assigned_id=getattr(class_assigned, 'pk', class_assigned),
                subject_id=getattr(subject, 'pk', subject),
                max_grade=budget,
            )
    except IntegrityError:
        # Assigned concurrently by another request
        return get_entry(year, class_assigned, subject)

    logger.info(f"Assigned subject {entry.subject_id} to class {entry.class_assigned_id} ({budget} pts)")
    return entry


def unassign_subject(year, class_assigned, subject):
    """Remove a subject from a class curriculum. Returns True if a row was deleted."""
    deleted, _ = ClassSubject.objects.filter(
        academic_year=year,
        class_assigned=class_assigned,
        subject=subject
    ).delete()
    return deleted > 0


def set_budget(entry_id, max_grade):
    """
    Change the point budget of a curriculum entry.

    Grades already recorded are not re-validated against a lowered budget.
    """
    budget = _clean_budget(max_grade)
    updated = ClassSubject.objects.filter(pk=entry_id).update(max_grade=budget)
    if not updated:
        raise SubjectNotAssigned("Curriculum entry not found.", details={'entry': entry_id})

    logger.info(f"Budget of curriculum entry {entry_id} set to {budget}")
    return ClassSubject.objects.get(pk=entry_id)


def _clean_budget(value):
    try:
        budget = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidBudget("Maximum grade is not a number.", details={'max_grade': value})
    if not budget.is_finite() or budget <= 0:
        raise InvalidBudget("Maximum grade must be a positive number.", details={'max_grade': str(value)})
    return budget
