"""
Grade ledger: the only writer of Grade rows.

For every (enrollment, subject, term) slot:
- 0 <= score <= max_score and max_score > 0
- evaluation names are unique, ignoring case
- the max_score of all evaluations adds up to at most the subject budget
  (plus a small tolerance, GRADEBOOK_BUDGET_EPSILON)

All checks run before anything is written, inside one transaction that
holds the slot lock (see ``gradebook.locks``).
"""
import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from academics.curriculum import budget_for
from core.exceptions import BudgetExceeded, DuplicateEvaluation, GradeNotFound, InvalidScore
from students.enrollments import resolve_enrollment
from . import config
from .locks import lock_grade_slot
from .models import Grade, GradeAuditLog

logger = logging.getLogger(__name__)

SCORE_PLACES = Decimal('0.0001')
SCORE_LIMIT = Decimal('100000000')


def _to_score(value, field):
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidScore(f"{field} is not a number.", details={field: value})
    if not number.is_finite():
        raise InvalidScore(f"{field} is not a number.", details={field: str(value)})
    if abs(number) >= SCORE_LIMIT:
        raise InvalidScore(f"{field} is out of range.", details={field: str(value)})
    return number


def _check_places(number, field):
    try:
        exact = number == number.quantize(SCORE_PLACES)
    except InvalidOperation:
        exact = False
    if not exact:
        raise InvalidScore(
            f"{field} has more than 4 decimal places.",
            details={field: str(number)}
        )


def validate_scores(score, max_score):
    """
    Parse and check a score pair.

    Range checks run on the values as given; a value with more than
    four decimal places is refused rather than rounded.

    Returns:
        tuple: (score, max_score) as Decimals

    Raises:
        InvalidScore
    """
    score = _to_score(score, 'score')
    max_score = _to_score(max_score, 'max_score')

    if max_score <= 0:
        raise InvalidScore(
            "The maximum must be positive.",
            details={'max_score': str(max_score)}
        )
    if score < 0:
        raise InvalidScore("A score cannot be negative.", details={'score': str(score)})
    if score > max_score:
        raise InvalidScore(
            "A score cannot be greater than its maximum.",
            details={'score': str(score), 'max_score': str(max_score)}
        )
    _check_places(score, 'score')
    _check_places(max_score, 'max_score')
    return score.quantize(SCORE_PLACES), max_score.quantize(SCORE_PLACES)


def _clean_name(name):
    name = (name or '').strip()
    if not name:
        raise InvalidScore("Evaluation name is required.", details={'evaluation_name': name})
    return name


def _slot(enrollment_id, subject_id, term_id):
    return Grade.objects.filter(enrollment_id=enrollment_id, subject_id=subject_id, term_id=term_id)


def _check_duplicate(queryset, name):
    if queryset.filter(evaluation_name__iexact=name).exists():
        raise DuplicateEvaluation(
            f"An evaluation named '{name}' already exists for this subject and term.",
            details={'evaluation_name': name}
        )


def _check_budget(used, max_score, budget, enrollment_id, subject_id):
    if used + max_score > budget + config.BUDGET_EPSILON:
        remaining = budget - used
        logger.warning(
            f"Budget exceeded for enrollment {enrollment_id}, subject {subject_id}: "
            f"{used} used + {max_score} > {budget}"
        )
        raise BudgetExceeded(
            f"This evaluation of {max_score} points exceeds the maximum of {budget} for this subject. "
            f"Only {remaining} points remain.",
            remaining=remaining,
            details={'budget': str(budget), 'used': str(used), 'max_score': str(max_score)}
        )


def _used_points(queryset):
    return queryset.aggregate(total=Sum('max_score'))['total'] or Decimal('0')


def _audit(action, grade, actor, old=None, grade_ref=True):
    GradeAuditLog.objects.create(
        grade=grade if grade_ref else None,
        enrollment_id=grade.enrollment_id,
        subject_id=grade.subject_id,
        term_id=grade.term_id,
        evaluation_name=grade.evaluation_name,
        actor=actor or '',
        action=action,
        old_score=old.score if old else None,
        old_max_score=old.max_score if old else None,
        new_score=grade.score if action != 'DELETE' else None,
        new_max_score=grade.max_score if action != 'DELETE' else None,
    )


def record_grade(enrollment_id, subject_id, term_id, name, score, max_score, *, actor=''):
    """
    Record a new evaluation.

    Raises (in this order of checks):
        InvalidScore, DuplicateEvaluation, EnrollmentNotFound,
        SubjectNotAssigned, BudgetExceeded

    Returns:
        Grade: the stored row, dated today
    """
    score, max_score = validate_scores(score, max_score)
    name = _clean_name(name)

    with transaction.atomic():
        lock_grade_slot(enrollment_id, subject_id, term_id)
        slot = _slot(enrollment_id, subject_id, term_id)

        _check_duplicate(slot, name)

        enrollment = resolve_enrollment(enrollment_id)
        budget = budget_for(enrollment.academic_year_id, enrollment.class_assigned_id, subject_id)

        _check_budget(_used_points(slot), max_score, budget, enrollment_id, subject_id)

        grade = Grade.objects.create(
            enrollment_id=enrollment.pk,
            subject_id=subject_id,
            term_id=term_id,
            evaluation_name=name,
            score=score,
            max_score=max_score,
            date=timezone.localdate(),
        )
        _audit('CREATE', grade, actor)

    logger.info(
        f"Grade recorded: enrollment {enrollment_id}, subject {subject_id}, term {term_id}, "
        f"'{name}' {score}/{max_score}"
    )
    return grade


def update_grade(grade_id, name, score, max_score, *, actor=''):
    """
    Edit an evaluation's name, score and maximum.

    The budget is only re-checked when the maximum grows, so renaming or
    re-scoring an evaluation in a full subject always works.

    Raises:
        InvalidScore, GradeNotFound, DuplicateEvaluation, EnrollmentNotFound,
        SubjectNotAssigned, BudgetExceeded
    """
    score, max_score = validate_scores(score, max_score)
    name = _clean_name(name)

    with transaction.atomic():
        grade = Grade.objects.filter(pk=grade_id).first()
        if grade is None:
            raise GradeNotFound("Grade not found.", details={'grade': str(grade_id)})

        lock_grade_slot(grade.enrollment_id, grade.subject_id, grade.term_id)
        grade.refresh_from_db()
        others = _slot(grade.enrollment_id, grade.subject_id, grade.term_id).exclude(pk=grade.pk)

        _check_duplicate(others, name)

        if max_score > grade.max_score:
            enrollment = resolve_enrollment(grade.enrollment_id)
            budget = budget_for(enrollment.academic_year_id, enrollment.class_assigned_id, grade.subject_id)
            _check_budget(_used_points(others), max_score, budget, grade.enrollment_id, grade.subject_id)

        old = Grade(score=grade.score, max_score=grade.max_score)
        grade.evaluation_name = name
        grade.score = score
        grade.max_score = max_score
        grade.save(update_fields=['evaluation_name', 'score', 'max_score', 'updated_at'])
        _audit('UPDATE', grade, actor, old=old)

    logger.info(f"Grade {grade_id} updated: '{name}' {score}/{max_score}")
    return grade


def delete_grade(grade_id, *, actor=''):
    """
    Remove an evaluation. Deleting is never blocked by the budget.

    Raises:
        GradeNotFound
    """
    with transaction.atomic():
        grade = Grade.objects.filter(pk=grade_id).first()
        if grade is None:
            raise GradeNotFound("Grade not found.", details={'grade': str(grade_id)})

        _audit('DELETE', grade, actor, old=grade, grade_ref=False)
        grade.delete()

    logger.info(f"Grade {grade_id} deleted")


def scaled_average(total_score, total_max, budget):
    """Score ratio expressed on the budget scale; 0 when nothing was graded."""
    if not total_max or total_max <= 0:
        return Decimal('0')
    return Decimal(total_score) / Decimal(total_max) * Decimal(budget)


def subject_totals(enrollment_id, subject_id, term_id):
    totals = _slot(enrollment_id, subject_id, term_id).aggregate(
        total_score=Sum('score'),
        total_max=Sum('max_score'),
    )
    return totals['total_score'] or Decimal('0'), totals['total_max'] or Decimal('0')


def subject_average(enrollment_id, subject_id, term_id):
    """
    Average of an enrollment in a subject for a term, on the subject's
    budget scale (e.g. 18/20 and 9/10 with a budget of 100 gives 90).

    Returns Decimal('0') when the subject has no grades.
    """
    total_score, total_max = subject_totals(enrollment_id, subject_id, term_id)
    if total_max <= 0:
        return Decimal('0')

    enrollment = resolve_enrollment(enrollment_id)
    budget = budget_for(enrollment.academic_year_id, enrollment.class_assigned_id, subject_id)
    average = scaled_average(total_score, total_max, budget)
    logger.debug(f"Subject average for enrollment {enrollment_id}, subject {subject_id}: {average}")
    return average


def list_grades(enrollment_id, term_id, subject_id=None):
    """
    Grades of an enrollment for a term.

    Returns:
        list of Grade (newest first) when a subject is given, otherwise a dict
        mapping subject_id to that list
    """
    grades = Grade.objects.filter(enrollment_id=enrollment_id, term_id=term_id).order_by('-date', '-created_at')
    if subject_id is not None:
        return list(grades.filter(subject_id=subject_id))

    by_subject = defaultdict(list)
    for grade in grades:
        by_subject[grade.subject_id].append(grade)
    return dict(by_subject)
