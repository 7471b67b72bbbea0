"""
Averaging engine.

Two formulas coexist and are kept apart on purpose:

- Term (period) figures are on each subject's budget scale:
  subject average = total score / total max * budget, and the period
  average is the sum of subject averages over the sum of budgets, as a
  percentage.
- The annual average ignores budgets: every subject contributes its
  year-wide percentage (total score / total max * 100) and the subjects
  that have grades are averaged without weights.

Reports are plain dicts, ready for templates or JSON.
"""
import logging
import uuid
from collections import defaultdict
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db.models import Sum

from academics.curriculum import assigned_subjects
from core.exceptions import GradesAccessDenied, TermNotFound, ThresholdNotConfigured
from core.models import SchoolSettings, Term
from students.enrollments import resolve_enrollment
from students.models import Enrollment, Student
from . import config
from .ledger import scaled_average
from .models import Appreciation, GeneralAppreciation, Grade

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')

ADMITTED = 'admitted'
REPEAT = 'repeat'


def _configured_passing_grade():
    threshold = SchoolSettings.load().passing_grade
    if threshold is None:
        raise ThresholdNotConfigured("No passing grade configured for this school.")
    return Decimal(threshold)


def passing_grade():
    """Annual average (0-100) required for promotion."""
    try:
        return _configured_passing_grade()
    except ThresholdNotConfigured:
        default = Decimal(config.DEFAULT_PASSING_GRADE)
        logger.warning(f"Passing grade not configured, using default {default}")
        return default


def promotion_status(average, threshold):
    return ADMITTED if average >= threshold else REPEAT


def _rank_rows(rows):
    """Competition ranking on the term average: equal averages share a rank (1, 1, 3)."""
    ordered = sorted(rows, key=lambda row: row['term_average'], reverse=True)
    last_average = None
    rank = 0
    for index, row in enumerate(ordered, start=1):
        if row['term_average'] != last_average:
            rank = index
            last_average = row['term_average']
        row['rank'] = rank


def _resolve_term(term_id):
    try:
        term = Term.objects.filter(pk=term_id).first()
    except (ValidationError, ValueError, TypeError):
        term = None
    if term is None:
        raise TermNotFound("Term not found.", details={'term': str(term_id)})
    return term


def _build_period_report(term, curriculum, grades, appreciations, general_appreciation):
    """
    Assemble one term report from pre-fetched data.

    Args:
        term: Term instance
        curriculum: list of ClassSubject for the enrollment's class/year
        grades: the enrollment's Grade rows for this term
        appreciations: dict subject_id -> text
        general_appreciation: text or None
    """
    grades_by_subject = defaultdict(list)
    for grade in grades:
        grades_by_subject[grade.subject_id].append(grade)

    subjects = []
    for entry in curriculum:
        subject_grades = grades_by_subject.get(entry.subject_id, [])
        total_score = sum((g.score for g in subject_grades), Decimal('0'))
        total_max = sum((g.max_score for g in subject_grades), Decimal('0'))
        subjects.append({
            'subject_id': entry.subject_id,
            'subject_name': entry.subject.name,
            'max_grade': entry.max_grade,
            'average': scaled_average(total_score, total_max, entry.max_grade),
            'appreciation': appreciations.get(entry.subject_id),
            'grades': subject_grades,
        })

    budget_total = sum((s['max_grade'] for s in subjects), Decimal('0'))
    average_total = sum((s['average'] for s in subjects), Decimal('0'))
    period_average = average_total / budget_total * HUNDRED if budget_total > 0 else None

    return {
        'term_id': term.pk,
        'term_name': term.name,
        'term_number': term.term_number,
        'subjects': subjects,
        'period_average': period_average,
        'general_appreciation': general_appreciation,
    }


def period_report(enrollment_id, term_id):
    """
    Report card data of one enrollment for one term.

    Every subject of the class curriculum is listed, graded or not.

    Returns:
        dict: {
            'term_id', 'term_name', 'term_number',
            'subjects': list of {'subject_id', 'subject_name', 'max_grade',
                                 'average', 'appreciation', 'grades'},
            'period_average': Decimal or None when the curriculum is empty,
            'general_appreciation': str or None
        }
    """
    enrollment = resolve_enrollment(enrollment_id)
    term = _resolve_term(term_id)
    curriculum = assigned_subjects(enrollment.academic_year_id, enrollment.class_assigned_id)

    grades = Grade.objects.filter(enrollment=enrollment, term=term).order_by('-date', '-created_at')
    appreciations = dict(
        Appreciation.objects.filter(enrollment=enrollment, term=term).values_list('subject_id', 'text')
    )
    general = GeneralAppreciation.objects.filter(
        enrollment=enrollment, term=term
    ).values_list('text', flat=True).first()

    return _build_period_report(term, curriculum, grades, appreciations, general)


def annual_averages(enrollment_ids):
    """
    Annual average of several enrollments in one query.

    Returns:
        dict: enrollment_id -> Decimal (0 for enrollments without grades)
    """
    enrollment_ids = [uuid.UUID(str(pk)) for pk in enrollment_ids]
    totals = Grade.objects.filter(
        enrollment_id__in=enrollment_ids
    ).values('enrollment_id', 'subject_id').annotate(
        total_score=Sum('score'),
        total_max=Sum('max_score'),
    )

    percentages = defaultdict(list)
    for row in totals:
        percentages[row['enrollment_id']].append(
            scaled_average(row['total_score'] or Decimal('0'), row['total_max'], HUNDRED)
        )

    averages = {}
    for enrollment_id in enrollment_ids:
        subject_percentages = percentages.get(enrollment_id)
        if subject_percentages:
            averages[enrollment_id] = sum(subject_percentages, Decimal('0')) / len(subject_percentages)
        else:
            averages[enrollment_id] = Decimal('0')
    return averages


def annual_average(enrollment_id):
    """
    Year-wide average (0-100) of an enrollment across all its terms.

    A subject with 50% and another with 80% give 65. Returns Decimal('0')
    when nothing was graded.

    Raises:
        EnrollmentNotFound
    """
    enrollment = resolve_enrollment(enrollment_id)
    average = annual_averages([enrollment.pk])[enrollment.pk]
    logger.debug(f"Annual average for enrollment {enrollment_id}: {average}")
    return average


def student_grades(enrollment_id):
    """
    Everything a student may see about their own results for the year:
    one term report per term, in term order.

    Raises:
        EnrollmentNotFound
        GradesAccessDenied: the school has closed grade access for this enrollment
    """
    enrollment = resolve_enrollment(enrollment_id)
    if not enrollment.grades_access_enabled:
        raise GradesAccessDenied(
            "Access to your grades is currently restricted. Please contact the administration.",
            details={'enrollment': str(enrollment.pk)}
        )

    terms = Term.objects.filter(academic_year_id=enrollment.academic_year_id).order_by('term_number')
    curriculum = assigned_subjects(enrollment.academic_year_id, enrollment.class_assigned_id)

    grades_by_term = defaultdict(list)
    for grade in Grade.objects.filter(enrollment=enrollment).order_by('-date', '-created_at'):
        grades_by_term[grade.term_id].append(grade)

    appreciations_by_term = defaultdict(dict)
    for term_id, subject_id, text in Appreciation.objects.filter(
        enrollment=enrollment
    ).values_list('term_id', 'subject_id', 'text'):
        appreciations_by_term[term_id][subject_id] = text

    general_by_term = dict(
        GeneralAppreciation.objects.filter(enrollment=enrollment).values_list('term_id', 'text')
    )

    return [
        _build_period_report(
            term,
            curriculum,
            grades_by_term.get(term.pk, []),
            appreciations_by_term.get(term.pk, {}),
            general_by_term.get(term.pk),
        )
        for term in terms
    ]


def class_report(year_id, class_id, term_id):
    """
    Report card data for a whole class for one term.

    Only enrollments of active students are included. Each row carries the
    student's term average (the period average, 0 for an empty curriculum)
    and their rank in the class; equal averages share a rank. The class
    average is the mean of the term averages. When the term is the last one
    of the year, every row also carries the annual average and the promotion
    status ('admitted' or 'repeat').

    Returns:
        dict: {
            'term_id', 'is_final_term', 'passing_grade' (None unless final),
            'class_average',
            'rows': list of {'enrollment', 'report', 'term_average', 'rank',
                             ['annual_average', 'promotion_status']}
        }
    """
    term = _resolve_term(term_id)
    year_id = getattr(year_id, 'pk', year_id)
    class_id = getattr(class_id, 'pk', class_id)
    is_final = term.academic_year_id == int(year_id) and term.is_final

    enrollments = list(
        Enrollment.objects.filter(
            academic_year_id=year_id,
            class_assigned_id=class_id,
            student__status=Student.Status.ACTIVE,
        ).select_related('student').order_by('student__last_name', 'student__first_name')
    )
    enrollment_ids = [e.pk for e in enrollments]
    curriculum = assigned_subjects(year_id, class_id)

    grades_by_enrollment = defaultdict(list)
    for grade in Grade.objects.filter(term=term, enrollment_id__in=enrollment_ids).order_by('-date', '-created_at'):
        grades_by_enrollment[grade.enrollment_id].append(grade)

    appreciations = defaultdict(dict)
    for enrollment_id, subject_id, text in Appreciation.objects.filter(
        term=term, enrollment_id__in=enrollment_ids
    ).values_list('enrollment_id', 'subject_id', 'text'):
        appreciations[enrollment_id][subject_id] = text

    general = dict(
        GeneralAppreciation.objects.filter(
            term=term, enrollment_id__in=enrollment_ids
        ).values_list('enrollment_id', 'text')
    )

    threshold = passing_grade() if is_final else None
    averages = annual_averages(enrollment_ids) if is_final else {}

    rows = []
    for enrollment in enrollments:
        row = {
            'enrollment': enrollment,
            'report': _build_period_report(
                term,
                curriculum,
                grades_by_enrollment.get(enrollment.pk, []),
                appreciations.get(enrollment.pk, {}),
                general.get(enrollment.pk),
            ),
        }
        row['term_average'] = row['report']['period_average'] or Decimal('0')
        if is_final:
            row['annual_average'] = averages[enrollment.pk]
            row['promotion_status'] = promotion_status(averages[enrollment.pk], threshold)
        rows.append(row)

    _rank_rows(rows)
    class_average = (
        sum((row['term_average'] for row in rows), Decimal('0')) / len(rows) if rows else Decimal('0')
    )

    return {
        'term_id': term.pk,
        'is_final_term': is_final,
        'passing_grade': threshold,
        'class_average': class_average,
        'rows': rows,
    }
