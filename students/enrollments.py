"""
Enrollment directory: resolves enrollments to (student, year, class) and
performs the registration-side writes (enroll, transfer, grade-visibility gate).
"""
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from core.exceptions import DuplicateEnrollment, EnrollmentNotFound
from finance.ledger import default_tuition, to_amount
from gradebook import config
from .models import Enrollment

logger = logging.getLogger(__name__)


def resolve_enrollment(enrollment_id):
    """
    Fetch an enrollment with its student, year and class.

    Raises:
        EnrollmentNotFound
    """
    try:
        enrollment = Enrollment.objects.select_related(
            'student', 'academic_year', 'class_assigned'
        ).filter(pk=enrollment_id).first()
    except (ValidationError, ValueError):
        enrollment = None

    if enrollment is None:
        raise EnrollmentNotFound("Enrollment not found.", details={'enrollment': str(enrollment_id)})
    return enrollment


def empty_installments():
    return [{'amount': '0.00', 'date': None} for _ in range(config.DEFAULT_INSTALLMENTS)]


def _resolve_tuition(class_assigned, year, tuition):
    if tuition is None:
        return default_tuition(class_assigned, year)
    return to_amount(tuition, field='tuition')


def enroll_student(student, year, class_assigned, tuition=None):
    """
    Register a student in a class for a year.

    Without an explicit tuition the class default for that year applies
    (0 when none is configured).

    Raises:
        DuplicateEnrollment: the student already has an enrollment that year
    """
    amount = _resolve_tuition(class_assigned, year, tuition)
    try:
        with transaction.atomic():
            enrollment = Enrollment.objects.create(
                student_id=getattr(student, 'pk', student),
                academic_year_id=getattr(year, 'pk', year),
                class_assigned_id=getattr(class_assigned, 'pk', class_assigned),
                tuition=amount,
                payments=empty_installments(),
            )
    except IntegrityError:
        raise DuplicateEnrollment(
            "Student is already enrolled for this academic year.",
            details={'student': getattr(student, 'pk', student), 'year': getattr(year, 'pk', year)}
        )

    logger.info(f"Enrolled student {enrollment.student_id} in class {enrollment.class_assigned_id} (tuition {amount})")
    return enrollment


def bulk_enroll(students, year, class_assigned, tuition=None):
    """
    Enroll several students at once; students already enrolled that year are skipped.

    Returns:
        int: number of enrollments created
    """
    amount = _resolve_tuition(class_assigned, year, tuition)
    student_ids = [getattr(s, 'pk', s) for s in students]

    with transaction.atomic():
        already_enrolled = set(
            Enrollment.objects.filter(
                academic_year=year,
                student_id__in=student_ids
            ).values_list('student_id', flat=True)
        )
        to_create = [
            Enrollment(
                student_id=student_id,
                academic_year_id=getattr(year, 'pk', year),
                class_assigned_id=getattr(class_assigned, 'pk', class_assigned),
                tuition=amount,
                payments=empty_installments(),
            )
            for student_id in dict.fromkeys(student_ids)
            if student_id not in already_enrolled
        ]
        Enrollment.objects.bulk_create(to_create)

    logger.info(f"Bulk enrolled {len(to_create)} student(s), skipped {len(already_enrolled)}")
    return len(to_create)


def change_class(enrollment_ids, target_class):
    """Move enrollments to another class. Returns the number moved."""
    moved = Enrollment.objects.filter(pk__in=list(enrollment_ids)).update(class_assigned=target_class)
    logger.info(f"Moved {moved} enrollment(s) to class {getattr(target_class, 'pk', target_class)}")
    return moved


def set_grades_access(enrollment_id, enabled):
    """Open or close a student's access to their own grades."""
    updated = Enrollment.objects.filter(pk=enrollment_id).update(grades_access_enabled=bool(enabled))
    if not updated:
        raise EnrollmentNotFound("Enrollment not found.", details={'enrollment': str(enrollment_id)})
    return resolve_enrollment(enrollment_id)


def set_class_grades_access(year, class_assigned, enabled):
    """Open or close grade access for a whole class. Returns the number of enrollments updated."""
    return Enrollment.objects.filter(
        academic_year=year,
        class_assigned=class_assigned
    ).update(grades_access_enabled=bool(enabled))
