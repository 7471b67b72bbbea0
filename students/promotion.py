"""
End-of-year promotion.

A promotion map sends each class (by name) to the class its admitted
students move up to, or to None for a final class whose students leave
the school. A student is admitted when their annual average reaches the
school's passing grade; otherwise they stay where they are.

``promotion_preview`` and ``promotion_execute`` compute the same summary;
only ``promotion_execute`` writes.
"""
import logging

from django.db import transaction

from academics.models import Class
from core.exceptions import ClassNotFound
from gradebook.averages import annual_averages, passing_grade
from .models import Enrollment, Student

logger = logging.getLogger(__name__)


def _target_classes(promotion_map):
    """Resolve target class names; unknown names raise ClassNotFound."""
    names = {target for target in promotion_map.values() if target}
    classes = {c.name: c for c in Class.objects.filter(name__in=names)}

    missing = sorted(names - set(classes))
    if missing:
        raise ClassNotFound(
            f"Unknown target class: {', '.join(missing)}",
            details={'classes': missing}
        )
    return classes


def _results(source_year_id, promotion_map):
    """
    Decide each student's fate.

    Returns:
        tuple: (summary dict, list of (student_id, class_name, passed))
    """
    threshold = passing_grade()

    enrollments = list(
        Enrollment.objects.filter(
            academic_year_id=source_year_id
        ).select_related('class_assigned')
    )
    averages = annual_averages([e.pk for e in enrollments])

    summary = {
        class_name: {'admitted': 0, 'failed': 0, 'target': target or None}
        for class_name, target in promotion_map.items()
    }

    results = []
    for enrollment in enrollments:
        class_name = enrollment.class_assigned.name
        if class_name not in summary:
            continue
        passed = averages[enrollment.pk] >= threshold
        summary[class_name]['admitted' if passed else 'failed'] += 1
        results.append((enrollment.student_id, class_name, passed))

    return summary, results


def promotion_preview(source_year_id, promotion_map):
    """
    Count admitted and failed students per mapped class without writing.

    Args:
        source_year_id: AcademicYear whose results decide promotion
        promotion_map: dict class name -> next class name, or None for a final class

    Returns:
        dict: class name -> {'admitted': int, 'failed': int, 'target': str or None}
    """
    _target_classes(promotion_map)
    summary, _ = _results(source_year_id, promotion_map)
    return summary


def promotion_execute(source_year_id, promotion_map):
    """
    Move every admitted student of a mapped class to its target class.

    Failed students and students of final classes keep their current class.
    Either every move is saved or none is.

    Returns:
        The same summary as promotion_preview
    """
    targets = _target_classes(promotion_map)

    with transaction.atomic():
        summary, results = _results(source_year_id, promotion_map)

        moves = {
            student_id: targets[promotion_map[class_name]]
            for student_id, class_name, passed in results
            if passed and promotion_map[class_name]
        }
        students_to_update = list(Student.objects.filter(pk__in=moves))
        for student in students_to_update:
            student.current_class = moves[student.pk]

        if students_to_update:
            Student.objects.bulk_update(students_to_update, ['current_class'])

    logger.info(
        f"Promotion executed for academic year {source_year_id}: "
        f"{len(students_to_update)} student(s) moved up"
    )
    return summary
