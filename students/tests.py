from datetime import date
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from academics import curriculum
from academics.models import Class, Subject
from core.exceptions import ClassNotFound, DuplicateEnrollment, EnrollmentNotFound
from core.models import AcademicYear, SchoolSettings, Term
from finance.models import ClassTuition
from gradebook import ledger

from .enrollments import (
    bulk_enroll, change_class, enroll_student, resolve_enrollment,
    set_class_grades_access, set_grades_access,
)
from .models import Enrollment, Student
from .promotion import promotion_execute, promotion_preview


class StudentModelTest(TestCase):
    """Tests for Student model."""

    def test_full_name(self):
        student = Student(first_name='Ama', other_names='Serwaa', last_name='Mensah', admission_number='S1')
        self.assertEqual(student.full_name, 'Ama Serwaa Mensah')

    def test_full_name_without_other_names(self):
        student = Student(first_name='Kofi', last_name='Boateng', admission_number='S2')
        self.assertEqual(student.full_name, 'Kofi Boateng')


class EnrollmentDirectoryTest(TestCase):
    """Tests for enrolling students and moving them between classes."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
        )
        self.class_a = Class.objects.create(name='B1-A', order=1)
        self.class_b = Class.objects.create(name='B1-B', order=1)
        self.students = [
            Student.objects.create(first_name=f'Student{i}', last_name='Test', admission_number=f'STU-{i:03d}')
            for i in range(3)
        ]

    def test_enroll_without_configured_tuition(self):
        enrollment = enroll_student(self.students[0], self.year, self.class_a)
        self.assertEqual(enrollment.tuition, Decimal('0.00'))
        self.assertEqual(len(enrollment.payments), 4)
        self.assertEqual(enrollment.payments[0], {'amount': '0.00', 'date': None})
        self.assertEqual(enrollment.adjustments, [])
        self.assertTrue(enrollment.grades_access_enabled)

    def test_enroll_uses_class_tuition(self):
        ClassTuition.objects.create(class_assigned=self.class_a, academic_year=self.year, amount=Decimal('1500'))
        enrollment = enroll_student(self.students[0], self.year, self.class_a)
        self.assertEqual(enrollment.tuition, Decimal('1500.00'))

    def test_explicit_tuition_wins(self):
        ClassTuition.objects.create(class_assigned=self.class_a, academic_year=self.year, amount=Decimal('1500'))
        enrollment = enroll_student(self.students[0], self.year, self.class_a, tuition='1200')
        self.assertEqual(enrollment.tuition, Decimal('1200.00'))

    def test_duplicate_enrollment(self):
        enroll_student(self.students[0], self.year, self.class_a)
        with self.assertRaises(DuplicateEnrollment):
            enroll_student(self.students[0], self.year, self.class_b)
        self.assertEqual(Enrollment.objects.count(), 1)

    def test_bulk_enroll_skips_enrolled(self):
        enroll_student(self.students[0], self.year, self.class_a)
        created = bulk_enroll(self.students, self.year, self.class_a)
        self.assertEqual(created, 2)
        self.assertEqual(Enrollment.objects.filter(academic_year=self.year).count(), 3)

    def test_resolve_enrollment(self):
        enrollment = enroll_student(self.students[0], self.year, self.class_a)
        resolved = resolve_enrollment(str(enrollment.pk))
        self.assertEqual(resolved.class_assigned, self.class_a)
        self.assertEqual(resolved.academic_year, self.year)

        with self.assertRaises(EnrollmentNotFound):
            resolve_enrollment('00000000-0000-0000-0000-000000000000')

    def test_change_class(self):
        bulk_enroll(self.students, self.year, self.class_a)
        ids = Enrollment.objects.values_list('pk', flat=True)[:2]
        self.assertEqual(change_class(ids, self.class_b), 2)
        self.assertEqual(Enrollment.objects.filter(class_assigned=self.class_b).count(), 2)

    def test_grades_access(self):
        enrollment = enroll_student(self.students[0], self.year, self.class_a)
        self.assertFalse(set_grades_access(enrollment.pk, False).grades_access_enabled)

        bulk_enroll(self.students, self.year, self.class_a)
        self.assertEqual(set_class_grades_access(self.year, self.class_a, False), 3)
        self.assertFalse(Enrollment.objects.filter(grades_access_enabled=True).exists())

    def test_grades_access_missing_enrollment(self):
        with self.assertRaises(EnrollmentNotFound):
            set_grades_access('00000000-0000-0000-0000-000000000000', True)


class PromotionFixtureMixin:
    """A year with a final term, three classes and graded students."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
            is_current=True
        )
        self.term = Term.objects.create(academic_year=self.year, name='Third Term', term_number=3)
        SchoolSettings(passing_grade=Decimal('60')).save()

        self.b1 = Class.objects.create(name='B1', order=1)
        self.b2 = Class.objects.create(name='B2', order=2)
        self.b6 = Class.objects.create(name='B6', order=6)
        self.math = Subject.objects.create(name='Mathematics')
        for class_obj in [self.b1, self.b6]:
            curriculum.assign_subject(self.year, class_obj, self.math)

        self.passing = self._student('STU-001', self.b1, score=75)
        self.failing = self._student('STU-002', self.b1, score=40)
        self.leaving = self._student('STU-003', self.b6, score=90)
        self.withdrawn = self._student('STU-004', self.b1, score=95, status=Student.Status.WITHDRAWN)

    def _student(self, admission_number, class_obj, score, status=Student.Status.ACTIVE):
        student = Student.objects.create(
            first_name='Student',
            last_name=admission_number,
            admission_number=admission_number,
            current_class=class_obj,
            status=status
        )
        enrollment = enroll_student(student, self.year, class_obj)
        ledger.record_grade(enrollment.pk, self.math.pk, self.term.pk, 'Final Exam', score, 100)
        return student


class PromotionTest(PromotionFixtureMixin, TestCase):
    """Tests for end-of-year promotion."""

    def test_preview(self):
        summary = promotion_preview(self.year.pk, {'B1': 'B2', 'B6': None})
        self.assertEqual(summary, {
            'B1': {'admitted': 2, 'failed': 1, 'target': 'B2'},
            'B6': {'admitted': 1, 'failed': 0, 'target': None},
        })
        self.passing.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b1)

    def test_execute_matches_preview(self):
        promotion_map = {'B1': 'B2', 'B6': None}
        preview = promotion_preview(self.year.pk, promotion_map)
        summary = promotion_execute(self.year.pk, promotion_map)
        self.assertEqual(preview, summary)

        for student in [self.passing, self.failing, self.leaving, self.withdrawn]:
            student.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b2)
        self.assertEqual(self.failing.current_class, self.b1)
        self.assertEqual(self.leaving.current_class, self.b6)
        self.assertEqual(self.withdrawn.current_class, self.b2)

    def test_unmapped_class_ignored(self):
        summary = promotion_execute(self.year.pk, {'B6': None})
        self.assertEqual(list(summary), ['B6'])
        self.passing.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b1)

    def test_unknown_target_class(self):
        with self.assertRaises(ClassNotFound):
            promotion_execute(self.year.pk, {'B1': 'B9'})
        self.passing.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b1)

    def test_threshold_boundary(self):
        """An average equal to the passing grade is admitted."""
        SchoolSettings(passing_grade=Decimal('75')).save()
        summary = promotion_preview(self.year.pk, {'B1': 'B2'})
        self.assertEqual(summary['B1']['admitted'], 2)

    def test_withdrawn_student_counted_and_moved(self):
        """Every enrollment of the year is promoted, whatever the student's status."""
        summary = promotion_execute(self.year.pk, {'B1': 'B2'})
        self.assertEqual(summary['B1'], {'admitted': 2, 'failed': 1, 'target': 'B2'})

        self.withdrawn.refresh_from_db()
        self.assertEqual(self.withdrawn.status, Student.Status.WITHDRAWN)
        self.assertEqual(self.withdrawn.current_class, self.b2)


class PromoteStudentsCommandTest(PromotionFixtureMixin, TestCase):
    """Tests for the promote_students management command."""

    def call(self, *args):
        out = StringIO()
        call_command('promote_students', *args, stdout=out)
        return out.getvalue()

    def test_preview_does_not_write(self):
        output = self.call('--map', 'B1=B2', '--map', 'B6=')
        self.assertIn('B1 -> B2: 2 admitted, 1 failed', output)
        self.assertIn('B6 -> (leaves school): 1 admitted, 0 failed', output)
        self.passing.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b1)

    def test_execute(self):
        output = self.call('--year', self.year.name, '--map', 'B1=B2', '--execute')
        self.assertIn('Promotion executed', output)
        self.passing.refresh_from_db()
        self.assertEqual(self.passing.current_class, self.b2)

    def test_year_by_id(self):
        output = self.call('--year', str(self.year.pk), '--map', 'B1=B2')
        self.assertIn('Academic year: 2024/2025', output)

    def test_invalid_mapping(self):
        with self.assertRaises(CommandError):
            self.call('--map', 'B1')

    def test_map_required(self):
        with self.assertRaises(CommandError):
            self.call()

    def test_unknown_year(self):
        with self.assertRaises(CommandError):
            self.call('--year', '1999/2000', '--map', 'B1=B2')

    def test_unknown_target(self):
        with self.assertRaises(CommandError):
            self.call('--map', 'B1=B9', '--execute')
