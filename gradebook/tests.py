from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from django.utils import timezone

from academics import curriculum
from academics.models import Class, Subject
from core.exceptions import (
    BudgetExceeded, DuplicateEvaluation, EnrollmentNotFound, GradeNotFound,
    GradesAccessDenied, InvalidScore, SubjectNotAssigned, TermNotFound,
)
from core.models import AcademicYear, SchoolSettings, Term
from students.enrollments import enroll_student, set_grades_access
from students.models import Student

from . import appreciations, averages, ledger
from .locks import slot_key
from .models import Grade, GradeAuditLog


class GradebookTestMixin:
    """Shared year, terms, class, subjects and one enrolled student."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
            is_current=True
        )
        self.term1 = Term.objects.create(academic_year=self.year, name='First Term', term_number=1)
        self.term2 = Term.objects.create(academic_year=self.year, name='Second Term', term_number=2)

        self.class_obj = Class.objects.create(name='B1-A', order=1)
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        self.english = Subject.objects.create(name='English Language', short_name='ENG')
        self.science = Subject.objects.create(name='Science', short_name='SCI')
        curriculum.assign_subject(self.year, self.class_obj, self.math, max_grade=100)
        curriculum.assign_subject(self.year, self.class_obj, self.english, max_grade=100)

        self.student = Student.objects.create(
            first_name='Ama',
            last_name='Mensah',
            admission_number='STU-001',
            current_class=self.class_obj
        )
        self.enrollment = enroll_student(self.student, self.year, self.class_obj)

    def record(self, name, score, max_score, subject=None, term=None):
        return ledger.record_grade(
            self.enrollment.pk,
            (subject or self.math).pk,
            (term or self.term1).pk,
            name, score, max_score
        )


class RecordGradeTest(GradebookTestMixin, TestCase):
    """Tests for recording grades against the subject budget."""

    def test_budget_scenario(self):
        """60 fits, 50 more is refused with 40 remaining, 40 and then 0.0005 still fit."""
        self.record('Test 1', 55, 60)

        with self.assertRaises(BudgetExceeded) as ctx:
            self.record('Test 2', 45, 50)
        self.assertEqual(ctx.exception.remaining, Decimal('40'))
        self.assertEqual(Grade.objects.count(), 1)

        self.record('Test 2', 35, 40)
        self.record('Bonus', 0, '0.0005')
        self.assertEqual(Grade.objects.count(), 3)

        with self.assertRaises(BudgetExceeded):
            self.record('Bonus 2', 0, '0.001')

    def test_budget_sum_never_exceeded(self):
        for index, max_score in enumerate([30, 30, 30, 30, 10, 5]):
            try:
                self.record(f'Quiz {index}', 0, max_score)
            except BudgetExceeded:
                pass
        total = sum(g.max_score for g in Grade.objects.filter(enrollment=self.enrollment))
        self.assertLessEqual(total, Decimal('100.001'))
        self.assertEqual(total, Decimal('100'))

    def test_budget_is_per_subject_and_term(self):
        self.record('Exam', 80, 100)
        self.record('Exam', 70, 100, subject=self.english)
        self.record('Exam', 60, 100, term=self.term2)
        self.assertEqual(Grade.objects.count(), 3)

    def test_grade_is_dated_today(self):
        grade = self.record('Quiz 1', 8, 10)
        self.assertEqual(grade.date, timezone.localdate())
        self.assertEqual(grade.score, Decimal('8'))

    def test_score_above_max_rejected(self):
        with self.assertRaises(InvalidScore):
            self.record('Quiz 1', 11, 10)

    def test_non_positive_max_rejected(self):
        for max_score in [0, -5]:
            with self.assertRaises(InvalidScore):
                self.record('Quiz 1', 0, max_score)

    def test_negative_score_rejected(self):
        with self.assertRaises(InvalidScore):
            self.record('Quiz 1', -1, 10)

    def test_non_numeric_rejected(self):
        with self.assertRaises(InvalidScore):
            self.record('Quiz 1', 'ten', 10)

    def test_score_just_above_max_rejected(self):
        """A score is compared with its maximum before any rounding."""
        with self.assertRaises(InvalidScore):
            self.record('Quiz 1', '10.00004', 10)
        self.assertFalse(Grade.objects.exists())

    def test_extra_decimal_places_rejected(self):
        with self.assertRaises(InvalidScore) as ctx:
            self.record('Quiz 1', 0, '0.00004')
        self.assertIn('decimal places', ctx.exception.message)
        self.assertIn('max_score', ctx.exception.details)

        with self.assertRaises(InvalidScore):
            self.record('Quiz 1', '5.00001', 10)
        self.assertFalse(Grade.objects.exists())

    def test_four_decimal_places_accepted(self):
        grade = self.record('Quiz 1', '2.1234', '2.5000')
        self.assertEqual(grade.score, Decimal('2.1234'))

    def test_out_of_range_rejected(self):
        for score, max_score in [('1e30', '1e30'), (5, '1e30'), ('-1e30', 10)]:
            with self.assertRaises(InvalidScore):
                self.record('Quiz 1', score, max_score)
        self.assertFalse(Grade.objects.exists())

    def test_blank_name_rejected(self):
        with self.assertRaises(InvalidScore):
            self.record('   ', 5, 10)

    def test_duplicate_name_case_insensitive(self):
        self.record('Quiz 1', 5, 10)
        with self.assertRaises(DuplicateEvaluation):
            self.record('QUIZ 1', 6, 10)

    def test_same_name_other_term_allowed(self):
        self.record('Quiz 1', 5, 10)
        self.record('Quiz 1', 6, 10, term=self.term2)
        self.assertEqual(Grade.objects.count(), 2)

    def test_subject_not_assigned(self):
        with self.assertRaises(SubjectNotAssigned):
            self.record('Quiz 1', 5, 10, subject=self.science)

    def test_unknown_enrollment(self):
        with self.assertRaises(EnrollmentNotFound):
            ledger.record_grade(
                '00000000-0000-0000-0000-000000000000',
                self.math.pk, self.term1.pk, 'Quiz 1', 5, 10
            )

    def test_lowered_budget_keeps_existing_grades(self):
        self.record('Exam', 80, 100)
        entry = curriculum.get_entry(self.year, self.class_obj, self.math)
        curriculum.set_budget(entry.pk, 50)

        self.assertEqual(Grade.objects.count(), 1)
        with self.assertRaises(BudgetExceeded) as ctx:
            self.record('Quiz', 1, 1)
        self.assertEqual(ctx.exception.remaining, Decimal('-50'))

    def test_audit_log_written(self):
        grade = self.record('Quiz 1', 5, 10)
        log = GradeAuditLog.objects.get(grade=grade)
        self.assertEqual(log.action, 'CREATE')
        self.assertIsNone(log.old_score)
        self.assertEqual(log.new_score, Decimal('5'))


class UpdateDeleteGradeTest(GradebookTestMixin, TestCase):
    """Tests for editing and removing grades."""

    def test_shrinking_never_checks_budget(self):
        grade = self.record('Exam', 80, 100)
        entry = curriculum.get_entry(self.year, self.class_obj, self.math)
        curriculum.set_budget(entry.pk, 10)

        updated = ledger.update_grade(grade.pk, 'Final Exam', 40, 50)
        self.assertEqual(updated.max_score, Decimal('50'))
        self.assertEqual(updated.evaluation_name, 'Final Exam')

    def test_same_max_in_full_subject(self):
        grade = self.record('Exam', 80, 100)
        updated = ledger.update_grade(grade.pk, 'Exam', 90, 100)
        self.assertEqual(updated.score, Decimal('90'))

    def test_growing_checks_budget(self):
        self.record('Test 1', 50, 60)
        grade = self.record('Test 2', 20, 30)

        with self.assertRaises(BudgetExceeded) as ctx:
            ledger.update_grade(grade.pk, 'Test 2', 20, 50)
        self.assertEqual(ctx.exception.remaining, Decimal('40'))

        updated = ledger.update_grade(grade.pk, 'Test 2', 20, 40)
        self.assertEqual(updated.max_score, Decimal('40'))

    def test_rename_to_own_name_allowed(self):
        grade = self.record('Quiz 1', 5, 10)
        updated = ledger.update_grade(grade.pk, 'quiz 1', 6, 10)
        self.assertEqual(updated.evaluation_name, 'quiz 1')

    def test_rename_to_other_name_rejected(self):
        self.record('Quiz 1', 5, 10)
        grade = self.record('Quiz 2', 5, 10)
        with self.assertRaises(DuplicateEvaluation):
            ledger.update_grade(grade.pk, 'Quiz 1', 5, 10)

    def test_update_validates_scores(self):
        grade = self.record('Quiz 1', 5, 10)
        with self.assertRaises(InvalidScore):
            ledger.update_grade(grade.pk, 'Quiz 1', 12, 10)

    def test_update_missing_grade(self):
        with self.assertRaises(GradeNotFound):
            ledger.update_grade('00000000-0000-0000-0000-000000000000', 'Quiz', 1, 1)

    def test_update_audit_log(self):
        grade = self.record('Quiz 1', 5, 10)
        ledger.update_grade(grade.pk, 'Quiz 1', 7, 10, actor='teacher@example.com')
        log = GradeAuditLog.objects.get(grade=grade, action='UPDATE')
        self.assertEqual(log.old_score, Decimal('5'))
        self.assertEqual(log.new_score, Decimal('7'))
        self.assertEqual(log.actor, 'teacher@example.com')

    def test_delete(self):
        grade = self.record('Quiz 1', 5, 10)
        ledger.delete_grade(grade.pk)
        self.assertFalse(Grade.objects.exists())

        log = GradeAuditLog.objects.get(action='DELETE')
        self.assertIsNone(log.grade)
        self.assertEqual(log.old_max_score, Decimal('10'))

        with self.assertRaises(GradeNotFound):
            ledger.delete_grade(grade.pk)


class SlotLockingTest(GradebookTestMixin, TestCase):
    """The slot lock is taken before the budget is read."""

    def track_calls(self):
        calls = []
        real_lock = ledger.lock_grade_slot
        real_used_points = ledger._used_points

        def lock(*args):
            calls.append(('lock', args))
            return real_lock(*args)

        def used_points(queryset):
            calls.append(('used_points', None))
            return real_used_points(queryset)

        patchers = [
            patch('gradebook.ledger.lock_grade_slot', side_effect=lock),
            patch('gradebook.ledger._used_points', side_effect=used_points),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)
        return calls

    def test_record_locks_before_budget_read(self):
        calls = self.track_calls()
        self.record('Quiz 1', 5, 10)

        slot = (self.enrollment.pk, self.math.pk, self.term1.pk)
        self.assertEqual(calls, [('lock', slot), ('used_points', None)])

    def test_update_locks_before_budget_read(self):
        grade = self.record('Quiz 1', 5, 10)
        calls = self.track_calls()
        ledger.update_grade(grade.pk, 'Quiz 1', 5, 20)

        slot = (self.enrollment.pk, self.math.pk, self.term1.pk)
        self.assertEqual(calls, [('lock', slot), ('used_points', None)])

    def test_budget_not_read_when_max_shrinks(self):
        grade = self.record('Quiz 1', 5, 10)
        calls = self.track_calls()
        ledger.update_grade(grade.pk, 'Quiz 1', 5, 8)
        self.assertEqual([name for name, _ in calls], ['lock'])


class SubjectAverageTest(GradebookTestMixin, TestCase):
    """Tests for subject averages and grade listing."""

    def test_scaled_to_budget(self):
        """18/20 and 9/10 on a 100-point subject average 90."""
        self.record('Test', 18, 20)
        self.record('Quiz', 9, 10)
        self.assertEqual(ledger.subject_average(self.enrollment.pk, self.math.pk, self.term1.pk), Decimal('90'))

    def test_small_budget_scale(self):
        entry = curriculum.get_entry(self.year, self.class_obj, self.english)
        curriculum.set_budget(entry.pk, 20)
        self.record('Test', 15, 20, subject=self.english)
        self.assertEqual(ledger.subject_average(self.enrollment.pk, self.english.pk, self.term1.pk), Decimal('15'))

    def test_no_grades_is_zero(self):
        self.assertEqual(ledger.subject_average(self.enrollment.pk, self.math.pk, self.term1.pk), Decimal('0'))

    def test_list_grades(self):
        self.record('Test', 18, 20)
        self.record('Quiz', 9, 10)
        self.record('Essay', 7, 10, subject=self.english)

        math_grades = ledger.list_grades(self.enrollment.pk, self.term1.pk, subject_id=self.math.pk)
        self.assertEqual({g.evaluation_name for g in math_grades}, {'Test', 'Quiz'})

        by_subject = ledger.list_grades(self.enrollment.pk, self.term1.pk)
        self.assertEqual(set(by_subject), {self.math.pk, self.english.pk})
        self.assertEqual(len(by_subject[self.english.pk]), 1)

    def test_slot_keys(self):
        key = slot_key(self.enrollment.pk, self.math.pk, self.term1.pk)
        self.assertEqual(key, slot_key(self.enrollment.pk, self.math.pk, self.term1.pk))
        self.assertNotEqual(key, slot_key(self.enrollment.pk, self.english.pk, self.term1.pk))
        self.assertTrue(-2 ** 63 <= key < 2 ** 63)


class AppreciationTest(GradebookTestMixin, TestCase):
    """Tests for teacher comments."""

    def test_upsert(self):
        appreciations.set_appreciation(self.enrollment.pk, self.math.pk, self.term1.pk, 'Good work')
        appreciations.set_appreciation(self.enrollment.pk, self.math.pk, self.term1.pk, 'Excellent')
        self.assertEqual(
            appreciations.appreciation_for(self.enrollment.pk, self.math.pk, self.term1.pk),
            'Excellent'
        )
        self.assertEqual(self.enrollment.appreciations.count(), 1)

    def test_general_upsert(self):
        appreciations.set_general_appreciation(self.enrollment.pk, self.term1.pk, 'Keep it up')
        appreciations.set_general_appreciation(self.enrollment.pk, self.term1.pk, 'Well done')
        self.assertEqual(appreciations.general_appreciation_for(self.enrollment.pk, self.term1.pk), 'Well done')
        self.assertEqual(self.enrollment.general_appreciations.count(), 1)

    def test_missing_is_none(self):
        self.assertIsNone(appreciations.appreciation_for(self.enrollment.pk, self.math.pk, self.term2.pk))
        self.assertIsNone(appreciations.general_appreciation_for(self.enrollment.pk, self.term2.pk))


class AveragesTest(GradebookTestMixin, TestCase):
    """Tests for period reports, annual averages and class reports."""

    def test_period_report(self):
        self.record('Test', 18, 20)
        self.record('Quiz', 9, 10)
        self.record('Essay', 35, 50, subject=self.english)
        appreciations.set_appreciation(self.enrollment.pk, self.math.pk, self.term1.pk, 'Very good')
        appreciations.set_general_appreciation(self.enrollment.pk, self.term1.pk, 'Promising')

        report = averages.period_report(self.enrollment.pk, self.term1.pk)
        rows = {row['subject_name']: row for row in report['subjects']}

        self.assertEqual(rows['Mathematics']['average'], Decimal('90'))
        self.assertEqual(rows['Mathematics']['appreciation'], 'Very good')
        self.assertEqual(rows['English Language']['average'], Decimal('70'))
        self.assertIsNone(rows['English Language']['appreciation'])
        self.assertEqual(report['period_average'], Decimal('80'))
        self.assertEqual(report['general_appreciation'], 'Promising')

    def test_period_report_lists_ungraded_subjects(self):
        self.record('Test', 10, 20)
        report = averages.period_report(self.enrollment.pk, self.term1.pk)
        self.assertEqual(len(report['subjects']), 2)
        self.assertEqual(report['period_average'], Decimal('25'))

    def test_period_report_without_curriculum(self):
        other_class = Class.objects.create(name='B2-A', order=2)
        student = Student.objects.create(first_name='Kofi', last_name='Boateng', admission_number='STU-002')
        enrollment = enroll_student(student, self.year, other_class)

        report = averages.period_report(enrollment.pk, self.term1.pk)
        self.assertEqual(report['subjects'], [])
        self.assertIsNone(report['period_average'])

    def test_annual_average_unweighted(self):
        """50% in one subject and 80% in another average 65 across terms."""
        self.record('Term 1 Exam', 20, 50)
        self.record('Term 2 Exam', 30, 50, term=self.term2)
        self.record('Essay', 8, 10, subject=self.english)

        self.assertEqual(averages.annual_average(self.enrollment.pk), Decimal('65'))
        self.assertGreaterEqual(averages.annual_average(self.enrollment.pk), averages.passing_grade())

    def test_annual_average_single_subject(self):
        self.record('Test', 3, 4)
        self.record('Exam', 9, 16, term=self.term2)
        self.assertEqual(averages.annual_average(self.enrollment.pk), Decimal('60'))

    def test_annual_average_without_grades(self):
        self.assertEqual(averages.annual_average(self.enrollment.pk), Decimal('0'))

    def test_student_grades_in_term_order(self):
        Term.objects.create(academic_year=self.year, name='Third Term', term_number=3)
        self.record('Exam', 50, 100, term=self.term2)

        reports = averages.student_grades(self.enrollment.pk)
        self.assertEqual([r['term_number'] for r in reports], [1, 2, 3])
        self.assertEqual(reports[1]['subjects'][1]['average'], Decimal('50'))

    def test_student_grades_access_closed(self):
        set_grades_access(self.enrollment.pk, False)
        with self.assertRaises(GradesAccessDenied):
            averages.student_grades(self.enrollment.pk)

    def test_class_report_final_term(self):
        SchoolSettings(passing_grade=Decimal('60')).save()
        weak = Student.objects.create(first_name='Yaw', last_name='Owusu', admission_number='STU-003')
        weak_enrollment = enroll_student(weak, self.year, self.class_obj)
        left = Student.objects.create(
            first_name='Esi', last_name='Appiah', admission_number='STU-004',
            status=Student.Status.WITHDRAWN
        )
        enroll_student(left, self.year, self.class_obj)

        self.record('Exam', 80, 100, term=self.term2)
        ledger.record_grade(weak_enrollment.pk, self.math.pk, self.term2.pk, 'Exam', 40, 100)

        report = averages.class_report(self.year.pk, self.class_obj.pk, self.term2.pk)
        self.assertTrue(report['is_final_term'])
        rows = {row['enrollment'].pk: row for row in report['rows']}
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[self.enrollment.pk]['promotion_status'], averages.ADMITTED)
        self.assertEqual(rows[weak_enrollment.pk]['promotion_status'], averages.REPEAT)
        self.assertEqual(rows[weak_enrollment.pk]['annual_average'], Decimal('40'))

    def test_class_report_other_term(self):
        self.record('Exam', 80, 100)
        report = averages.class_report(self.year.pk, self.class_obj.pk, self.term1.pk)
        self.assertFalse(report['is_final_term'])
        self.assertIsNone(report['passing_grade'])
        self.assertNotIn('annual_average', report['rows'][0])
        self.assertEqual(report['rows'][0]['report']['subjects'][1]['average'], Decimal('80'))

    def test_annual_average_unknown_enrollment(self):
        for enrollment_id in ['00000000-0000-0000-0000-000000000000', 'not-a-uuid']:
            with self.assertRaises(EnrollmentNotFound):
                averages.annual_average(enrollment_id)

    def test_unknown_term(self):
        for term_id in [999999, 'first']:
            with self.assertRaises(TermNotFound) as ctx:
                averages.period_report(self.enrollment.pk, term_id)
            self.assertEqual(ctx.exception.to_dict()['code'], 'term_not_found')

            with self.assertRaises(TermNotFound):
                averages.class_report(self.year.pk, self.class_obj.pk, term_id)

    def test_class_report_ranks_and_class_average(self):
        """Equal term averages share a rank and the next rank is skipped."""
        tied = enroll_student(
            Student.objects.create(first_name='Kojo', last_name='Asante', admission_number='STU-005'),
            self.year, self.class_obj
        )
        last = enroll_student(
            Student.objects.create(first_name='Abena', last_name='Darko', admission_number='STU-006'),
            self.year, self.class_obj
        )
        self.record('Exam', 80, 100)
        ledger.record_grade(tied.pk, self.math.pk, self.term1.pk, 'Exam', 80, 100)
        ledger.record_grade(last.pk, self.math.pk, self.term1.pk, 'Exam', 20, 100)

        report = averages.class_report(self.year.pk, self.class_obj.pk, self.term1.pk)
        rows = {row['enrollment'].pk: row for row in report['rows']}

        self.assertEqual(rows[self.enrollment.pk]['term_average'], Decimal('40'))
        self.assertEqual(rows[self.enrollment.pk]['rank'], 1)
        self.assertEqual(rows[tied.pk]['rank'], 1)
        self.assertEqual(rows[last.pk]['term_average'], Decimal('10'))
        self.assertEqual(rows[last.pk]['rank'], 3)
        self.assertEqual(report['class_average'], Decimal('30'))

    def test_class_report_empty_class(self):
        other_class = Class.objects.create(name='B2-A', order=2)
        report = averages.class_report(self.year.pk, other_class.pk, self.term1.pk)
        self.assertEqual(report['rows'], [])
        self.assertEqual(report['class_average'], Decimal('0'))
