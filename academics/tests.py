from datetime import date
from decimal import Decimal

from django.test import TestCase

from academics import curriculum
from academics.models import Class, ClassSubject, Subject
from core.exceptions import InvalidBudget, SubjectNotAssigned
from core.models import AcademicYear


class CurriculumTest(TestCase):
    """Tests for the curriculum registry."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
        )
        self.class_obj = Class.objects.create(name='B1-A', order=1)
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        self.english = Subject.objects.create(name='English Language', short_name='ENG')

    def test_assign_uses_default_budget(self):
        entry = curriculum.assign_subject(self.year, self.class_obj, self.math)
        self.assertEqual(entry.max_grade, Decimal('100'))
        self.assertEqual(curriculum.budget_for(self.year, self.class_obj, self.math), Decimal('100'))

    def test_assign_is_idempotent(self):
        first = curriculum.assign_subject(self.year, self.class_obj, self.math, max_grade=20)
        second = curriculum.assign_subject(self.year, self.class_obj, self.math, max_grade=50)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(ClassSubject.objects.count(), 1)
        self.assertEqual(curriculum.budget_for(self.year, self.class_obj, self.math), Decimal('20'))

    def test_budget_for_unassigned_subject(self):
        with self.assertRaises(SubjectNotAssigned):
            curriculum.budget_for(self.year, self.class_obj, self.english)

    def test_assigned_subjects_ordered_by_name(self):
        curriculum.assign_subject(self.year.pk, self.class_obj.pk, self.math.pk)
        curriculum.assign_subject(self.year.pk, self.class_obj.pk, self.english.pk)
        names = [entry.subject.name for entry in curriculum.assigned_subjects(self.year, self.class_obj)]
        self.assertEqual(names, ['English Language', 'Mathematics'])

    def test_unassign(self):
        curriculum.assign_subject(self.year, self.class_obj, self.math)
        self.assertTrue(curriculum.unassign_subject(self.year, self.class_obj, self.math))
        self.assertFalse(curriculum.unassign_subject(self.year, self.class_obj, self.math))

    def test_set_budget(self):
        entry = curriculum.assign_subject(self.year, self.class_obj, self.math)
        updated = curriculum.set_budget(entry.pk, '40')
        self.assertEqual(updated.max_grade, Decimal('40'))

    def test_set_budget_rejects_invalid_values(self):
        entry = curriculum.assign_subject(self.year, self.class_obj, self.math)
        for value in ['abc', '-5', '0', None]:
            with self.assertRaises(InvalidBudget):
                curriculum.set_budget(entry.pk, value)
        entry.refresh_from_db()
        self.assertEqual(entry.max_grade, Decimal('100'))

    def test_set_budget_missing_entry(self):
        with self.assertRaises(SubjectNotAssigned):
            curriculum.set_budget(999, 10)
