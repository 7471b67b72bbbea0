from datetime import date
from decimal import Decimal

from django.test import TestCase, override_settings

from core.exceptions import BudgetExceeded, EngineError, InvalidScore
from core.models import AcademicYear, Term, SchoolSettings
from gradebook import config
from gradebook.averages import passing_grade


class AcademicYearModelTest(TestCase):
    """Tests for AcademicYear model."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
            is_current=True
        )

    def test_only_one_current_year(self):
        """Making a year current clears the flag on the others."""
        other = AcademicYear.objects.create(
            name='2025/2026',
            start_date=date(2025, 9, 1),
            end_date=date(2026, 7, 24),
            is_current=True
        )
        self.year.refresh_from_db()
        self.assertFalse(self.year.is_current)
        self.assertEqual(AcademicYear.get_current(), other)

    def test_final_term_is_highest_number(self):
        """Year-end period is chosen by term_number, not creation order."""
        third = Term.objects.create(academic_year=self.year, name='Third Term', term_number=3)
        Term.objects.create(academic_year=self.year, name='First Term', term_number=1)
        Term.objects.create(academic_year=self.year, name='Second Term', term_number=2)

        self.assertEqual(self.year.get_final_term(), third)
        self.assertTrue(third.is_final)

    def test_final_term_without_terms(self):
        self.assertIsNone(self.year.get_final_term())


class TermModelTest(TestCase):
    """Tests for Term model."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
        )
        self.term1 = Term.objects.create(academic_year=self.year, name='Term 1', term_number=1, is_current=True)
        self.term2 = Term.objects.create(academic_year=self.year, name='Term 2', term_number=2)

    def test_is_final(self):
        self.assertFalse(self.term1.is_final)
        self.assertTrue(self.term2.is_final)

    def test_only_one_current_term(self):
        self.term2.is_current = True
        self.term2.save()
        self.term1.refresh_from_db()
        self.assertFalse(self.term1.is_current)
        self.assertEqual(Term.get_current(), self.term2)

    def test_str_representation(self):
        self.assertEqual(str(self.term1), 'Term 1 - 2024/2025')


class SchoolSettingsTest(TestCase):
    """Tests for the per-school settings singleton and passing grade."""

    def test_load_creates_singleton(self):
        settings = SchoolSettings.load()
        self.assertEqual(settings.pk, 1)
        self.assertIsNone(settings.passing_grade)

    def test_save_forces_single_row(self):
        SchoolSettings(display_name='First').save()
        SchoolSettings(display_name='Second').save()
        self.assertEqual(SchoolSettings.objects.count(), 1)
        self.assertEqual(SchoolSettings.load().display_name, 'Second')

    def test_passing_grade_default(self):
        """Unconfigured threshold falls back to the default without raising."""
        with self.assertLogs('gradebook.averages', level='WARNING'):
            self.assertEqual(passing_grade(), Decimal('60'))

    def test_passing_grade_configured(self):
        SchoolSettings(passing_grade=Decimal('50')).save()
        self.assertEqual(passing_grade(), Decimal('50'))

    @override_settings(GRADEBOOK_DEFAULT_PASSING_GRADE=Decimal('45'))
    def test_default_overridable_in_settings(self):
        self.assertEqual(config.DEFAULT_PASSING_GRADE, Decimal('45'))
        with self.assertLogs('gradebook.averages', level='WARNING'):
            self.assertEqual(passing_grade(), Decimal('45'))


class EngineErrorTest(TestCase):
    """Tests for the structured error hierarchy."""

    def test_to_dict(self):
        error = InvalidScore("A score cannot be negative.", details={'score': '-1'})
        self.assertEqual(error.to_dict(), {
            'code': 'invalid_score',
            'message': "A score cannot be negative.",
            'details': {'score': '-1'},
        })
        self.assertIsInstance(error, EngineError)

    def test_budget_exceeded_carries_remaining(self):
        error = BudgetExceeded("Too many points.", remaining=Decimal('40'))
        self.assertEqual(error.remaining, Decimal('40'))
        self.assertEqual(error.details['remaining'], '40')
        self.assertIn('remaining', str(error))
