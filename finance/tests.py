from datetime import date
from decimal import Decimal

from django.test import TestCase

from academics.models import Class
from core.exceptions import EnrollmentNotFound, InvalidLedgerEntry, StaleLedger
from core.models import AcademicYear
from students.enrollments import enroll_student
from students.models import Student

from . import ledger
from .models import ClassTuition


class FinanceTestMixin:

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 2),
            end_date=date(2025, 7, 25),
        )
        self.class_obj = Class.objects.create(name='JHS1-A', order=7)
        ClassTuition.objects.create(class_assigned=self.class_obj, academic_year=self.year, amount=Decimal('1000'))
        self.student = Student.objects.create(first_name='Ama', last_name='Mensah', admission_number='STU-001')
        self.enrollment = enroll_student(self.student, self.year, self.class_obj)


class ClassTuitionTest(FinanceTestMixin, TestCase):
    """Tests for the per-class tuition table."""

    def test_default_tuition(self):
        self.assertEqual(ledger.default_tuition(self.class_obj, self.year), Decimal('1000'))

    def test_default_tuition_unset(self):
        other = Class.objects.create(name='JHS2-A', order=8)
        self.assertEqual(ledger.default_tuition(other, self.year), Decimal('0.00'))


class LedgerFiguresTest(FinanceTestMixin, TestCase):
    """Tests for amount due, payments and balance."""

    def test_new_enrollment_owes_tuition(self):
        self.assertEqual(ledger.adjusted_amount_due(self.enrollment), Decimal('1000.00'))
        self.assertEqual(ledger.total_paid(self.enrollment), Decimal('0.00'))
        self.assertEqual(ledger.balance(self.enrollment), Decimal('1000.00'))

    def test_adjustments_and_payments(self):
        enrollment = ledger.set_payments_and_adjustments(
            self.enrollment.pk,
            payments=[{'amount': 300, 'date': date(2024, 9, 10)}, {'amount': '200.50', 'date': None}],
            adjustments=[{'amount': '-250', 'reason': 'Scholarship'}, {'amount': 50, 'reason': 'Late fee'}],
        )
        self.assertEqual(ledger.adjusted_amount_due(enrollment), Decimal('800.00'))
        self.assertEqual(ledger.total_paid(enrollment), Decimal('500.50'))
        self.assertEqual(ledger.balance(enrollment), Decimal('299.50'))
        self.assertEqual(enrollment.payments[0], {'amount': '300.00', 'date': '2024-09-10'})
        self.assertEqual(enrollment.adjustments[0], {'amount': '-250.00', 'reason': 'Scholarship'})

    def test_overpayment_gives_negative_balance(self):
        enrollment = ledger.set_payments_and_adjustments(
            self.enrollment.pk,
            payments=[{'amount': 1100}],
            adjustments=[],
        )
        self.assertEqual(ledger.balance(enrollment), Decimal('-100.00'))

    def test_summary(self):
        enrollment = ledger.set_payments_and_adjustments(
            self.enrollment.pk,
            payments=[{'amount': 400}],
            adjustments=[{'amount': -100, 'reason': 'Sibling discount'}],
        )
        self.assertEqual(ledger.ledger_summary(enrollment), {
            'tuition': Decimal('1000.00'),
            'adjustments_total': Decimal('-100.00'),
            'amount_due': Decimal('900.00'),
            'total_paid': Decimal('400.00'),
            'balance': Decimal('500.00'),
            'version': 1,
        })


class SetPaymentsTest(FinanceTestMixin, TestCase):
    """Tests for replacing payments and adjustments."""

    def test_full_replace(self):
        ledger.set_payments_and_adjustments(
            self.enrollment.pk,
            payments=[{'amount': 100}, {'amount': 200}],
            adjustments=[{'amount': -50, 'reason': 'Discount'}],
        )
        enrollment = ledger.set_payments_and_adjustments(self.enrollment.pk, payments=[{'amount': 10}], adjustments=[])
        self.assertEqual(len(enrollment.payments), 1)
        self.assertEqual(enrollment.adjustments, [])
        self.assertEqual(enrollment.ledger_version, 2)

    def test_tuition_replaced_in_same_write(self):
        enrollment = ledger.set_payments_and_adjustments(
            self.enrollment.pk, payments=[], adjustments=[], tuition='1250'
        )
        self.assertEqual(enrollment.tuition, Decimal('1250.00'))

    def test_negative_payment_rejected(self):
        with self.assertRaises(InvalidLedgerEntry):
            ledger.set_payments_and_adjustments(self.enrollment.pk, payments=[{'amount': -5}], adjustments=[])
        self.enrollment.refresh_from_db()
        self.assertEqual(self.enrollment.ledger_version, 0)

    def test_malformed_entries_rejected(self):
        for payments, adjustments in [
            ([{'amount': 'abc'}], []),
            (['100'], []),
            ([], [{'amount': 'NaN', 'reason': 'x'}]),
        ]:
            with self.assertRaises(InvalidLedgerEntry):
                ledger.set_payments_and_adjustments(self.enrollment.pk, payments, adjustments)

    def test_sub_cent_amounts_rejected(self):
        """Amounts are never rounded to the cent; extra places are an error."""
        for payments, adjustments in [
            ([{'amount': '10.005'}], []),
            ([], [{'amount': '-0.004', 'reason': 'Rounding'}]),
            ([{'amount': '1e30'}], []),
        ]:
            with self.assertRaises(InvalidLedgerEntry):
                ledger.set_payments_and_adjustments(self.enrollment.pk, payments, adjustments)

        with self.assertRaises(InvalidLedgerEntry):
            ledger.set_payments_and_adjustments(self.enrollment.pk, [], [], tuition='999.999')

        self.enrollment.refresh_from_db()
        self.assertEqual(self.enrollment.ledger_version, 0)

    def test_to_amount(self):
        self.assertEqual(ledger.to_amount('10.5'), Decimal('10.50'))
        self.assertEqual(ledger.to_amount(7), Decimal('7.00'))
        with self.assertRaises(InvalidLedgerEntry) as ctx:
            ledger.to_amount('10.005')
        self.assertEqual(ctx.exception.code, 'invalid_ledger_entry')

    def test_negative_tuition_rejected(self):
        with self.assertRaises(InvalidLedgerEntry):
            ledger.set_payments_and_adjustments(self.enrollment.pk, [], [], tuition=-1)

    def test_missing_enrollment(self):
        with self.assertRaises(EnrollmentNotFound):
            ledger.set_payments_and_adjustments('00000000-0000-0000-0000-000000000000', [], [])

    def test_expected_version(self):
        enrollment = ledger.set_payments_and_adjustments(
            self.enrollment.pk, payments=[{'amount': 100}], adjustments=[], expected_version=0
        )
        self.assertEqual(enrollment.ledger_version, 1)

    def test_stale_version_writes_nothing(self):
        ledger.set_payments_and_adjustments(self.enrollment.pk, payments=[{'amount': 100}], adjustments=[])

        with self.assertRaises(StaleLedger) as ctx:
            ledger.set_payments_and_adjustments(
                self.enrollment.pk, payments=[{'amount': 999}], adjustments=[], expected_version=0
            )
        self.assertEqual(ctx.exception.details['current_version'], 1)

        self.enrollment.refresh_from_db()
        self.assertEqual(ledger.total_paid(self.enrollment), Decimal('100.00'))
