"""
Financial ledger for enrollments.

An enrollment owes its base tuition plus the sum of its signed adjustments
(scholarships are negative, surcharges positive). Payments reduce the
balance; a negative balance means the student has over-paid.

Payments and adjustments are replaced as a whole, never patched entry by
entry. Callers that read the ledger before editing it can pass the
``ledger_version`` they saw to refuse overwriting someone else's change.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import F

from core.exceptions import EnrollmentNotFound, InvalidLedgerEntry, StaleLedger
from students.models import Enrollment
from .models import ClassTuition

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def to_amount(value, field='amount'):
    """Parse a money value; more than two decimal places is an error."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidLedgerEntry(f"Invalid {field}: {value!r}", details={field: value})
    if not amount.is_finite():
        raise InvalidLedgerEntry(f"Invalid {field}: {value!r}", details={field: str(value)})
    try:
        cents = amount.quantize(CENTS)
    except InvalidOperation:
        raise InvalidLedgerEntry(f"{field} is out of range: {value!r}", details={field: str(value)})
    if cents != amount:
        raise InvalidLedgerEntry(
            f"{field} has more than 2 decimal places: {value!r}",
            details={field: str(value)}
        )
    return cents


def _entry_amounts(entries):
    # Stored amounts may be strings, ints or floats depending on who wrote them
    return [to_amount(entry.get('amount', 0)) for entry in entries or []]


def adjusted_amount_due(enrollment):
    """Base tuition plus every signed adjustment."""
    return to_amount(enrollment.tuition) + sum(_entry_amounts(enrollment.adjustments), Decimal('0.00'))


def total_paid(enrollment):
    return sum(_entry_amounts(enrollment.payments), Decimal('0.00'))


def balance(enrollment):
    """Amount still owed; negative when over-paid."""
    return adjusted_amount_due(enrollment) - total_paid(enrollment)


def ledger_summary(enrollment):
    """All ledger figures of an enrollment in one dict."""
    due = adjusted_amount_due(enrollment)
    paid = total_paid(enrollment)
    return {
        'tuition': to_amount(enrollment.tuition),
        'adjustments_total': due - to_amount(enrollment.tuition),
        'amount_due': due,
        'total_paid': paid,
        'balance': due - paid,
        'version': enrollment.ledger_version,
    }


def normalize_payments(payments):
    """
    Validate payments and return them in storage form.

    Each payment is ``{"amount": "<decimal>", "date": "<iso date>" | None}``.
    Amounts must not be negative; refunds belong in adjustments.
    """
    cleaned = []
    for index, payment in enumerate(payments or []):
        if not isinstance(payment, dict):
            raise InvalidLedgerEntry(f"Payment #{index + 1} is not a mapping.", details={'index': index})
        amount = to_amount(payment.get('amount', 0))
        if amount < 0:
            raise InvalidLedgerEntry(
                f"Payment #{index + 1} has a negative amount.",
                details={'index': index, 'amount': str(amount)}
            )
        date = payment.get('date')
        cleaned.append({
            'amount': str(amount),
            'date': date.isoformat() if hasattr(date, 'isoformat') else (date or None),
        })
    return cleaned


def normalize_adjustments(adjustments):
    """
    Validate adjustments and return them in storage form.

    Each adjustment is ``{"amount": "<signed decimal>", "reason": "<text>"}``.
    """
    cleaned = []
    for index, adjustment in enumerate(adjustments or []):
        if not isinstance(adjustment, dict):
            raise InvalidLedgerEntry(f"Adjustment #{index + 1} is not a mapping.", details={'index': index})
        amount = to_amount(adjustment.get('amount', 0))
        cleaned.append({
            'amount': str(amount),
            'reason': str(adjustment.get('reason') or ''),
        })
    return cleaned


def set_payments_and_adjustments(enrollment_id, payments, adjustments, *, tuition=None, expected_version=None):
    """
    Replace an enrollment's payments and adjustments in one write.

    Args:
        enrollment_id: Enrollment primary key
        payments: list of {"amount", "date"} mappings
        adjustments: list of {"amount", "reason"} mappings
        tuition: optional new base tuition, written in the same update
        expected_version: when given, the write only happens if the stored
            ledger_version still matches

    Returns:
        The refreshed Enrollment

    Raises:
        EnrollmentNotFound, InvalidLedgerEntry, StaleLedger
    """
    cleaned_payments = normalize_payments(payments)
    cleaned_adjustments = normalize_adjustments(adjustments)

    values = {
        'payments': cleaned_payments,
        'adjustments': cleaned_adjustments,
        'ledger_version': F('ledger_version') + 1,
    }
    if tuition is not None:
        base = to_amount(tuition, field='tuition')
        if base < 0:
            raise InvalidLedgerEntry("Tuition cannot be negative.", details={'tuition': str(base)})
        values['tuition'] = base

    with transaction.atomic():
        queryset = Enrollment.objects.filter(pk=enrollment_id)
        if expected_version is not None:
            queryset = queryset.filter(ledger_version=expected_version)

        updated = queryset.update(**values)
        if not updated:
            current = Enrollment.objects.filter(pk=enrollment_id).values_list('ledger_version', flat=True).first()
            if current is None:
                raise EnrollmentNotFound("Enrollment not found.", details={'enrollment': str(enrollment_id)})
            raise StaleLedger(
                "The payment record was changed by someone else. Reload it and try again.",
                details={'expected_version': expected_version, 'current_version': current}
            )

    enrollment = Enrollment.objects.get(pk=enrollment_id)
    logger.info(
        f"Ledger updated for enrollment {enrollment_id}: "
        f"{len(cleaned_payments)} payment(s), {len(cleaned_adjustments)} adjustment(s), "
        f"balance {balance(enrollment)}"
    )
    return enrollment


def default_tuition(class_assigned, year):
    """Tuition configured for a class/year, or 0 when none is set."""
    amount = ClassTuition.objects.filter(
        class_assigned=class_assigned,
        academic_year=year
    ).values_list('amount', flat=True).first()
    return Decimal(amount) if amount is not None else Decimal('0.00')
