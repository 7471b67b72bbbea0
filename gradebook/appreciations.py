"""
Teacher comments shown on report cards: one per subject and term, plus one
general remark per term. Saving again replaces the previous text.
"""
import logging

from .models import Appreciation, GeneralAppreciation

logger = logging.getLogger(__name__)


def set_appreciation(enrollment_id, subject_id, term_id, text):
    appreciation, created = Appreciation.objects.update_or_create(
        enrollment_id=enrollment_id,
        subject_id=subject_id,
        term_id=term_id,
        defaults={'text': text or ''}
    )
    logger.info(
        f"Appreciation {'created' if created else 'updated'} for enrollment {enrollment_id}, subject {subject_id}"
    )
    return appreciation


def set_general_appreciation(enrollment_id, term_id, text):
    appreciation, created = GeneralAppreciation.objects.update_or_create(
        enrollment_id=enrollment_id,
        term_id=term_id,
        defaults={'text': text or ''}
    )
    logger.info(f"General appreciation {'created' if created else 'updated'} for enrollment {enrollment_id}")
    return appreciation


def appreciation_for(enrollment_id, subject_id, term_id):
    """Appreciation text, or None if none was written."""
    return Appreciation.objects.filter(
        enrollment_id=enrollment_id,
        subject_id=subject_id,
        term_id=term_id
    ).values_list('text', flat=True).first()


def general_appreciation_for(enrollment_id, term_id):
    return GeneralAppreciation.objects.filter(
        enrollment_id=enrollment_id,
        term_id=term_id
    ).values_list('text', flat=True).first()
