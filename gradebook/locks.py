"""
Transaction-scoped lock on a grade slot: one (enrollment, subject, term).

Recording a grade reads the budget already used and then writes, so two
writers on the same slot must not interleave. Writers on different slots
never wait for each other on PostgreSQL.

Must be called inside ``transaction.atomic()``; the lock is released on
commit or rollback.
"""
import hashlib

from django.db import connection

from students.models import Enrollment


def slot_key(enrollment_id, subject_id, term_id):
    """Signed 64-bit advisory lock key for a grade slot."""
    raw = f"grade-slot:{enrollment_id}:{subject_id}:{term_id}".encode()
    digest = hashlib.blake2b(raw, digest_size=8).digest()
    return int.from_bytes(digest, 'big', signed=True)


def lock_grade_slot(enrollment_id, subject_id, term_id):
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute('SELECT pg_advisory_xact_lock(%s)', [slot_key(enrollment_id, subject_id, term_id)])
        return

    # Coarser fallback: the whole enrollment row (no-op where unsupported)
    list(Enrollment.objects.select_for_update().filter(pk=enrollment_id).values_list('pk', flat=True))
