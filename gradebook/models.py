import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from academics.models import Subject
from core.models import Term
from students.models import Enrollment


class Grade(models.Model):
    """
    One scored evaluation of an enrollment in a subject during a term
    (e.g., "Quiz 1", 18 out of 20).

    For a given (enrollment, subject, term) the ``max_score`` of all
    evaluations together may not exceed the subject's point budget, and
    evaluation names are unique ignoring case. Both rules are enforced by
    ``gradebook.ledger``, which is the only writer.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.CASCADE,
        related_name='grades',
        db_index=True
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='grades',
        db_index=True
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='grades',
        db_index=True
    )
    evaluation_name = models.CharField(
        max_length=100,
        help_text='Evaluation name (e.g., Quiz 1, Mid-term Test)'
    )
    score = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        validators=[MinValueValidator(Decimal('0'))],
        help_text='Points earned'
    )
    max_score = models.DecimalField(
        max_digits=12,
        decimal_places=4,
        validators=[MinValueValidator(Decimal('0.0001'))],
        help_text='Points available; counts against the subject budget'
    )
    date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.evaluation_name}: {self.score}/{self.max_score}"

    class Meta:
        db_table = 'grade'
        ordering = ['-date', '-created_at']
        verbose_name = 'Grade'
        verbose_name_plural = 'Grades'
        indexes = [
            models.Index(fields=['enrollment', 'subject', 'term']),
        ]


class GradeAuditLog(models.Model):
    """
    Audit log for grade changes. Tracks who changed what and when.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    ACTION_CHOICES = [
        ('CREATE', 'Created'),
        ('UPDATE', 'Updated'),
        ('DELETE', 'Deleted'),
    ]

    # The grade being audited (null once deleted)
    grade = models.ForeignKey(
        Grade,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs'
    )

    # Kept separately so the trail survives deletion
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.CASCADE,
        related_name='grade_audit_logs'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='grade_audit_logs'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='grade_audit_logs'
    )
    evaluation_name = models.CharField(max_length=100)

    # Who made the change, as reported by the caller
    actor = models.CharField(max_length=150, blank=True)

    action = models.CharField(max_length=10, choices=ACTION_CHOICES)
    old_score = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    new_score = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    old_max_score = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)
    new_max_score = models.DecimalField(max_digits=12, decimal_places=4, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_action_display()} {self.evaluation_name} for enrollment {self.enrollment_id} by {self.actor or '-'}"

    class Meta:
        db_table = 'grade_audit_log'
        ordering = ['-created_at']
        verbose_name = 'Grade Audit Log'
        verbose_name_plural = 'Grade Audit Logs'
        indexes = [
            models.Index(fields=['enrollment', 'subject', 'term']),
            models.Index(fields=['-created_at']),
        ]


class Appreciation(models.Model):
    """Teacher's comment on an enrollment's work in one subject for one term"""
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.CASCADE,
        related_name='appreciations'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='appreciations'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='appreciations'
    )
    text = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.enrollment_id} - {self.subject_id} ({self.term_id})"

    class Meta:
        db_table = 'appreciation'
        unique_together = ['enrollment', 'subject', 'term']


class GeneralAppreciation(models.Model):
    """Overall comment on an enrollment for one term (report card remark)"""
    enrollment = models.ForeignKey(
        Enrollment,
        on_delete=models.CASCADE,
        related_name='general_appreciations'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='general_appreciations'
    )
    text = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.enrollment_id} ({self.term_id})"

    class Meta:
        db_table = 'general_appreciation'
        unique_together = ['enrollment', 'term']
