from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class Class(models.Model):
    """
    Represents a class/classroom grouping of students (e.g., 'B1-A', 'NS III').

    Classes are referred to by name in promotion maps, so names are unique
    within a school.
    """
    name = models.CharField(
        max_length=50,
        unique=True,
        help_text="e.g., B1-A, JHS2-B, NS III"
    )
    order = models.PositiveSmallIntegerField(
        default=0,
        help_text="Display order; lower levels first"
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['order', 'name']
        verbose_name = "Class"
        verbose_name_plural = "Classes"

    def __str__(self):
        return self.name


class Subject(models.Model):
    """
    Represents a subject taught at the school.
    """
    name = models.CharField(
        max_length=100,
        help_text="e.g., Mathematics, English Language, Integrated Science"
    )
    short_name = models.CharField(
        max_length=20,
        blank=True,
        help_text="e.g., MATH, ENG, INT SCI"
    )
    code = models.CharField(
        max_length=20,
        blank=True,
        help_text="Optional subject code"
    )
    is_core = models.BooleanField(
        default=True,
        help_text="Core subjects are mandatory"
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = "Subject"
        verbose_name_plural = "Subjects"

    def __str__(self):
        return self.name


class ClassSubject(models.Model):
    """
    Curriculum entry: a Subject taught to a Class during an AcademicYear,
    together with its point budget.

    ``max_grade`` is the total of ``max_score`` that the evaluations of one
    student in one period may add up to, and the scale subject averages are
    reported on. Lowering it does not re-validate grades already recorded.
    """
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.CASCADE,
        related_name='curriculum'
    )
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='subjects'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='class_allocations'
    )
    max_grade = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('100'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Point budget for this subject in this class"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ['academic_year', 'class_assigned', 'subject']
        ordering = ['academic_year', 'class_assigned', 'subject__name']
        verbose_name = "Subject Allocation"
        verbose_name_plural = "Subject Allocations"
        indexes = [
            models.Index(fields=['academic_year', 'class_assigned']),
        ]

    def __str__(self):
        return f"{self.subject.name} - {self.class_assigned.name} ({self.max_grade} pts)"
