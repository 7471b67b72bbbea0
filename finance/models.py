from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class ClassTuition(models.Model):
    """Default tuition for a class in an academic year"""
    class_assigned = models.ForeignKey(
        'academics.Class',
        on_delete=models.CASCADE,
        related_name='tuitions'
    )
    academic_year = models.ForeignKey(
        'core.AcademicYear',
        on_delete=models.CASCADE,
        related_name='class_tuitions'
    )
    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Tuition applied to new enrollments that do not set their own"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ['class_assigned', 'academic_year']
        ordering = ['academic_year', 'class_assigned']

    def __str__(self):
        return f"{self.class_assigned.name} - {self.academic_year} ({self.amount})"
