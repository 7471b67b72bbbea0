from decimal import Decimal

from django.core.cache import cache
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models


class AcademicYear(models.Model):
    """
    Represents a school year (e.g., 2024/2025).
    Each tenant has their own academic years.
    """
    name = models.CharField(
        max_length=50,
        help_text="e.g., 2024/2025 Academic Year"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(
        default=False,
        help_text="Only one academic year can be current at a time"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_date']
        verbose_name = "Academic Year"
        verbose_name_plural = "Academic Years"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Ensure only one academic year is current
        if self.is_current:
            AcademicYear.objects.filter(is_current=True).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls):
        """Get the current academic year."""
        return cls.objects.filter(is_current=True).first()

    def get_final_term(self):
        """The year-end period: the one with the highest ordinal."""
        return self.terms.order_by('-term_number').first()


class Term(models.Model):
    """
    An ordered period (term, semester, trimester) within an academic year.

    Periods are ordered by ``term_number``, never by creation order or name;
    the highest number is the year-end period where annual averages and
    promotion apply.
    """
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.CASCADE,
        related_name='terms'
    )
    name = models.CharField(
        max_length=50,
        help_text="e.g., First Term, Trimester 2"
    )
    term_number = models.PositiveSmallIntegerField(
        default=1,
        verbose_name="Period Number"
    )
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    is_current = models.BooleanField(
        default=False,
        help_text="Only one term can be current at a time"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year', 'term_number']
        verbose_name = "Term"
        verbose_name_plural = "Terms"
        unique_together = ['academic_year', 'term_number']

    def __str__(self):
        return f"{self.name} - {self.academic_year.name}"

    def save(self, *args, **kwargs):
        # Ensure only one term is current
        if self.is_current:
            Term.objects.filter(is_current=True).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls):
        """Get the current term."""
        return cls.objects.filter(is_current=True).select_related('academic_year').first()

    @property
    def is_final(self):
        """True when no later period exists in the same year."""
        return not Term.objects.filter(
            academic_year_id=self.academic_year_id,
            term_number__gt=self.term_number
        ).exists()


class SchoolSettings(models.Model):
    """
    Stores configuration specific to this School (Tenant).
    """
    display_name = models.CharField(max_length=50, blank=True)

    # Promotion threshold compared against the 0-100 annual average.
    # Left empty, the gradebook default applies.
    passing_grade = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('100'))],
        help_text="Minimum annual average (%) required for promotion"
    )

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)
        cache.delete('school_profile')

    @classmethod
    def load(cls):
        from gradebook import config

        profile = cache.get('school_profile')
        if profile is None:
            profile, created = cls.objects.get_or_create(pk=1)
            cache.set('school_profile', profile, config.SETTINGS_CACHE_TIMEOUT)
        return profile

    class Meta:
        verbose_name = "School Settings"
        verbose_name_plural = "School Settings"

    def __str__(self):
        return "School Profile & Settings"
