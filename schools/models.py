from django.db import models
from django_tenants.models import TenantMixin, DomainMixin


class School(TenantMixin):
    """
    A school instance. Each school's academic and ledger data lives in its
    own PostgreSQL schema; this row and its domains live in the public one.
    """
    name = models.CharField(max_length=100)
    short_name = models.CharField(max_length=20, blank=True)
    contact_email = models.EmailField(blank=True)
    is_active = models.BooleanField(
        default=True,
        help_text="Inactive schools keep their data but are not served"
    )

    created_on = models.DateField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    auto_create_schema = True

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def display_name(self):
        return self.short_name or self.name


class Domain(DomainMixin):
    pass
