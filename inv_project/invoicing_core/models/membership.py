from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from ..exceptions import DeletionForbidden
from ..managers import (CompanyManager, MembershipManager, UserManager,
                        user_is_root_admin)
from ..permissions import Role, normalize_permissions


# ---------- Tenant / Company ----------
class Company(models.Model):

    """Tenant / Organization"""
    name = models.CharField(max_length=200)
    # Legal name printed on invoices, if it differs from the display name
    business_name = models.CharField(max_length=200, blank=True)

    slug = models.SlugField(max_length=80, unique=True)

    # Tax identifiers
    tax_id = models.CharField(max_length=64, blank=True)
    vat_id = models.CharField(max_length=64, blank=True)

    address = models.TextField(blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)

    default_currency = models.CharField(max_length=3, default="EUR")
    # Month the fiscal year starts in (1 = January)
    fiscal_year_start = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(12)],
    )

    # Soft deactivation switch; an inactive company locks out its members
    active = models.BooleanField(default=True)
    can_be_deleted = models.BooleanField(default=False)
    # The organization's primary legal entity
    is_main_company = models.BooleanField(default=False)

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="owned_companies",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CompanyManager()

    class Meta:
        verbose_name_plural = "companies"
        db_table = "companies"
        constraints = [
            # at most one company may be flagged as main
            models.UniqueConstraint(
                fields=["is_main_company"],
                condition=models.Q(is_main_company=True),
                name="uq_single_main_company",
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def legal_name(self):
        return self.business_name or self.name

    def save(self, *args, **kwargs):
        # field validators (fiscal_year_start range); uniqueness stays with the DB
        self.full_clean(validate_unique=False, validate_constraints=False)
        return super().save(*args, **kwargs)

    def deactivate(self):
        self.active = False
        self.save(update_fields=["active", "updated_at"])

    def delete(self, *args, **kwargs):
        if not self.can_be_deleted:
            raise DeletionForbidden(
                "protected",
                f"Company {self} is protected; deactivate it instead.",
            )
        return super().delete(*args, **kwargs)


# ---------- Custom User ----------
class User(AbstractUser):
    """
    Before running the first migrate, settings.py must contain:
    AUTH_USER_MODEL = "invoicing_core.User"
    """
    default_company = models.ForeignKey(
        "Company",
        # user might exist before being assigned a company
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="default_users",
    )

    phone = models.CharField(max_length=32, blank=True)

    objects = UserManager()

    class Meta:
        indexes = [models.Index(fields=["default_company"], name="user_default_company_idx")]

    def __str__(self):
        return self.get_full_name() or self.username

    @property
    def is_root_admin(self):
        return user_is_root_admin(self)


# ---------- CompanyMembership ----------
class CompanyMembership(models.Model):
    """One row per (company, user): role and capabilities inside a tenant."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    company = models.ForeignKey(
        "Company", on_delete=models.CASCADE, related_name="memberships"
    )

    role = models.CharField(
        max_length=20,
        choices=Role.choices(),
        default=Role.VIEWER.value,  # safe, read-only
    )

    # Structured capability set, see permissions.py.
    # Copied from the role defaults at invite time and never re-derived.
    permissions = models.JSONField(default=dict, blank=True)

    # Removal flips this off; rows are never deleted
    is_active = models.BooleanField(default=True)

    invited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MembershipManager()

    class Meta:
        db_table = "company_users"
        constraints = [
            models.UniqueConstraint(
                fields=["user", "company"], name="uq_user_company_membership"
            ),
        ]
        indexes = [
            models.Index(fields=["company", "user"], name="membership_company_user_idx"),
        ]

    def __str__(self):
        return f"{self.user} @ {self.company} ({self.role})"

    def clean(self):
        try:
            self.role = Role.normalize(self.role).value
        except ValueError:
            raise ValidationError({"role": f"Unknown role {self.role!r}"})
        self.permissions = normalize_permissions(self.permissions)

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Memberships are never deleted; deactivate them instead.")
