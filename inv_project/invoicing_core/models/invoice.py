from decimal import ROUND_HALF_UP, Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone
from ..exceptions import DeletionForbidden, InvalidTransition
from ..managers import InvoiceManager
from .client import Client
from .membership import Company

CENT = Decimal("0.01")

INV_STATUS_CHOICES = [
    ("draft", "Draft"),
    ("pending_approval", "Pending approval"),
    ("approved", "Approved"),
    ("issued", "Issued"),
    ("cancelled", "Cancelled"),
]
""" Workflow:
    draft → pending_approval → approved → issued
    pending_approval → draft   (rejected)
    approved → draft           (reverted before issuing)
    draft → cancelled          (kept in history, excluded from active counts) """

# Current state vs. allowed next states
TRANSITIONS = {
    "draft": ("pending_approval", "cancelled"),
    "pending_approval": ("approved", "draft"),
    "approved": ("issued", "draft"),
    "issued": (),
    "cancelled": (),
}

# Finalized: never deleted, number never reassigned
LOCKED_STATUSES = ("approved", "issued")

# Fields that cannot change once an invoice is finalized
IMMUTABLE_FIELDS = (
    "invoice_number",
    "user_id",
    "company_id",
    "subtotal",
    "vat_amount",
    "total",
    "currency",
)

LANGUAGE_CHOICES = [("en", "English"), ("de", "Deutsch")]


def allowed_transitions(status):
    return TRANSITIONS.get(status, ())


def money(value):
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


class Invoice(models.Model):

    # Invoice belongs to one company and one owning user
    company = models.ForeignKey(
        Company, on_delete=models.PROTECT, related_name="invoices")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    # Informational link to the client master record.
    # What prints on the invoice is the snapshot below.
    client = models.ForeignKey(
        Client,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="invoices",
    )

    # e.g. "2025-08-ACME-001"
    invoice_number = models.CharField(max_length=64)

    status = models.CharField(
        max_length=20, choices=INV_STATUS_CHOICES, default="draft"
    )

    # Client snapshot, copied at creation time
    client_company = models.CharField(max_length=200)
    client_address = models.CharField(max_length=255, blank=True)
    client_city = models.CharField(max_length=120, blank=True)
    client_postal_code = models.CharField(max_length=20, blank=True)
    client_country = models.CharField(max_length=120, blank=True)
    client_tax_id = models.CharField(max_length=64, blank=True)
    client_company_registration = models.CharField(max_length=64, blank=True)

    invoice_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField(null=True, blank=True)
    service_period_start = models.DateField(null=True, blank=True)
    service_period_end = models.DateField(null=True, blank=True)
    language = models.CharField(
        max_length=2, choices=LANGUAGE_CHOICES, default="en")

    currency = models.CharField(max_length=3, default="EUR")
    # Rate to the company's default currency; plain multiplication only
    exchange_rate = models.DecimalField(
        max_digits=12, decimal_places=6, null=True, blank=True)

    vat_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("19.00"))
    subtotal = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    vat_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Lifecycle timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    issued_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Soft delete marker; NULL means the invoice is active
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    deletion_reason = models.TextField(blank=True)

    objects = InvoiceManager()

    class Meta:
        db_table = "invoices"
        indexes = [
            models.Index(fields=["company", "status"], name="invoice_company_status_idx"),
            models.Index(fields=["user", "invoice_number"], name="invoice_owner_number_idx"),
        ]
        constraints = [
            # The authoritative uniqueness guarantee: an owner never has two
            # active invoices with the same number. Soft-deleted rows are
            # outside the index, so their numbers can be reused.
            models.UniqueConstraint(
                fields=["invoice_number", "user"],
                condition=models.Q(deleted_at__isnull=True),
                name="uq_active_invoice_number_per_owner",
            ),
        ]

    def __str__(self):
        return f"Inv {self.invoice_number or self.pk}"

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def is_locked(self):
        return self.status in LOCKED_STATUSES

    def snapshot_client(self, client):
        """Copy the client's current details onto the invoice."""
        self.client = client if isinstance(client, Client) else None
        self.client_company = client.name
        self.client_address = getattr(client, "address", "") or ""
        self.client_city = getattr(client, "city", "") or ""
        self.client_postal_code = getattr(client, "postal_code", "") or ""
        self.client_country = getattr(client, "country", "") or ""
        self.client_tax_id = getattr(client, "tax_id", "") or ""
        self.client_company_registration = (
            getattr(client, "company_registration", "") or "")

    def recalc_totals(self):
        """subtotal = Σ line amounts, VAT on top, rounded to cents."""
        if not getattr(self, "pk", None):
            lines = []
        else:
            lines = self.lines.all()
        subtotal = sum((line.amount for line in lines), Decimal("0.00"))
        self.subtotal = money(subtotal)
        self.vat_amount = money(self.subtotal * self.vat_rate / Decimal("100"))
        self.total = self.subtotal + self.vat_amount

    def total_in_base_currency(self):
        if self.exchange_rate is None:
            return self.total
        return money(self.total * self.exchange_rate)

    def clean(self):
        if (self.service_period_start and self.service_period_end
                and self.service_period_start > self.service_period_end):
            raise ValidationError("Service period cannot end before it starts.")

        if self.pk:
            orig = Invoice.objects.filter(pk=self.pk).first()
            if orig is not None and orig.status in LOCKED_STATUSES:
                changed_fields = [
                    field for field in IMMUTABLE_FIELDS
                    if getattr(orig, field) != getattr(self, field)
                ]
                if changed_fields:
                    raise ValidationError(
                        f"Cannot modify {changed_fields} on an {orig.status} invoice."
                    )

    def save(self, *args, **kwargs):
        if self.deleted_at is not None and self.pk:
            stored_status = (
                Invoice.objects.filter(pk=self.pk)
                .values_list("status", flat=True).first()
            )
            if stored_status is not None and stored_status != "draft":
                raise DeletionForbidden(stored_status)
        # Number uniqueness is left to the database constraint so that
        # concurrent writers get an IntegrityError, not a racy pre-check.
        self.full_clean(validate_unique=False, validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.status in LOCKED_STATUSES:
            raise DeletionForbidden(self.status)
        raise DeletionForbidden(
            self.status,
            "Invoices are never hard-deleted; use a soft delete on drafts.",
        )

    def soft_delete(self, user=None, reason=""):
        """
        Mark a draft invoice deleted. Returns False (no write) if it already
        was, so repeating the call is a no-op.
        """
        if self.deleted_at is not None:
            return False
        if self.status != "draft":
            raise DeletionForbidden(self.status)
        self.deleted_at = timezone.now()
        self.deleted_by = user
        self.deletion_reason = reason
        self.save(update_fields=[
            "deleted_at", "deleted_by", "deletion_reason", "updated_at"])
        return True

    def transition_to(self, new_status, user=None):
        if self.deleted_at is not None:
            raise InvalidTransition(self.status, new_status)
        # Look up what states are allowed from current self.status
        if new_status not in allowed_transitions(self.status):
            raise InvalidTransition(self.status, new_status)

        old_status = self.status
        now = timezone.now()
        changed = ["status", "updated_at"]

        if new_status == "pending_approval":
            self.submitted_at = now
            changed.append("submitted_at")
        elif new_status == "approved":
            self.approved_at = now
            self.approved_by = user
            changed += ["approved_at", "approved_by"]
        elif new_status == "issued":
            self.issued_at = now
            changed.append("issued_at")
        elif new_status == "cancelled":
            self.cancelled_at = now
            changed.append("cancelled_at")
        elif new_status == "draft":
            # rejected or reverted: clear pending/approval markers
            self.submitted_at = None
            changed.append("submitted_at")
            if old_status == "approved":
                self.approved_at = None
                self.approved_by = None
                changed += ["approved_at", "approved_by"]

        self.status = new_status
        self.save(update_fields=changed)
        return self


class InvoiceLine(models.Model):
    """One service on the invoice: hours × rate = amount."""

    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    description = models.TextField()
    hours = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("1"))
    rate = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"))
    amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        db_table = "invoice_lines"
        ordering = ["position", "id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(hours__gte=0) & models.Q(rate__gte=0),
                name="invl_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.invoice.invoice_number}: {self.description} ({self.amount})"

    def clean(self):
        if self.hours is not None and self.hours < 0:
            raise ValidationError("Hours must be >= 0")
        if self.rate is not None and self.rate < 0:
            raise ValidationError("Rate must be >= 0")
        invoice_id = getattr(self, "invoice_id", None)
        if invoice_id:
            parent = Invoice.objects.only("status", "deleted_at").get(pk=invoice_id)
            if parent.status in LOCKED_STATUSES or parent.deleted_at is not None:
                raise ValidationError(
                    f"Cannot change lines of an {parent.status} invoice.")

    def save(self, *args, **kwargs):
        self.amount = money((self.hours or Decimal("0")) * (self.rate or Decimal("0")))
        self.full_clean()
        return super().save(*args, **kwargs)
