from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .membership import Company

AUDIT_ACTION_CHOICES = [
    ("insert", "Insert"),
    ("update", "Update"),
    ("delete", "Delete"),
]


def classify_critical(action, table_name, old_values, new_values):
    """
    A hard delete is always critical. An update is critical when it
    soft-deletes a row whose prior status was anything but draft.
    """
    if action == "delete":
        return True
    if action != "update":
        return False
    new_values = new_values or {}
    old_values = old_values or {}
    if new_values.get("deleted_at") is None:
        return False
    return old_values.get("status") != "draft"


# ---------- Audit / Event log ----------
class AuditLog(models.Model):
    """Append-only record of every mutation to an audited table."""

    # No database-level FKs: entries outlive the rows they point at and
    # are never rewritten when those rows go away.
    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="+",
    )
    # Who performed the action (NULL for scripts and background jobs)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="+",
    )
    action = models.CharField(max_length=10, choices=AUDIT_ACTION_CHOICES)
    # Table that was touched, e.g. "invoices", "company_users"
    table_name = models.CharField(max_length=100)
    record_id = models.CharField(max_length=100)
    # Row snapshots before and after the mutation
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    # Computed once when the row is written
    is_critical = models.BooleanField(default=False, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        db_table = "audit_logs"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["company", "user"], name="audit_company_user_idx"),
            models.Index(fields=["company", "created_at"], name="audit_company_created_idx"),
            models.Index(fields=["table_name", "record_id"], name="audit_table_record_idx"),
            models.Index(fields=["is_critical", "created_at"], name="audit_critical_created_idx"),
        ]

    def __str__(self):
        time = self.created_at
        flag = " CRITICAL" if self.is_critical else ""
        return (
            f"[{time:%Y-%m-%d %H:%M}] {self.user} {self.action} "
            f"{self.table_name}({self.record_id}){flag}"
        )

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError("Audit log entries are append-only.")
        self.is_critical = classify_critical(
            self.action, self.table_name, self.old_values, self.new_values)
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Audit log entries cannot be deleted.")


class AuditReview(models.Model):
    """
    Operator review queue for critical audit entries.
    Kept apart from AuditLog so the log itself never changes.
    """
    entry = models.OneToOneField(
        AuditLog, on_delete=models.PROTECT, related_name="review")
    flagged_at = models.DateTimeField(auto_now_add=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    notes = models.TextField(blank=True)

    class Meta:
        db_table = "audit_reviews"
        ordering = ["-flagged_at"]

    def __str__(self):
        state = "reviewed" if self.reviewed_at else "open"
        return f"Review of {self.entry} ({state})"

    @property
    def is_open(self):
        return self.reviewed_at is None
