import json
import logging
from typing import Optional

from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from ..managers import get_current_actor
from ..models import AuditLog, AuditReview, Company, Invoice
from ..models.auditlog import classify_critical

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_LIMIT = 1000


def row_snapshot(instance) -> dict:
    """
    JSON-safe copy of a row's concrete columns, keyed by column attribute
    (foreign keys as `<name>_id`). Decimals and dates become strings.
    """
    data = {
        field.attname: field.value_from_object(instance)
        for field in instance._meta.concrete_fields
    }
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))


def _actor(user):
    user = user if user is not None else get_current_actor()
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return user if getattr(user, "pk", None) else None


def _company_of(instance) -> Optional[Company]:
    if isinstance(instance, Company):
        return instance if instance.pk else None
    return getattr(instance, "company", None)


def log_action(
    *,
    action: str,
    table_name: str,
    record_id,
    user=None,
    company: Optional[Company] = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog:
    """
    Central audit logger. Writes one append-only row; the actor defaults
    to whoever is bound to the current thread.
    """
    entry = AuditLog.objects.create(
        company=company,
        user=_actor(user),
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=old_values,
        new_values=new_values,
    )
    if entry.is_critical:
        logger.warning(
            "Critical audit entry %s: %s on %s(%s)",
            entry.pk, action, table_name, record_id,
        )
    return entry


def record(actor, action, table, record_id, old_values=None, new_values=None,
           company=None) -> AuditLog:
    return log_action(
        action=action,
        table_name=table,
        record_id=record_id,
        user=actor,
        company=company,
        old_values=old_values,
        new_values=new_values,
    )


def log_instance_change(action, instance, old_values=None, new_values=None, user=None):
    """Audit a model instance; table and company are read off the instance."""
    company = _company_of(instance)
    # a deleted company row cannot be referenced any more
    if action == "delete" and isinstance(instance, Company):
        company = None
    return log_action(
        action=action,
        table_name=instance._meta.db_table,
        record_id=instance.pk,
        user=user,
        company=company,
        old_values=old_values,
        new_values=new_values,
    )


def is_critical(entry) -> bool:
    """Classify an entry (saved or not) the same way the log does on write."""
    return classify_critical(
        entry.action, entry.table_name, entry.old_values, entry.new_values)


def list_audit_entries(filters=None, **kwargs):
    """
    Newest first. Accepts a filter mapping and/or keyword filters:
    company, user, action, table_name, record_id, critical_only,
    since, until, limit (default 1000).
    """
    criteria = dict(filters or {})
    criteria.update(kwargs)

    qs = AuditLog.objects.select_related("user", "company")
    if criteria.get("company") is not None:
        qs = qs.for_company(criteria["company"])
    if criteria.get("user") is not None:
        qs = qs.filter(user=criteria["user"])
    if criteria.get("action"):
        qs = qs.filter(action=criteria["action"])
    if criteria.get("table_name"):
        qs = qs.filter(table_name=criteria["table_name"])
    if criteria.get("record_id") is not None:
        qs = qs.filter(record_id=str(criteria["record_id"]))
    if criteria.get("critical_only"):
        qs = qs.filter(is_critical=True)
    if criteria.get("since") is not None:
        qs = qs.filter(created_at__gte=criteria["since"])
    if criteria.get("until") is not None:
        qs = qs.filter(created_at__lte=criteria["until"])

    limit = criteria.get("limit") or DEFAULT_AUDIT_LIMIT
    return qs.order_by("-created_at", "-id")[:limit]


def get_invoice_audit_entries(invoice: Invoice):
    return list_audit_entries(
        table_name=Invoice._meta.db_table, record_id=invoice.pk)


def flag_critical_entries() -> list:
    """Open a review for every critical entry that does not have one yet."""
    flagged = []
    pending = AuditLog.objects.filter(
        is_critical=True, review__isnull=True).order_by("created_at", "id")
    for entry in pending:
        # an overlapping sweep may have opened it already
        review, created = AuditReview.objects.get_or_create(entry=entry)
        if not created:
            continue
        flagged.append(review)
        logger.critical(
            "Review required: %s by %s on %s(%s)",
            entry.action, entry.user or "system",
            entry.table_name, entry.record_id,
        )
    return flagged


def acknowledge_review(review: AuditReview, user, notes="") -> AuditReview:
    if not review.is_open:
        return review
    review.reviewed_at = timezone.now()
    review.reviewed_by = user
    review.notes = notes
    review.save(update_fields=["reviewed_at", "reviewed_by", "notes"])
    logger.info("Audit review %s acknowledged by %s", review.pk, user)
    return review
