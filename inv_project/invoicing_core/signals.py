import logging

from django.db.models.signals import (post_delete, post_save, pre_delete,
                                      pre_save)
from django.dispatch import receiver

from .exceptions import DeletionForbidden
from .models import Company, CompanyMembership, Invoice
from .services.audit_helper import log_instance_change, row_snapshot

logger = logging.getLogger(__name__)

# Every mutation of these tables lands in the audit log
AUDITED_MODELS = (Invoice, CompanyMembership, Company)

# Columns that change on every write and say nothing on their own
NOISE_FIELDS = ("updated_at",)


def _without_noise(values):
    return {k: v for k, v in (values or {}).items() if k not in NOISE_FIELDS}


"""Remember the stored row so post_save can record what it was."""


def snapshot_before_save(sender, instance, raw=False, **kwargs):
    instance._audit_old_values = None
    if raw or instance.pk is None:
        return
    previous = sender._base_manager.filter(pk=instance.pk).first()
    if previous is not None:
        instance._audit_old_values = row_snapshot(previous)


def audit_after_save(sender, instance, created, raw=False, **kwargs):
    if raw:
        return
    new_values = row_snapshot(instance)
    old_values = getattr(instance, "_audit_old_values", None)
    if created or old_values is None:
        log_instance_change("insert", instance, new_values=new_values)
        return
    # a save that changed nothing but the timestamp is not a mutation
    if _without_noise(old_values) == _without_noise(new_values):
        return
    log_instance_change(
        "update", instance, old_values=old_values, new_values=new_values)


def audit_after_delete(sender, instance, **kwargs):
    log_instance_change("delete", instance, old_values=row_snapshot(instance))


for model in AUDITED_MODELS:
    uid = model._meta.label_lower
    pre_save.connect(snapshot_before_save, sender=model, dispatch_uid=f"audit-pre-{uid}")
    post_save.connect(audit_after_save, sender=model, dispatch_uid=f"audit-post-{uid}")
    post_delete.connect(audit_after_delete, sender=model, dispatch_uid=f"audit-del-{uid}")


""" Block every hard delete of an invoice, whatever the delete path
(querysets and cascades skip Invoice.delete()). Drafts go through the
confirmed soft delete."""


@receiver(pre_delete, sender=Invoice)
def prevent_delete_invoice(sender, instance, **kwargs):
    logger.warning("Blocked hard delete of %s invoice %s",
                   instance.status, instance.pk)
    if instance.status != "draft":
        raise DeletionForbidden(instance.status)
    raise DeletionForbidden(
        instance.status,
        "Invoices are never hard-deleted; use a soft delete on drafts.",
    )


"""Protected companies are only ever deactivated."""


@receiver(pre_delete, sender=Company)
def prevent_delete_protected_company(sender, instance, **kwargs):
    if not instance.can_be_deleted:
        raise DeletionForbidden(
            "protected", f"Company {instance} is protected; deactivate it instead.")
