import logging

from django.conf import settings
from django.db import transaction

from ..exceptions import DeletionForbidden, ValidationFailed
from ..managers import acting_as
from ..models import Invoice
from ..models.invoice import LOCKED_STATUSES
from ..permissions import Resource
from .membership import check_access
from .results import DeletionOutcome

logger = logging.getLogger(__name__)


def confirmation_phrase(language="en") -> str:
    phrases = settings.DELETION_CONFIRMATION_PHRASES
    return phrases.get(language) or phrases["en"]


def _reject(invoice, error) -> DeletionOutcome:
    logger.info("Deletion of invoice %s rejected: %s", invoice.pk, error.message)
    return DeletionOutcome.failure(error)


def request_deletion(invoice, confirmation, reason, user=None, language="en") -> DeletionOutcome:
    """
    Soft-delete a draft invoice after the user typed the confirmation phrase
    and gave a reason. Approved and issued invoices are refused outright,
    whatever was typed. Repeating the request on a deleted draft is a no-op.
    """
    if invoice.status in LOCKED_STATUSES:
        return _reject(invoice, DeletionForbidden(invoice.status))

    if user is not None:
        access = check_access(user, invoice.company, Resource.INVOICES, "delete")
        if not access:
            return DeletionOutcome.failure(access.error)

    if invoice.is_deleted:
        return DeletionOutcome.success(invoice, already_deleted=True)

    if invoice.status != "draft":
        return _reject(invoice, DeletionForbidden(invoice.status))

    if (confirmation or "") != confirmation_phrase(language):
        return _reject(invoice, ValidationFailed(
            "confirmation",
            f"Type {confirmation_phrase(language)} to confirm the deletion"))

    reason = (reason or "").strip()
    min_length = settings.DELETION_REASON_MIN_LENGTH
    if len(reason) < min_length:
        return _reject(invoice, ValidationFailed(
            "reason", f"Reason must be at least {min_length} characters"))

    with transaction.atomic():
        locked = Invoice.objects.select_for_update().get(
            pk=invoice.pk, company_id=invoice.company_id)
        # the stored row decides; the caller's copy may be stale
        if locked.status != "draft":
            return _reject(invoice, DeletionForbidden(locked.status))
        with acting_as(user):
            written = locked.soft_delete(user=user, reason=reason)

    invoice.refresh_from_db()
    if not written:
        return DeletionOutcome.success(invoice, already_deleted=True)
    logger.info("Invoice %s deleted by %s", invoice.invoice_number, user or "system")
    return DeletionOutcome.success(invoice)
