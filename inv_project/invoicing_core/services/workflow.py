import logging
from decimal import Decimal
from types import SimpleNamespace

from django.core.exceptions import ValidationError
from django.db import transaction

from ..exceptions import (DuplicateInvoiceNumber, InvalidTransition,
                          ValidationFailed)
from ..managers import acting_as
from ..models import Client, Invoice, InvoiceLine
from ..permissions import Resource
from .membership import check_access
from .numbering import save_with_unique_number
from .results import Outcome

logger = logging.getLogger(__name__)

# Fields a draft may change after creation
EDITABLE_FIELDS = (
    "client_company",
    "client_address",
    "client_city",
    "client_postal_code",
    "client_country",
    "client_tax_id",
    "client_company_registration",
    "invoice_date",
    "due_date",
    "service_period_start",
    "service_period_end",
    "language",
    "currency",
    "exchange_rate",
    "vat_rate",
)


def required_action(from_status, to_status) -> str:
    """Permission flag (on the invoices resource) a status change needs."""
    if to_status == "issued":
        return "issue"
    if to_status == "approved":
        return "approve"
    # reject and revert are approver decisions too
    if to_status == "draft" and from_status in ("pending_approval", "approved"):
        return "approve"
    return "update"


def _validation_failed(exc: ValidationError) -> ValidationFailed:
    if isinstance(exc, ValidationFailed):
        return exc
    field = next(iter(getattr(exc, "error_dict", {}) or {}), "invoice")
    return ValidationFailed(field, "; ".join(exc.messages))


def _write_lines(invoice, lines):
    invoice.lines.all().delete()
    for position, line in enumerate(lines or (), start=1):
        InvoiceLine.objects.create(
            invoice=invoice,
            position=line.get("position", position),
            description=line["description"],
            hours=Decimal(str(line.get("hours", 1))),
            rate=Decimal(str(line.get("rate", 0))),
        )
    invoice.recalc_totals()
    invoice.save(update_fields=["subtotal", "vat_amount", "total", "updated_at"])


# ----------------------------------------------
# Invoice creation and editing
# ----------------------------------------------
def create_invoice(user, company, client, lines=(), period=None, **fields) -> Outcome:
    """
    Create a draft invoice owned by `user`: snapshot the client, allocate
    a number (retrying on collisions), add lines and compute totals.
    `client` is a Client of the same company, or a plain name.
    """
    access = check_access(user, company, Resource.INVOICES, "create")
    if not access:
        return access

    if isinstance(client, Client) and client.company_id != company.pk:
        return Outcome.failure(
            ValidationFailed("client", "Client belongs to another company"))
    if isinstance(client, str):
        client = SimpleNamespace(name=client)

    invoice = Invoice(company=company, user=user, **fields)
    invoice.snapshot_client(client)
    try:
        with transaction.atomic(), acting_as(user):
            save_with_unique_number(
                invoice, client, period or invoice.invoice_date)
            _write_lines(invoice, lines)
    except DuplicateInvoiceNumber as exc:
        logger.error("Could not allocate an invoice number for %s: %s", user, exc)
        return Outcome.failure(exc)
    except (KeyError, ArithmeticError) as exc:
        return Outcome.failure(ValidationFailed("lines", f"Invalid line: {exc}"))
    except ValidationError as exc:
        return Outcome.failure(_validation_failed(exc))

    logger.info("Invoice %s created by %s", invoice.invoice_number, user)
    return Outcome.success(invoice)


def update_draft_invoice(invoice, user, lines=None, **changes) -> Outcome:
    """Edit a draft; the number and owner never change here."""
    access = check_access(user, invoice.company, Resource.INVOICES, "update")
    if not access:
        return access

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        return Outcome.failure(
            ValidationFailed(sorted(unknown)[0], "Field cannot be edited"))

    try:
        with transaction.atomic(), acting_as(user):
            locked = Invoice.objects.select_for_update().get(
                pk=invoice.pk, company_id=invoice.company_id)
            if locked.status != "draft" or locked.is_deleted:
                return Outcome.failure(ValidationFailed(
                    "status", f"Only draft invoices can be edited, not {locked.status}"))
            for name, value in changes.items():
                setattr(locked, name, value)
            locked.recalc_totals()
            locked.save()
            if lines is not None:
                _write_lines(locked, lines)
    except (KeyError, ArithmeticError) as exc:
        return Outcome.failure(ValidationFailed("lines", f"Invalid line: {exc}"))
    except ValidationError as exc:
        return Outcome.failure(_validation_failed(exc))

    invoice.refresh_from_db()
    return Outcome.success(invoice)


# ----------------------------------------------
# Invoice status workflows
# ----------------------------------------------
def transition_invoice(invoice, target_status, user=None) -> Outcome:
    """
    Move an invoice along the status graph. The row is locked and the
    transition re-checked against the stored status, so two concurrent
    approvers cannot both win. `user=None` means a trusted internal caller.
    """
    try:
        with transaction.atomic():
            locked = Invoice.objects.select_for_update().get(
                pk=invoice.pk, company_id=invoice.company_id)
            if user is not None:
                access = check_access(
                    user, locked.company, Resource.INVOICES,
                    required_action(locked.status, target_status))
                if not access:
                    return access
            with acting_as(user):
                locked.transition_to(target_status, user=user)
    except InvalidTransition as exc:
        logger.info("Rejected transition of invoice %s: %s", invoice.pk, exc.message)
        return Outcome.failure(exc)

    invoice.refresh_from_db()
    logger.info("Invoice %s is now %s", invoice.invoice_number, invoice.status)
    return Outcome.success(invoice)


def submit_invoice(invoice, user=None) -> Outcome:
    return transition_invoice(invoice, "pending_approval", user)


def approve_invoice(invoice, user=None) -> Outcome:
    return transition_invoice(invoice, "approved", user)


def reject_invoice(invoice, user=None) -> Outcome:
    if invoice.status != "pending_approval":
        return Outcome.failure(InvalidTransition(invoice.status, "draft"))
    return transition_invoice(invoice, "draft", user)


def issue_invoice(invoice, user=None) -> Outcome:
    return transition_invoice(invoice, "issued", user)


def revert_invoice(invoice, user=None) -> Outcome:
    if invoice.status != "approved":
        return Outcome.failure(InvalidTransition(invoice.status, "draft"))
    return transition_invoice(invoice, "draft", user)


def cancel_invoice(invoice, user=None) -> Outcome:
    return transition_invoice(invoice, "cancelled", user)
