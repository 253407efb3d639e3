"""
Invoice numbers look like ``2025-08-ACME-001``: the period, a four-letter
client abbreviation, and a per-owner running suffix.

Allocation only *proposes* a number. The partial unique index on
(invoice_number, user) for active invoices is what guarantees uniqueness;
``save_with_unique_number`` turns a lost race into a retry.
"""
import logging
import re
from datetime import date, datetime

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from ..exceptions import DuplicateInvoiceNumber, ValidationFailed
from ..models import Invoice

logger = logging.getLogger(__name__)

NUMBER_RE = re.compile(r"^(\d{4})-(\d{2})-([A-Z]{4})-(\d{3,})$")
LEGAL_SUFFIX_RE = re.compile(
    r"\b(Ltd|LLC|Inc|Corp|GmbH|AG|SA|BV|Pty|Co\.?)\b", re.IGNORECASE)
NON_LETTERS_RE = re.compile(r"[^A-Za-z\s]")
UNIQUE_CONSTRAINT = "uq_active_invoice_number_per_owner"


def client_abbreviation(name) -> str:
    """
    "Acme Corp" -> "ACME", "Blue Sky Media" -> "BSML", "HP" -> "HPXX".
    Legal suffixes and non-letters are ignored; nothing left -> "UNKN".
    """
    cleaned = NON_LETTERS_RE.sub("", LEGAL_SUFFIX_RE.sub("", name or ""))
    words = cleaned.split()
    if not words:
        return "UNKN"

    if len(words) == 1:
        abbr = words[0][:4]
    else:
        abbr = "".join(word[0] for word in words)[:4]
        if len(abbr) < 4:
            # fill up from the rest of the first word
            abbr += words[0][1:1 + 4 - len(abbr)]
    return abbr.upper().ljust(4, "X")


def parse_period(period=None) -> date:
    """Accept a date, a datetime, "YYYY-MM" or "YYYY-MM-DD"; default today."""
    if period is None or period == "":
        return timezone.localdate()
    if isinstance(period, datetime):
        return period.date()
    if isinstance(period, date):
        return period
    try:
        parts = [int(p) for p in str(period).split("-")]
        return date(parts[0], parts[1], parts[2] if len(parts) > 2 else 1)
    except (ValueError, IndexError):
        raise ValidationFailed("period", f"Invalid period {period!r}; expected YYYY-MM")


def _client_name(client):
    if isinstance(client, str):
        return client
    return getattr(client, "name", None) or getattr(client, "client_company", "")


def build_prefix(period, client) -> str:
    period = parse_period(period)
    return f"{period:%Y-%m}-{client_abbreviation(_client_name(client))}"


def validate_invoice_number_format(number) -> bool:
    return bool(NUMBER_RE.match(number or ""))


def allocate_invoice_number(owner, client, period=None) -> str:
    """
    Next free number for this owner, client abbreviation and month.
    Soft-deleted invoices do not count, so their numbers come back.
    """
    prefix = build_prefix(period, client)
    suffix_re = re.compile(rf"^{re.escape(prefix)}-(\d{{3,}})$")

    numbers = (
        Invoice.objects.active()
        .owned_by(owner)
        .filter(invoice_number__startswith=f"{prefix}-")
        .values_list("invoice_number", flat=True)
    )
    highest = 0
    for number in numbers:
        match = suffix_re.match(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1:03d}"


def is_invoice_number_taken(owner, number, exclude=None) -> bool:
    qs = Invoice.objects.active().owned_by(owner).filter(invoice_number=number)
    if exclude is not None:
        qs = qs.exclude(pk=exclude.pk)
    return qs.exists()


def _is_number_conflict(exc) -> bool:
    text = str(exc)
    # postgres names the index, sqlite lists the columns
    return UNIQUE_CONSTRAINT in text or "invoice_number" in text


def save_with_number(invoice, number) -> Invoice:
    """Insert with a caller-chosen number; no retry."""
    invoice.invoice_number = number
    try:
        with transaction.atomic():
            invoice.save()
    except IntegrityError as exc:
        if not _is_number_conflict(exc):
            raise
        raise DuplicateInvoiceNumber(number) from exc
    return invoice


def save_with_unique_number(invoice, client, period=None, max_attempts=None) -> Invoice:
    """
    Allocate and insert in a savepoint; when a concurrent writer took the
    number first, allocate again. Raises DuplicateInvoiceNumber once
    `max_attempts` allocations have all collided.
    """
    attempts = max_attempts or settings.INVOICE_NUMBER_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        number = allocate_invoice_number(invoice.user, client, period)
        try:
            return save_with_number(invoice, number)
        except DuplicateInvoiceNumber:
            logger.warning(
                "Invoice number %s taken for user %s (attempt %s/%s)",
                number, invoice.user_id, attempt, attempts,
            )
            # the failed insert never got a primary key
            invoice.pk = None
    raise DuplicateInvoiceNumber(invoice.invoice_number, attempts)
