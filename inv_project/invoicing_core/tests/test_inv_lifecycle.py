import datetime
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import transaction
from django.test import TestCase

from invoicing_core.exceptions import (DeletionForbidden, InvalidTransition,
                                       NotMember, PermissionDenied,
                                       ValidationFailed)
from invoicing_core.models import Invoice, InvoiceLine
from invoicing_core.models.invoice import (INV_STATUS_CHOICES, TRANSITIONS,
                                           allowed_transitions)
from invoicing_core.services import (approve_invoice, cancel_invoice,
                                     create_invoice, issue_invoice,
                                     reject_invoice, revert_invoice,
                                     submit_invoice, transition_invoice,
                                     update_draft_invoice)

from .helpers import make_client, make_company, make_member, make_user

STATUSES = [value for value, _ in INV_STATUS_CHOICES]
LEGAL = {(src, dst) for src, targets in TRANSITIONS.items() for dst in targets}


def test_transition_table():
    assert allowed_transitions("draft") == ("pending_approval", "cancelled")
    assert allowed_transitions("pending_approval") == ("approved", "draft")
    assert allowed_transitions("approved") == ("issued", "draft")
    assert allowed_transitions("issued") == ()
    assert allowed_transitions("cancelled") == ()
    assert allowed_transitions("paid") == ()


class InvoiceLifecycleTests(TestCase):
    def setUp(self):
        self.company = make_company()
        self.owner = make_user("owner")
        self.member = make_user("member")
        self.viewer = make_user("viewer")
        self.outsider = make_user("outsider")
        make_member(self.company, self.owner, role="owner")
        make_member(self.company, self.member, role="member")
        make_member(self.company, self.viewer, role="viewer")
        self.client = make_client(self.company, "Acme Corp", city="Berlin")

    def make_invoice(self, user=None, lines=None, **fields):
        """Create a draft through the service; `lines` are (description, hours, rate)."""
        lines = lines if lines is not None else [("Consulting", "10", "100.00")]
        outcome = create_invoice(
            user or self.member,
            self.company,
            self.client,
            lines=[{"description": d, "hours": h, "rate": r} for d, h, r in lines],
            period=datetime.date(2025, 8, 1),
            **fields,
        )
        self.assertTrue(outcome.ok, outcome.error)
        return outcome.value

    def test_create_invoice_snapshots_client_and_computes_totals(self):
        invoice = self.make_invoice(lines=[
            ("Consulting", "10", "100.00"),
            ("Travel", "1.5", "33.33"),
        ])
        self.assertEqual(invoice.invoice_number, "2025-08-ACME-001")
        self.assertEqual(invoice.status, "draft")
        self.assertEqual(invoice.client_company, "Acme Corp")
        self.assertEqual(invoice.client_city, "Berlin")
        self.assertEqual(invoice.lines.count(), 2)
        self.assertEqual(invoice.subtotal, Decimal("1050.00"))
        self.assertEqual(invoice.vat_amount, Decimal("199.50"))
        self.assertEqual(invoice.total, Decimal("1249.50"))

    def test_client_edits_do_not_change_existing_invoices(self):
        invoice = self.make_invoice()
        self.client.city = "Munich"
        self.client.save()
        invoice.refresh_from_db()
        self.assertEqual(invoice.client_city, "Berlin")

    def test_viewer_cannot_create(self):
        outcome = create_invoice(self.viewer, self.company, self.client)
        self.assertIsInstance(outcome.error, PermissionDenied)
        self.assertFalse(Invoice.objects.exists())

    def test_outsider_cannot_create(self):
        outcome = create_invoice(self.outsider, self.company, "Acme")
        self.assertIsInstance(outcome.error, NotMember)

    def test_invalid_line_is_a_validation_failure(self):
        outcome = create_invoice(
            self.member, self.company, self.client,
            lines=[{"description": "Oops", "hours": "-1", "rate": "10"}])
        self.assertIsInstance(outcome.error, ValidationFailed)
        self.assertFalse(Invoice.objects.exists())

    def test_full_happy_path(self):
        invoice = self.make_invoice()

        self.assertTrue(submit_invoice(invoice, self.member))
        self.assertEqual(invoice.status, "pending_approval")
        self.assertIsNotNone(invoice.submitted_at)

        self.assertTrue(approve_invoice(invoice, self.owner))
        self.assertEqual(invoice.status, "approved")
        self.assertEqual(invoice.approved_by, self.owner)
        self.assertIsNotNone(invoice.approved_at)

        self.assertTrue(issue_invoice(invoice, self.owner))
        self.assertEqual(invoice.status, "issued")
        self.assertIsNotNone(invoice.issued_at)

    def test_pending_to_issued_is_invalid(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)

        outcome = transition_invoice(invoice, "issued", self.owner)

        self.assertIsInstance(outcome.error, InvalidTransition)
        self.assertEqual(outcome.error.from_status, "pending_approval")
        self.assertEqual(outcome.error.to_status, "issued")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "pending_approval")

    def test_every_illegal_pair_is_rejected_and_leaves_row_unchanged(self):
        for src in STATUSES:
            for dst in STATUSES + ["paid"]:
                if (src, dst) in LEGAL:
                    continue
                invoice = Invoice.objects.create(
                    company=self.company, user=self.owner, status=src,
                    invoice_number=f"X-{src}-{dst}", client_company="Acme")
                with self.subTest(src=src, dst=dst):
                    with self.assertRaises(InvalidTransition):
                        invoice.transition_to(dst)
                    self.assertEqual(
                        Invoice.objects.get(pk=invoice.pk).status, src)

    def test_reject_clears_submission(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        self.assertTrue(reject_invoice(invoice, self.owner))
        self.assertEqual(invoice.status, "draft")
        self.assertIsNone(invoice.submitted_at)

    def test_revert_clears_approval(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        approve_invoice(invoice, self.owner)
        self.assertTrue(revert_invoice(invoice, self.owner))
        self.assertEqual(invoice.status, "draft")
        self.assertIsNone(invoice.approved_at)
        self.assertIsNone(invoice.approved_by)

    def test_reject_only_applies_to_pending(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        approve_invoice(invoice, self.owner)
        outcome = reject_invoice(invoice, self.owner)
        self.assertIsInstance(outcome.error, InvalidTransition)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "approved")

    def test_cancel_only_from_draft(self):
        invoice = self.make_invoice()
        self.assertTrue(cancel_invoice(invoice, self.member))
        self.assertIsNotNone(invoice.cancelled_at)
        self.assertFalse(Invoice.objects.counted().filter(pk=invoice.pk).exists())

        other = self.make_invoice()
        submit_invoice(other, self.member)
        approve_invoice(other, self.owner)
        self.assertIsInstance(cancel_invoice(other, self.owner).error, InvalidTransition)

    def test_member_cannot_approve(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        outcome = approve_invoice(invoice, self.member)
        self.assertIsInstance(outcome.error, PermissionDenied)
        self.assertEqual(outcome.error.action, "approve")
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, "pending_approval")

    def test_stale_copy_is_checked_against_stored_status(self):
        invoice = self.make_invoice()
        stale = Invoice.objects.get(pk=invoice.pk)
        submit_invoice(invoice, self.member)
        approve_invoice(invoice, self.owner)
        # the stale copy still says draft; the stored row is approved
        outcome = cancel_invoice(stale, self.owner)
        self.assertIsInstance(outcome.error, InvalidTransition)
        self.assertEqual(outcome.error.from_status, "approved")

    def test_soft_deleted_invoice_cannot_transition(self):
        invoice = self.make_invoice()
        invoice.soft_delete(user=self.member, reason="duplicate of another one")
        outcome = submit_invoice(invoice, self.member)
        self.assertIsInstance(outcome.error, InvalidTransition)

    def test_finalized_invoice_is_immutable(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        approve_invoice(invoice, self.owner)

        invoice.total = Decimal("1.00")
        with self.assertRaises(ValidationError):
            invoice.save()

        line = invoice.lines.first()
        line.rate = Decimal("1.00")
        with self.assertRaises(ValidationError):
            line.save()
        with self.assertRaises(ValidationError):
            InvoiceLine.objects.create(invoice=invoice, description="Extra", rate=1)

    def test_finalized_invoice_cannot_be_hard_deleted(self):
        invoice = self.make_invoice()
        submit_invoice(invoice, self.member)
        approve_invoice(invoice, self.owner)
        with self.assertRaises(DeletionForbidden):
            invoice.delete()
        with self.assertRaises(DeletionForbidden), transaction.atomic():
            Invoice.objects.filter(pk=invoice.pk).delete()
        self.assertTrue(Invoice.objects.filter(pk=invoice.pk).exists())

    def test_update_draft_invoice(self):
        invoice = self.make_invoice()
        outcome = update_draft_invoice(
            invoice, self.member,
            lines=[{"description": "Workshop", "hours": "2", "rate": "500"}],
            vat_rate=Decimal("7.00"),
        )
        self.assertTrue(outcome.ok, outcome.error)
        self.assertEqual(invoice.subtotal, Decimal("1000.00"))
        self.assertEqual(invoice.vat_amount, Decimal("70.00"))
        self.assertEqual(invoice.total, Decimal("1070.00"))
        self.assertEqual(invoice.invoice_number, "2025-08-ACME-001")

    def test_update_refuses_non_drafts_and_number_changes(self):
        invoice = self.make_invoice()
        outcome = update_draft_invoice(invoice, self.member, invoice_number="X")
        self.assertIsInstance(outcome.error, ValidationFailed)

        submit_invoice(invoice, self.member)
        outcome = update_draft_invoice(invoice, self.member, due_date=datetime.date(2025, 9, 1))
        self.assertIsInstance(outcome.error, ValidationFailed)
        self.assertEqual(outcome.error.field, "status")

    def test_exchange_rate_converts_total(self):
        invoice = self.make_invoice(currency="USD", exchange_rate=Decimal("0.9"))
        self.assertEqual(invoice.total_in_base_currency(), Decimal("1071.00"))

    def test_service_period_must_be_ordered(self):
        outcome = create_invoice(
            self.member, self.company, self.client,
            service_period_start=datetime.date(2025, 8, 31),
            service_period_end=datetime.date(2025, 8, 1),
        )
        self.assertIsInstance(outcome.error, ValidationFailed)


@pytest.mark.parametrize("src, dst", sorted(LEGAL))
def test_legal_transitions_are_listed(src, dst):
    assert dst in allowed_transitions(src)
