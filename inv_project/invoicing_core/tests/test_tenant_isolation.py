import json

import pytest
from django.contrib.auth.models import AnonymousUser
from django.http import Http404, HttpResponse
from django.test import RequestFactory, TestCase, override_settings

from invoicing_core.managers import get_current_actor
from invoicing_core.middleware import CurrentCompanyMiddleware
from invoicing_core.models import AuditLog, Invoice
from invoicing_core.views import (audit_log, invoice_delete, invoice_list,
                                  invoice_transition, next_invoice_number)

from .helpers import (ROOT_EMAIL, make_client, make_company, make_invoice,
                      make_member, make_user)


def call(view, request, user, *args):
    request.user = user
    response = view(request, *args)
    return response.status_code, json.loads(response.content)


class TenantIsolationManagerTests(TestCase):
    def setUp(self):
        self.company_a = make_company("Company A")
        self.company_b = make_company("Company B")
        self.alice = make_user("alice")
        make_member(self.company_a, self.alice)
        self.inv_a = make_invoice(self.company_a, self.alice, "A-1")
        self.inv_b = make_invoice(self.company_b, self.alice, "B-1")

    def test_for_company_returns_only_that_company_objects(self):
        self.assertListEqual(
            list(
                Invoice.objects.for_company(self.company_a)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_a.pk],
        )

    def test_get_other_company_object_raises_does_not_exist(self):
        with self.assertRaises(Invoice.DoesNotExist):
            Invoice.objects.for_company(self.company_a).get(pk=self.inv_b.pk)

    def test_visible_to_follows_active_memberships(self):
        self.assertEqual(
            list(Invoice.objects.visible_to(self.alice)), [self.inv_a])
        self.assertFalse(Invoice.objects.visible_to(AnonymousUser()).exists())
        self.company_a.deactivate()
        self.assertFalse(Invoice.objects.visible_to(self.alice).exists())

    @override_settings(ROOT_ADMIN_EMAILS=frozenset({ROOT_EMAIL}))
    def test_root_admin_sees_every_tenant(self):
        root = make_user("root", email=ROOT_EMAIL)
        self.assertEqual(Invoice.objects.visible_to(root).count(), 2)


class InvoiceViewTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.company = make_company("Company A")
        self.other = make_company("Company B")
        self.owner = make_user("owner")
        self.member = make_user("member")
        self.viewer = make_user("viewer")
        self.outsider = make_user("outsider")
        make_member(self.company, self.owner, role="owner")
        make_member(self.company, self.member, role="member")
        make_member(self.company, self.viewer, role="viewer")
        make_member(self.other, self.outsider, role="owner")
        make_client(self.company, "Acme Corp")
        self.invoice = make_invoice(self.company, self.member, "2025-08-ACME-001")
        self.foreign = make_invoice(self.other, self.outsider, "2025-08-ACME-001")

    def test_list_returns_only_tenant_data(self):
        status, data = call(
            invoice_list, self.factory.get("/"), self.viewer, self.company.pk)
        self.assertEqual(status, 200)
        self.assertEqual([i["id"] for i in data["invoices"]], [self.invoice.pk])

    def test_list_hides_soft_deleted(self):
        self.invoice.soft_delete(reason="Not needed after all")
        status, data = call(
            invoice_list, self.factory.get("/"), self.viewer, self.company.pk)
        self.assertEqual(data["invoices"], [])

    def test_non_member_gets_no_access(self):
        status, data = call(
            invoice_list, self.factory.get("/"), self.outsider, self.company.pk)
        self.assertEqual(status, 403)
        self.assertEqual(data["error"], "no_access")

    def test_anonymous_gets_no_access(self):
        status, data = call(
            invoice_list, self.factory.get("/"), AnonymousUser(), self.company.pk)
        self.assertEqual(status, 403)

    def test_transition(self):
        request = self.factory.post("/", {"status": "pending_approval"})
        status, data = call(
            invoice_transition, request, self.member, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 200)
        self.assertEqual(data["invoice"]["status"], "pending_approval")

    def test_invalid_transition_is_a_conflict(self):
        request = self.factory.post("/", {"status": "issued"})
        status, data = call(
            invoice_transition, request, self.owner, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 409)
        self.assertEqual(data["error"], "invalid_transition")

    def test_viewer_cannot_transition(self):
        request = self.factory.post("/", {"status": "pending_approval"})
        status, data = call(
            invoice_transition, request, self.viewer, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 403)
        self.assertEqual(data["error"], "permission_denied")

    def test_invoice_of_another_company_is_not_found(self):
        request = self.factory.post("/", {"status": "pending_approval"})
        request.user = self.owner
        with self.assertRaises(Http404):
            invoice_transition(request, self.company.pk, self.foreign.pk)

    def test_next_number(self):
        request = self.factory.get("/", {"client": "Acme Corp", "period": "2025-08"})
        status, data = call(next_invoice_number, request, self.member, self.company.pk)
        self.assertEqual(status, 200)
        self.assertEqual(data["invoice_number"], "2025-08-ACME-002")

    def test_next_number_bad_period(self):
        request = self.factory.get("/", {"client": "Acme Corp", "period": "soon"})
        status, data = call(next_invoice_number, request, self.member, self.company.pk)
        self.assertEqual(status, 400)
        self.assertEqual(data["field"], "period")

    def test_delete(self):
        request = self.factory.post(
            "/", {"confirmation": "DELETE", "reason": "Entered twice, removing."})
        status, data = call(
            invoice_delete, request, self.owner, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 200)
        self.assertTrue(data["invoice"]["deleted"])
        self.assertFalse(data["already_deleted"])

    def test_delete_issued_is_a_conflict(self):
        Invoice.objects.filter(pk=self.invoice.pk).update(status="issued")
        request = self.factory.post(
            "/", {"confirmation": "DELETE", "reason": "x" * 50})
        status, data = call(
            invoice_delete, request, self.owner, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 409)
        self.assertEqual(data["error"], "deletion_forbidden")

    def test_delete_with_short_reason(self):
        request = self.factory.post("/", {"confirmation": "DELETE", "reason": "nope"})
        status, data = call(
            invoice_delete, request, self.owner, self.company.pk, self.invoice.pk)
        self.assertEqual(status, 400)
        self.assertEqual(data["field"], "reason")

    def test_audit_log_requires_sensitive_access(self):
        status, _ = call(audit_log, self.factory.get("/"), self.member, self.company.pk)
        self.assertEqual(status, 403)

        status, data = call(
            audit_log, self.factory.get("/", {"table_name": "invoices"}),
            self.owner, self.company.pk)
        self.assertEqual(status, 200)
        self.assertEqual(
            {e["record_id"] for e in data["entries"]}, {str(self.invoice.pk)})

    def test_get_only_views_refuse_post(self):
        request = self.factory.post("/")
        request.user = self.owner
        self.assertEqual(invoice_list(request, self.company.pk).status_code, 405)


@pytest.mark.django_db
def test_middleware_binds_company_and_actor(rf):
    company = make_company("Company A")
    user = make_user("alice", default_company=company)
    make_member(company, user)

    seen = {}

    def view(request):
        seen["company"] = request.company
        seen["actor"] = get_current_actor()
        make_invoice(company, user, "A-1")
        return HttpResponse("ok")

    request = rf.get("/")
    request.user = user
    request.session = {}
    CurrentCompanyMiddleware(view)(request)

    assert seen == {"company": company, "actor": user}
    assert get_current_actor() is None
    assert AuditLog.objects.get(table_name="invoices").user == user


@pytest.mark.django_db
def test_middleware_ignores_company_without_membership(rf):
    company = make_company("Company A")
    other = make_company("Company B")
    user = make_user("alice", default_company=company)
    make_member(company, user)

    request = rf.get("/")
    request.user = user
    request.session = {"active_company_id": other.pk}
    CurrentCompanyMiddleware(lambda r: None).process_request(request)

    assert request.company is None
    assert not request.membership
