from decimal import Decimal

from django.contrib.auth import get_user_model

from invoicing_core.models import Client, Company, CompanyMembership, Invoice
from invoicing_core.permissions import default_permissions_for

ROOT_EMAIL = "root@example.com"


def make_company(name="Test Co", **fields):
    fields.setdefault("slug", name.lower().replace(" ", "-"))
    return Company.objects.create(name=name, **fields)


def make_user(username, email=None, **fields):
    return get_user_model().objects.create_user(
        username=username,
        email=email or f"{username}@example.com",
        password="pw",
        **fields,
    )


def make_member(company, user, role="member", **fields):
    fields.setdefault("permissions", default_permissions_for(role))
    return CompanyMembership.objects.create(
        company=company, user=user, role=role, **fields)


def make_client(company, name="Acme Corp", **fields):
    return Client.objects.create(company=company, name=name, **fields)


def make_invoice(company, user, number="2025-08-ACME-001", status="draft", **fields):
    """Insert an invoice row directly, bypassing the workflow."""
    fields.setdefault("client_company", "Acme Corp")
    fields.setdefault("total", Decimal("0.00"))
    return Invoice.objects.create(
        company=company,
        user=user,
        invoice_number=number,
        status=status,
        **fields,
    )
