import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils.text import slugify

from invoicing_core.managers import acting_as
from invoicing_core.models import Client, Company, CompanyMembership
from invoicing_core.permissions import Role, default_permissions_for
from invoicing_core.services import (approve_invoice, cancel_invoice,
                                     create_invoice, issue_invoice,
                                     submit_invoice)

User = get_user_model()

DEMO_CLIENTS = (
    {"name": "Acme Corp", "city": "Berlin", "country": "DE", "tax_id": "DE123456789"},
    {"name": "Blue Sky Media GmbH", "city": "Hamburg", "country": "DE"},
)

# invoice for each client -> list of status steps to apply after creation
DEMO_INVOICES = (
    (0, []),
    (0, ["submit"]),
    (1, ["submit", "approve"]),
    (1, ["submit", "approve", "issue"]),
    (0, ["cancel"]),
)

STEPS = {
    "submit": submit_invoice,
    "approve": approve_invoice,
    "issue": issue_invoice,
    "cancel": cancel_invoice,
}


class Command(BaseCommand):
    help = (
        "Create a demo tenant (company), one user per role, clients and "
        "invoices in several workflow states."
    )

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--company-name",
            default="Demo Company",
            help="Name of the demo company to create.",
        )
        parser.add_argument(
            "--username", default="demo", help="Username prefix for the demo users."
        )
        parser.add_argument(
            "--password", default="demo123", help="Password for every demo user."
        )

    def _unique_slug(self, name, max_tries=100):
        base = slugify(name) or "company"
        slug, i = base, 1
        # If plain slug is taken, append -1, -2, etc.
        while Company.objects.filter(slug=slug).exists():
            slug = f"{base}-{i}"
            i += 1
            if i > max_tries:
                raise CommandError("Couldn't generate unique slug")
        return slug

    @transaction.atomic
    def handle(self, *args, **options):
        company_name = options["company_name"]
        prefix = options["username"]
        password = options["password"]

        company = Company.objects.create(
            name=company_name,
            slug=self._unique_slug(company_name),
            default_currency="EUR",
        )
        self.stdout.write(self.style.SUCCESS(f"Created company: {company}"))

        users = {}
        for role in Role:
            username = f"{prefix}_{role.value}"
            if User.objects.filter(username=username).exists():
                raise CommandError(f"User {username} already exists")
            user = User.objects.create_user(
                username=username,
                email=f"{username}@example.com",
                password=password,
                default_company=company,
            )
            CompanyMembership.objects.create(
                company=company,
                user=user,
                role=role.value,
                permissions=default_permissions_for(role),
            )
            users[role] = user
            self.stdout.write(
                self.style.SUCCESS(f"Created {role.value}: {username} (pw={password})")
            )

        owner = users[Role.OWNER]
        company.owner = owner
        with acting_as(owner):
            company.save(update_fields=["owner", "updated_at"])

        clients = [Client.objects.create(company=company, **data) for data in DEMO_CLIENTS]
        self.stdout.write(self.style.SUCCESS(f"Created {len(clients)} clients"))

        today = datetime.date.today()
        for index, (client_index, steps) in enumerate(DEMO_INVOICES, start=1):
            outcome = create_invoice(
                users[Role.MEMBER],
                company,
                clients[client_index],
                lines=[
                    {"description": "Consulting", "hours": Decimal("8"), "rate": Decimal("95.00")},
                    {"description": "Travel", "hours": Decimal("1"), "rate": Decimal(str(40 * index))},
                ],
                period=today,
                due_date=today + datetime.timedelta(days=14),
            )
            invoice = outcome.unwrap()
            for step in steps:
                actor = users[Role.MEMBER] if step in ("submit", "cancel") else owner
                STEPS[step](invoice, actor).unwrap()
            self.stdout.write(
                self.style.SUCCESS(
                    f"Created invoice: {invoice.invoice_number} ({invoice.status})")
            )
