from django.contrib import admin, messages
from django.core.exceptions import PermissionDenied
from django.http import HttpResponseRedirect

from ..exceptions import DuplicateInvoiceNumber
from ..managers import acting_as
from ..models import Client, Invoice
from ..permissions import Resource
from ..services.membership import check_access
from ..services.numbering import save_with_unique_number
from .actions import (approve_invoices, cancel_invoices, issue_invoices,
                      return_invoices_to_draft, submit_invoices)
from .inlines import InvoiceLineInline
from .mixins import TenantAdminMixin

# Always computed or set by the workflow, never typed in
WORKFLOW_FIELDS = (
    "invoice_number",
    "status",
    "subtotal",
    "vat_amount",
    "total",
    "submitted_at",
    "approved_at",
    "approved_by",
    "issued_at",
    "cancelled_at",
    "deleted_at",
    "deleted_by",
    "deletion_reason",
)


# Register `Invoice` model
@admin.register(Invoice)
class InvoiceAdmin(TenantAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "company",
        "invoice_number",
        "client_company",
        "invoice_date",
        "status",
        "total",
        "currency",
        "deleted_at",
    )
    list_filter = ("company", "status", "invoice_date")
    search_fields = ("invoice_number", "client_company")
    actions = [submit_invoices, approve_invoices, return_invoices_to_draft,
               issue_invoices, cancel_invoices]
    inlines = [InvoiceLineInline]

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        # Use a SQL join so it fetches company & owner in the same query
        return qs.select_related("company", "user").prefetch_related("lines")

    """ Enforce immutability at admin level """

    def get_readonly_fields(self, request, obj=None):
        # only drafts are edited; everything else is moved by the workflow
        if obj and (obj.status != "draft" or obj.is_deleted):
            return [f.name for f in self.model._meta.fields]
        return WORKFLOW_FIELDS + ("user",)

    """ Invoice permissions of the caller's membership gate add and change """

    def _may(self, request, company, action):
        if request.user.is_superuser:
            return True
        return bool(check_access(request.user, company, Resource.INVOICES, action))

    def has_add_permission(self, request):
        if not super().has_add_permission(request):
            return False
        if self._sees_everything(request):
            return True
        return any(
            self._may(request, membership.company, "create")
            for membership in request.user.memberships.active().select_related("company")
        )

    def has_change_permission(self, request, obj=None):
        if not super().has_change_permission(request, obj):
            return False
        return obj is None or self._may(request, obj.company, "update")

    # Deletion goes through the confirmed soft delete, never the admin
    def has_delete_permission(self, request, obj=None):
        return False

    def save_model(self, request, obj, form, change):
        if not change:
            company = getattr(request, "company", None)
            if company is not None and not self._sees_everything(request):
                obj.company = company
        if not self._may(request, obj.company, "update" if change else "create"):
            raise PermissionDenied

        with acting_as(request.user):
            if change:
                super().save_model(request, obj, form, change)
                return
            # new invoices get the next free number for their owner
            obj.user = request.user
            if obj.client is not None:
                obj.snapshot_client(obj.client)
            save_with_unique_number(
                obj, obj.client or obj.client_company, obj.invoice_date)

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        invoice = form.instance
        # lines changed: totals follow
        if not invoice.is_locked:
            invoice.recalc_totals()
            with acting_as(request.user):
                invoice.save(update_fields=["subtotal", "vat_amount", "total", "updated_at"])

    def changeform_view(self, request, object_id=None, form_url="", extra_context=None):
        # the whole save rolled back; send the user back to the form
        try:
            return super().changeform_view(request, object_id, form_url, extra_context)
        except DuplicateInvoiceNumber as exc:
            self.message_user(request, exc.message, level=messages.ERROR)
            return HttpResponseRedirect(request.get_full_path())


# Register `Client` model
@admin.register(Client)
class ClientAdmin(TenantAdminMixin, admin.ModelAdmin):
    list_display = ("id", "company", "name", "city", "country", "tax_id", "email")
    search_fields = ("name", "tax_id", "email")
    list_filter = ("company", "country")

    # Fetch everything in one SQL join
    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("company")
