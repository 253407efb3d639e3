from django.contrib import admin

from ..models import CompanyMembership, InvoiceLine

# ---------- Helpful inline admin classes ----------


class InvoiceLineInline(admin.TabularInline):
    """Show InvoiceLine rows on the Invoice page"""

    model = InvoiceLine
    extra = 0  # don’t show “empty” rows by default (prevents clutter)
    fields = ("position", "description", "hours", "rate", "amount")
    readonly_fields = ("amount",)  # always hours × rate
    ordering = ("position", "id")

    # lines are edited on drafts only
    def has_change_permission(self, request, obj=None):
        if obj is not None and (obj.status != "draft" or obj.is_deleted):
            return False
        return super().has_change_permission(request, obj)

    def has_add_permission(self, request, obj=None):
        if obj is not None and (obj.status != "draft" or obj.is_deleted):
            return False
        return super().has_add_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and (obj.status != "draft" or obj.is_deleted):
            return False
        return super().has_delete_permission(request, obj)


class MembershipInline(admin.TabularInline):
    """Members of a company, on the Company page (edited on their own page)"""

    model = CompanyMembership
    fk_name = "company"
    extra = 0
    fields = ("user", "role", "is_active", "created_at")
    readonly_fields = fields
    can_delete = False  # memberships are deactivated, never deleted
    show_change_link = True

    # changes go through CompanyMembershipAdmin and the membership rules
    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False
