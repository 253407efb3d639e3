from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin
from django.utils.translation import gettext_lazy as _

from ..managers import acting_as, user_is_root_admin
from ..models import Company, CompanyMembership, User
from ..permissions import Resource
from ..services.membership import (add_member, check_access, remove_member,
                                   update_member_role)
from .forms import (CompanyMembershipForm, UserAdminChangeForm,
                    UserAdminCreationForm)
from .inlines import MembershipInline
from .mixins import TenantAdminMixin


def _managed_company_ids(user):
    """Companies where `user` may manage members."""
    return {
        membership.company_id
        for membership in user.memberships.active().select_related("company")
        if check_access(user, membership.company, Resource.COMPANY, "manage_users")
    }


# Register `Company` model in admin with this custom config
@admin.register(Company)
class CompanyAdmin(TenantAdminMixin, admin.ModelAdmin):
    """a clean admin table for browsing companies"""
    company_field = "pk"

    # columns shown in company list view
    list_display = ("id", "name", "slug", "default_currency", "active",
                    "is_main_company", "created_at")
    list_filter = ("active", "is_main_company")
    search_fields = ("name", "slug", "tax_id", "vat_id")
    prepopulated_fields = {"slug": ("name",)}
    ordering = ("name",)  # sort companies alphabetically by default
    inlines = [MembershipInline]

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        # Fetch all memberships and their users in bulk
        return qs.prefetch_related("memberships__user")

    def save_model(self, request, obj, form, change):
        with acting_as(request.user):
            obj.save()

    # only root admins create or delete tenants
    def has_add_permission(self, request):
        return request.user.is_superuser or user_is_root_admin(request.user)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and not obj.can_be_deleted:
            return False
        return self.has_add_permission(request)


# Extend stock `DjangoUserAdmin`
@admin.register(User)  # Hook custom `User` model into Django Admin
class UserAdmin(DjangoUserAdmin):
    # Use custom forms you defined to create/edit views
    add_form = UserAdminCreationForm
    form = UserAdminChangeForm
    model = User

    # fields shown in list
    list_display = (
        "username", "email", "get_full_name", "is_staff", "default_company")
    list_filter = ("is_staff", "is_superuser", "is_active")
    search_fields = ("username", "email", "first_name", "last_name")
    ordering = ("username",)

    # Group fields logically on edit user page
    fieldsets = (
        (None, {"fields": ("username", "password")}),
        (_("Personal info"), {"fields":
                              ("first_name", "last_name", "email", "phone")}),
        (_("Company / Defaults"), {"fields": ("default_company",)}),
        (
            _("Permissions"),
            {
                "fields": (
                    "is_active",
                    "is_staff",
                    "is_superuser",
                    "groups",
                    "user_permissions",
                ),
            },
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": (
                    "username",
                    "email",
                    "default_company",
                    "password1",
                    "password2",
                ),
            },
        ),
    )

    # Tenant scoping:
    # limit visible users to memberships of the request.user's companies
    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if request.user.is_superuser or user_is_root_admin(request.user):
            return qs
        allowed_company_ids = request.user.memberships.active().values_list(
            "company_id", flat=True
        )
        # users with memberships in several shared companies appear once
        return qs.filter(
            memberships__company_id__in=allowed_company_ids).distinct()


# Register CompanyMembership model
@admin.register(CompanyMembership)
class CompanyMembershipAdmin(TenantAdminMixin, admin.ModelAdmin):
    form = CompanyMembershipForm
    list_display = ("user", "company", "role", "is_active", "invited_by", "created_at")
    list_filter = ("role", "is_active", "company")
    search_fields = ("user__username", "user__email", "company__name")
    readonly_fields = ("created_at", "updated_at", "invited_by")
    ordering = ("company__name", "user__username")

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        # Fetch everything in one SQL join
        return qs.select_related("company", "user", "invited_by")

    def get_readonly_fields(self, request, obj=None):
        # a membership never moves to another user or company
        if obj is not None:
            return self.readonly_fields + ("company", "user")
        return self.readonly_fields

    def _actor(self, request):
        # plain superusers act as a trusted caller; the owner rules still hold
        if request.user.is_superuser and not user_is_root_admin(request.user):
            return None
        return request.user

    def get_form(self, request, obj=None, **kwargs):
        form = super().get_form(request, obj, **kwargs)
        form.actor = self._actor(request)
        return form

    # Only members holding company.manage_users may change memberships
    def has_change_permission(self, request, obj=None):
        if self._sees_everything(request):
            return True
        if obj is None:
            return bool(_managed_company_ids(request.user))
        return bool(check_access(
            request.user, obj.company, Resource.COMPANY, "manage_users"))

    def has_add_permission(self, request):
        return self.has_change_permission(request)

    # memberships are deactivated, never deleted
    def has_delete_permission(self, request, obj=None):
        return False

    def save_model(self, request, obj, form, change):
        """Every add or change goes through the membership services."""
        actor = self._actor(request)
        if not change:
            membership = add_member(
                obj.company, obj.user, obj.role, obj.permissions or None, invited_by=actor)
            obj.pk = membership.pk
            obj.invited_by = membership.invited_by
            obj._state.adding = False
            return

        stored = CompanyMembership.objects.get(pk=obj.pk)
        if stored.is_active and not obj.is_active:
            remove_member(obj.company, obj.user, removed_by=actor)
        elif not stored.is_active and obj.is_active:
            add_member(obj.company, obj.user, obj.role, obj.permissions, invited_by=actor)
        elif obj.is_active:
            # a role change without edited permissions takes the role defaults
            permissions = obj.permissions if "permissions" in form.changed_data else None
            if permissions is None and obj.role == stored.role:
                return
            update_member_role(obj.company, obj.user, obj.role, permissions, changed_by=actor)
