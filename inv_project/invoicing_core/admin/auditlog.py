from django.contrib import admin, messages

from ..models import AuditLog, AuditReview
from ..services.audit_helper import acknowledge_review
from .mixins import TenantAdminMixin
from .ReadOnly import ReadOnlyAdmin


# Register `AuditLog` model; entries are never edited or removed
@admin.register(AuditLog)
class AuditLogAdmin(TenantAdminMixin, ReadOnlyAdmin):
    list_display = (
        "id",
        "created_at",
        "company",
        "user",
        "action",
        "table_name",
        "record_id",
        "is_critical",
    )

    # Fetch everything in one SQL join
    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("company", "user")


@admin.action(description="Acknowledge selected reviews")
def acknowledge_reviews(modeladmin, request, queryset):
    done = 0
    for review in queryset.filter(reviewed_at__isnull=True):
        acknowledge_review(review, request.user)
        done += 1
    modeladmin.message_user(
        request, f"Acknowledged {done} review(s).", level=messages.SUCCESS)


@admin.register(AuditReview)
class AuditReviewAdmin(TenantAdminMixin, admin.ModelAdmin):
    company_field = "entry__company"
    list_display = ("entry", "flagged_at", "reviewed_at", "reviewed_by")
    list_filter = ("reviewed_at",)
    readonly_fields = ("entry", "flagged_at", "reviewed_at", "reviewed_by")
    actions = [acknowledge_reviews]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        return qs.select_related("entry", "entry__user", "reviewed_by")
