from django.contrib import admin
from django.core.exceptions import PermissionDenied

"""Base admin for append-only models: browse, filter, never edit."""
class ReadOnlyAdmin(admin.ModelAdmin):
    list_per_page = 50  # page size (adjust for performance)

    # make every model field readonly
    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    # The change form stays viewable; every field is read-only
    def has_change_permission(self, request, obj=None):
        return True

    # Prevent any attempt to save via the admin UI
    def save_model(self, request, obj, form, change):
        raise PermissionDenied("Rows cannot be changed via the admin.")

    # Disable admin actions like delete_selected
    def get_actions(self, request):
        return {}

    # Common useful filters if present
    def get_list_filter(self, request):
        possible = {f.name for f in self.model._meta.fields}
        return tuple(
            c for c in ("action", "table_name", "is_critical", "created_at")
            if c in possible
        )

    # Useful searchable text fields if present
    def get_search_fields(self, request):
        possible = {f.name for f in self.model._meta.fields}
        return tuple(c for c in ("table_name", "record_id") if c in possible)
