from ..managers import user_is_root_admin


class TenantAdminMixin:
    """
    Enforce tenant isolation in Django admin.
    Superusers and root admins see every company; everyone else sees rows
    of companies where they hold an active membership. `request.company`
    (set by CurrentCompanyMiddleware) narrows that to one company.
    """
    company_field = "company"

    def _sees_everything(self, request):
        return request.user.is_superuser or user_is_root_admin(request.user)

    def _allowed_company_ids(self, request):
        return list(
            request.user.memberships.active().values_list("company_id", flat=True)
        )

    def get_queryset(self, request):
        qs = super().get_queryset(request)
        if self._sees_everything(request):
            return qs
        company = getattr(request, "company", None)
        if company is not None:
            return qs.filter(**{self.company_field: company})
        return qs.filter(**{f"{self.company_field}__in": self._allowed_company_ids(request)})

    def formfield_for_foreignkey(self, db_field, request, **kwargs):
        """Restrict company and company-scoped dropdowns to allowed companies."""
        if not self._sees_everything(request):
            rel_model = getattr(db_field, "related_model", None)
            allowed = self._allowed_company_ids(request)
            if db_field.name == "company":
                kwargs["queryset"] = rel_model.objects.filter(pk__in=allowed)
            elif rel_model is not None and hasattr(rel_model, "company"):
                kwargs["queryset"] = rel_model.objects.filter(company_id__in=allowed)
        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    def save_model(self, request, obj, form, change):
        # Ensure new rows land in the selected company (unless superuser)
        company = getattr(request, "company", None)
        if not change and company is not None and not self._sees_everything(request):
            obj.company = company
        super().save_model(request, obj, form, change)
