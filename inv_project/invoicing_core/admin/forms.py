from django import forms
from django.contrib.auth.forms import (
    UserChangeForm as DjangoUserChangeForm,
    UserCreationForm as DjangoUserCreationForm)

from ..exceptions import NotMember, PermissionDenied, ValidationFailed
from ..models import CompanyMembership, User
from ..permissions import Role, default_permissions_for
from ..services.membership import authorize_membership_change

# -----------------------------
# Register custom admin forms
# ----------------------------


# Subclass `DjangoUserCreationForm` (form used when adding a new user)
class UserAdminCreationForm(DjangoUserCreationForm):
    class Meta(DjangoUserCreationForm.Meta):
        model = User  # Points `model` to custom User model
        fields = ("username", "email", "default_company")


# Subclass `DjangoUserChangeForm` (form used when editing an existing user)
class UserAdminChangeForm(DjangoUserChangeForm):
    class Meta(DjangoUserChangeForm.Meta):
        model = User
        fields = (
            "username",
            "email",
            "phone",
            "is_active",
            "is_staff",
            "is_superuser",
            "default_company",
        )


class CompanyMembershipForm(forms.ModelForm):
    """
    New memberships start from the role's default permissions. The admin
    sets `actor`; a change the membership rules would refuse is a form error.
    """
    actor = None

    class Meta:
        model = CompanyMembership
        fields = ("company", "user", "role", "permissions", "is_active")

    def clean(self):
        cleaned = super().clean()
        role = cleaned.get("role")
        if role and not self.instance.pk and not cleaned.get("permissions"):
            cleaned["permissions"] = default_permissions_for(Role.normalize(role))

        # instance still holds the stored values until _post_clean()
        current = self.instance if self.instance.pk else None
        company = current.company if current else cleaned.get("company")
        if company is None or not role:
            return cleaned
        try:
            authorize_membership_change(
                self.actor, company, current, Role.normalize(role),
                deactivate=not cleaned.get("is_active", True),
            )
        except (NotMember, PermissionDenied, ValidationFailed) as exc:
            raise forms.ValidationError(exc.message, code=exc.code)
        return cleaned
