import logging
from dataclasses import dataclass, field

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils.text import slugify

from ..exceptions import NotMember, PermissionDenied, ValidationFailed
from ..managers import acting_as, user_is_root_admin
from ..models import Company, CompanyMembership
from ..permissions import (Resource, Role, can_access, default_permissions_for,
                           full_permissions, normalize_permissions)
from .results import Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedMembership:
    """Effective role and capabilities of one user inside one company."""
    user: object
    company: Company
    role: Role
    permissions: dict = field(default_factory=dict)
    active: bool = True
    is_root_admin: bool = False

    def can(self, resource, action) -> bool:
        return can_access(self.permissions, resource, action)


def is_root_admin(user) -> bool:
    return user_is_root_admin(user)


def resolve_membership(user, company):
    """
    Pure read, never raises. Returns a ResolvedMembership, or a (falsy)
    NotMember when the user may not act in the company at all.
    """
    if user is None or company is None:
        return NotMember(user, company)

    if user_is_root_admin(user):
        return ResolvedMembership(
            user=user,
            company=company,
            role=Role.OWNER,
            permissions=full_permissions(),
            is_root_admin=True,
        )

    if not getattr(user, "is_authenticated", False) or not user.is_active:
        return NotMember(user, company)

    membership = (
        CompanyMembership.objects.select_related("company")
        .filter(user=user, company=company)
        .first()
    )
    if membership is None or not membership.is_active or not membership.company.active:
        return NotMember(user, company)
    try:
        role = Role.normalize(membership.role)
    except ValueError:
        # queryset updates skip clean(); an unknown stored role grants nothing
        logger.warning("Membership %s has unknown role %r", membership.pk, membership.role)
        return NotMember(user, company)

    return ResolvedMembership(
        user=user,
        company=membership.company,
        role=role,
        permissions=normalize_permissions(membership.permissions),
    )


def check_access(user, company, resource, action) -> Outcome:
    """Outcome holding the ResolvedMembership, or NotMember / PermissionDenied."""
    membership = resolve_membership(user, company)
    if not membership:
        return Outcome.failure(membership)
    if not membership.can(resource, action):
        return Outcome.failure(PermissionDenied(resource, action))
    return Outcome.success(membership)


def require_access(user, company, resource, action) -> ResolvedMembership:
    return check_access(user, company, resource, action).unwrap()


def companies_for(user):
    return Company.objects.visible_to(user).order_by("name")


# ---------- membership management ----------

def _coerce_role(role) -> Role:
    try:
        return Role.normalize(role)
    except ValueError:
        raise ValidationFailed("role", f"Unknown role {role!r}")


def _guard_role_grant(actor_membership: ResolvedMembership, role: Role, current_role=None):
    # only owners (and root admins) hand out ownership or touch an owner's row
    touches_owner = role is Role.OWNER or current_role == Role.OWNER.value
    if touches_owner and actor_membership.role is not Role.OWNER:
        raise PermissionDenied(Resource.COMPANY, "manage_users")


@transaction.atomic
def invite_member(company, email, role=Role.MEMBER, permissions=None, invited_by=None):
    """
    Add an existing user, looked up by email, to a company. Permissions
    default to a copy of the role's defaults; an inactive membership is
    reactivated in place.
    """
    User = get_user_model()
    user = User.objects.filter(email__iexact=(email or "").strip()).first()
    if user is None:
        raise ValidationFailed("email", f"No user registered with {email!r}")
    return add_member(company, user, role, permissions, invited_by)


@transaction.atomic
def add_member(company, user, role=Role.MEMBER, permissions=None, invited_by=None):
    role = _coerce_role(role)
    if invited_by is not None:
        actor = require_access(invited_by, company, Resource.COMPANY, "manage_users")
        _guard_role_grant(actor, role)

    perms = (normalize_permissions(permissions) if permissions is not None
             else default_permissions_for(role))

    with acting_as(invited_by):
        membership = (
            CompanyMembership.objects.select_for_update()
            .filter(user=user, company=company)
            .first()
        )
        if membership is not None and membership.is_active:
            raise ValidationFailed("user", f"{user} is already a member of {company}")
        if membership is None:
            membership = CompanyMembership(user=user, company=company)
        membership.role = role.value
        membership.permissions = perms
        membership.is_active = True
        membership.invited_by = invited_by
        membership.save()

    logger.info("%s joined %s as %s", user, company, role.value)
    return membership


def authorize_membership_change(actor, company, current=None, role=None, deactivate=False):
    """
    Raise NotMember, PermissionDenied or ValidationFailed when the change
    would be refused. `current` is the stored membership (None when adding),
    `actor=None` skips the caller checks and keeps the owner rules.
    """
    current_role = current.role if current is not None and current.is_active else None
    if actor is not None:
        actor_membership = require_access(actor, company, Resource.COMPANY, "manage_users")
        _guard_role_grant(actor_membership, role, current_role)
    if current_role == Role.OWNER.value and (deactivate or role is not Role.OWNER):
        _ensure_other_owner(company, current)


@transaction.atomic
def update_member_role(company, user, role, permissions=None, changed_by=None):
    """
    Change a member's role. Without explicit permissions the new role's
    defaults replace the old set.
    """
    role = _coerce_role(role)
    actor = None
    if changed_by is not None:
        actor = require_access(changed_by, company, Resource.COMPANY, "manage_users")

    membership = (
        CompanyMembership.objects.select_for_update()
        .filter(company=company, user=user, is_active=True)
        .first()
    )
    if membership is None:
        raise NotMember(user, company)
    if actor is not None:
        _guard_role_grant(actor, role, membership.role)
    if membership.role == Role.OWNER.value and role is not Role.OWNER:
        _ensure_other_owner(company, membership)

    membership.role = role.value
    membership.permissions = (
        normalize_permissions(permissions) if permissions is not None
        else default_permissions_for(role))
    with acting_as(changed_by):
        membership.save()
    return membership


@transaction.atomic
def remove_member(company, user, removed_by=None):
    """Deactivate, never delete. The last active owner cannot be removed."""
    actor = None
    if removed_by is not None:
        actor = require_access(removed_by, company, Resource.COMPANY, "manage_users")

    membership = (
        CompanyMembership.objects.select_for_update()
        .filter(company=company, user=user, is_active=True)
        .first()
    )
    if membership is None:
        raise NotMember(user, company)
    if actor is not None:
        _guard_role_grant(actor, None, membership.role)
    if membership.role == Role.OWNER.value:
        _ensure_other_owner(company, membership)

    membership.is_active = False
    with acting_as(removed_by):
        membership.save(update_fields=["is_active", "updated_at"])
    logger.info("%s removed from %s", user, company)
    return membership


def _ensure_other_owner(company, membership):
    others = (
        CompanyMembership.objects.filter(
            company=company, role=Role.OWNER.value, is_active=True)
        .exclude(pk=membership.pk)
    )
    if not others.exists():
        raise ValidationFailed("role", f"{company} must keep at least one owner")


def _unique_slug(name):
    base = slugify(name)[:70] or "company"
    slug, n = base, 1
    while Company.objects.filter(slug=slug).exists():
        n += 1
        slug = f"{base}-{n}"
    return slug


@transaction.atomic
def create_company(created_by, name, owner=None, **fields):
    """
    Root admins only. `owner` (defaults to the creator) gets an owner
    membership with the full permission set.
    """
    if not user_is_root_admin(created_by):
        raise PermissionDenied(Resource.COMPANY, "create")

    owner = owner or created_by
    fields.setdefault("slug", _unique_slug(name))
    with acting_as(created_by):
        company = Company.objects.create(name=name, owner=owner, **fields)
        CompanyMembership.objects.create(
            company=company,
            user=owner,
            role=Role.OWNER.value,
            permissions=default_permissions_for(Role.OWNER),
            invited_by=created_by,
        )
    logger.info("Company %s created by %s", company, created_by)
    return company


def deactivate_company(company, user) -> Company:
    require_access(user, company, Resource.COMPANY, "manage_settings")
    with acting_as(user):
        company.deactivate()
    return company
