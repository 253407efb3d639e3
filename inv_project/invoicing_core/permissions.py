"""
Permission model
================
A membership's capabilities are a closed structure: a fixed set of
resources, each with a fixed set of actions. Anything outside that
structure is denied.

Stored shape (CompanyMembership.permissions)::

    {
        "expenses": {"create": True, "read": True, "update": True, "delete": False},
        "reports": {"read": True, "export": True, "view_all": False},
        "company": {"manage_users": False, ...},
        ...
    }
"""
from copy import deepcopy
from enum import Enum
from typing import Mapping, Optional


class Resource(str, Enum):
    EXPENSES = "expenses"
    SUPPLIERS = "suppliers"
    CATEGORIES = "categories"
    INVOICES = "invoices"
    REPORTS = "reports"
    COMPANY = "company"

    @classmethod
    def parse(cls, value) -> Optional["Resource"]:
        try:
            return cls(value)
        except ValueError:
            return None


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"

    @classmethod
    def choices(cls):
        return [(r.value, r.name.title()) for r in cls]

    @classmethod
    def normalize(cls, value) -> "Role":
        """Accept the legacy "user" role name as an alias for member."""
        if isinstance(value, cls):
            return value
        if value == "user":
            return cls.MEMBER
        return cls(value)


CRUD = ("create", "read", "update", "delete")

# resource -> every action that resource understands
ACTIONS = {
    Resource.EXPENSES: CRUD,
    Resource.SUPPLIERS: CRUD,
    Resource.CATEGORIES: CRUD,
    Resource.INVOICES: CRUD + ("approve", "issue"),
    Resource.REPORTS: ("read", "export", "view_all"),
    Resource.COMPANY: ("manage_users", "manage_settings", "view_sensitive"),
}


def _flags(resource, *allowed):
    return {action: action in allowed for action in ACTIONS[resource]}


def full_permissions() -> dict:
    """Every flag of every resource set to True (owners, root admins)."""
    return {r.value: _flags(r, *ACTIONS[r]) for r in Resource}


def empty_permissions() -> dict:
    return {r.value: _flags(r) for r in Resource}


def _admin_defaults():
    perms = full_permissions()
    perms[Resource.CATEGORIES.value]["delete"] = False
    perms[Resource.COMPANY.value]["manage_settings"] = False
    return perms


def _member_defaults():
    return {
        Resource.EXPENSES.value: _flags(Resource.EXPENSES, "create", "read", "update"),
        Resource.SUPPLIERS.value: _flags(Resource.SUPPLIERS, "create", "read", "update"),
        Resource.CATEGORIES.value: _flags(Resource.CATEGORIES, "read"),
        Resource.INVOICES.value: _flags(Resource.INVOICES, "create", "read", "update"),
        Resource.REPORTS.value: _flags(Resource.REPORTS, "read", "export"),
        Resource.COMPANY.value: _flags(Resource.COMPANY),
    }


def _viewer_defaults():
    perms = {r.value: _flags(r, "read") for r in Resource}
    perms[Resource.COMPANY.value] = _flags(Resource.COMPANY)
    return perms


DEFAULT_ROLE_PERMISSIONS = {
    Role.OWNER: full_permissions(),
    Role.ADMIN: _admin_defaults(),
    Role.MEMBER: _member_defaults(),
    Role.VIEWER: _viewer_defaults(),
}


def default_permissions_for(role) -> dict:
    """
    Copy of the default permission set for a role.
    A copy is returned so a membership never shares (or later follows)
    the mapping it was created from.
    """
    return deepcopy(DEFAULT_ROLE_PERMISSIONS[Role.normalize(role)])


def normalize_permissions(permissions) -> dict:
    """Coerce a stored mapping into the closed shape; unknown keys are dropped."""
    result = empty_permissions()
    if not isinstance(permissions, Mapping):
        return result
    for resource, actions in ACTIONS.items():
        stored = permissions.get(resource.value)
        if not isinstance(stored, Mapping):
            continue
        for action in actions:
            result[resource.value][action] = stored.get(action) is True
    return result


def can_access(permissions, resource, action) -> bool:
    """
    Fail closed: missing permissions, an unknown resource, an action the
    resource does not define, or any flag that is not literally True
    all answer False.
    """
    if not isinstance(permissions, Mapping):
        return False
    res = Resource.parse(resource.value if isinstance(resource, Resource) else resource)
    if res is None or action not in ACTIONS[res]:
        return False
    flags = permissions.get(res.value)
    if not isinstance(flags, Mapping):
        return False
    return flags.get(action) is True
