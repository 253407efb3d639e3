import pytest

from invoicing_core.permissions import (ACTIONS, Resource, Role, can_access,
                                        default_permissions_for,
                                        full_permissions,
                                        normalize_permissions)


def test_viewer_cannot_create_expenses():
    perms = default_permissions_for("viewer")
    assert can_access(perms, "expenses", "create") is False
    assert can_access(perms, "expenses", "read") is True


@pytest.mark.parametrize("permissions", [None, {}, "all", [], {"expenses": "yes"}])
def test_missing_or_malformed_permissions_deny(permissions):
    assert can_access(permissions, "expenses", "read") is False


def test_unknown_resource_or_action_denies():
    perms = full_permissions()
    assert can_access(perms, "payroll", "read") is False
    assert can_access(perms, "reports", "delete") is False
    assert can_access(perms, "invoices", "approve") is True


@pytest.mark.parametrize("flag", [1, "true", "True", [True], None])
def test_only_literal_true_grants(flag):
    perms = {"expenses": {"read": flag}}
    assert can_access(perms, "expenses", "read") is False


def test_accepts_resource_enum():
    perms = default_permissions_for(Role.MEMBER)
    assert can_access(perms, Resource.INVOICES, "create") is True
    assert can_access(perms, Resource.INVOICES, "approve") is False


def test_role_defaults():
    owner = default_permissions_for("owner")
    admin = default_permissions_for("admin")
    member = default_permissions_for("member")
    viewer = default_permissions_for("viewer")

    assert all(all(flags.values()) for flags in owner.values())

    assert admin["categories"]["delete"] is False
    assert admin["company"]["manage_settings"] is False
    assert admin["company"]["manage_users"] is True

    assert member["expenses"] == {
        "create": True, "read": True, "update": True, "delete": False}
    assert member["categories"]["read"] is True
    assert member["categories"]["create"] is False
    assert member["reports"]["export"] is True
    assert member["reports"]["view_all"] is False
    assert not any(member["company"].values())

    assert viewer["reports"]["export"] is False
    assert not any(viewer["company"].values())


def test_defaults_are_copies():
    perms = default_permissions_for("member")
    perms["expenses"]["delete"] = True
    assert default_permissions_for("member")["expenses"]["delete"] is False


def test_legacy_user_role_maps_to_member():
    assert Role.normalize("user") is Role.MEMBER
    with pytest.raises(ValueError):
        Role.normalize("superhero")


def test_normalize_drops_unknown_keys_and_fills_gaps():
    perms = normalize_permissions({
        "expenses": {"read": True, "fly": True},
        "payroll": {"read": True},
    })
    assert set(perms) == {r.value for r in Resource}
    assert set(perms["expenses"]) == set(ACTIONS[Resource.EXPENSES])
    assert perms["expenses"]["read"] is True
    assert perms["expenses"]["create"] is False
