from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings

from invoicing_core.exceptions import (NotMember, PermissionDenied,
                                       ValidationFailed)
from invoicing_core.models import CompanyMembership
from invoicing_core.permissions import Role
from invoicing_core.services import (check_access, companies_for,
                                     create_company, invite_member,
                                     is_root_admin, remove_member,
                                     require_access, resolve_membership,
                                     update_member_role)

from .helpers import ROOT_EMAIL, make_company, make_member, make_user


@override_settings(ROOT_ADMIN_EMAILS=frozenset({ROOT_EMAIL}))
class ResolveMembershipTests(TestCase):
    def setUp(self):
        self.company = make_company("Company A")
        self.other = make_company("Company B")
        self.alice = make_user("alice")
        self.root = make_user("root", email="Root@Example.com")
        make_member(self.company, self.alice, role="member")

    def test_active_member_resolves_with_stored_permissions(self):
        membership = resolve_membership(self.alice, self.company)
        self.assertTrue(membership)
        self.assertIs(membership.role, Role.MEMBER)
        self.assertFalse(membership.is_root_admin)
        self.assertTrue(membership.can("invoices", "create"))
        self.assertFalse(membership.can("invoices", "approve"))

    def test_no_row_is_not_member(self):
        result = resolve_membership(self.alice, self.other)
        self.assertIsInstance(result, NotMember)
        self.assertFalse(result)

    def test_inactive_membership_is_not_member(self):
        CompanyMembership.objects.filter(user=self.alice).update(is_active=False)
        self.assertIsInstance(resolve_membership(self.alice, self.company), NotMember)

    def test_inactive_company_is_not_member(self):
        self.company.deactivate()
        self.assertIsInstance(resolve_membership(self.alice, self.company), NotMember)

    def test_inactive_user_is_not_member(self):
        self.alice.is_active = False
        self.alice.save()
        self.assertIsInstance(resolve_membership(self.alice, self.company), NotMember)

    def test_corrupt_stored_role_is_not_member(self):
        # queryset updates bypass clean()
        CompanyMembership.objects.filter(user=self.alice).update(role="superhero")
        self.assertIsInstance(resolve_membership(self.alice, self.company), NotMember)
        self.assertFalse(check_access(self.alice, self.company, "invoices", "read"))

    def test_none_arguments_never_raise(self):
        self.assertIsInstance(resolve_membership(None, self.company), NotMember)
        self.assertIsInstance(resolve_membership(self.alice, None), NotMember)

    def test_root_admin_is_owner_everywhere(self):
        self.assertTrue(is_root_admin(self.root))
        for company in (self.company, self.other):
            membership = resolve_membership(self.root, company)
            self.assertIs(membership.role, Role.OWNER)
            self.assertTrue(membership.is_root_admin)
            self.assertTrue(membership.can("company", "manage_settings"))

    def test_root_admin_bypasses_inactive_company(self):
        self.other.deactivate()
        self.assertTrue(resolve_membership(self.root, self.other))

    def test_root_admin_list_comes_from_settings(self):
        with self.settings(ROOT_ADMIN_EMAILS=frozenset()):
            self.assertFalse(is_root_admin(self.root))
            self.assertIsInstance(resolve_membership(self.root, self.company), NotMember)

    def test_permission_change_applies_on_next_check(self):
        self.assertTrue(check_access(self.alice, self.company, "expenses", "create"))
        membership = CompanyMembership.objects.get(user=self.alice)
        membership.permissions = {"expenses": {"create": False, "read": True}}
        membership.save()
        outcome = check_access(self.alice, self.company, "expenses", "create")
        self.assertIsInstance(outcome.error, PermissionDenied)

    def test_require_access_raises(self):
        with self.assertRaises(NotMember):
            require_access(self.alice, self.other, "invoices", "read")
        with self.assertRaises(PermissionDenied):
            require_access(self.alice, self.company, "company", "manage_users")

    def test_companies_for(self):
        self.assertEqual(list(companies_for(self.alice)), [self.company])
        self.assertEqual(
            set(companies_for(self.root)), {self.company, self.other})


@override_settings(ROOT_ADMIN_EMAILS=frozenset({ROOT_EMAIL}))
class MembershipManagementTests(TestCase):
    def setUp(self):
        self.company = make_company("Company A")
        self.owner = make_user("owner")
        self.admin = make_user("admin")
        self.bob = make_user("bob")
        self.root = make_user("root", email=ROOT_EMAIL)
        make_member(self.company, self.owner, role="owner")
        make_member(self.company, self.admin, role="admin")

    def test_invite_copies_role_defaults(self):
        membership = invite_member(self.company, "BOB@example.com", "viewer",
                                   invited_by=self.admin)
        self.assertEqual(membership.role, "viewer")
        self.assertEqual(membership.invited_by, self.admin)
        self.assertTrue(membership.permissions["invoices"]["read"])
        self.assertFalse(membership.permissions["invoices"]["create"])

    def test_invite_unknown_email(self):
        with self.assertRaises(ValidationFailed):
            invite_member(self.company, "nobody@example.com", "member")

    def test_invite_twice_fails(self):
        invite_member(self.company, "bob@example.com", "member")
        with self.assertRaises(ValidationFailed):
            invite_member(self.company, "bob@example.com", "member")

    def test_member_cannot_invite(self):
        invite_member(self.company, "bob@example.com", "member")
        carol = make_user("carol")
        with self.assertRaises(PermissionDenied):
            invite_member(self.company, carol.email, "member", invited_by=self.bob)

    def test_only_owner_grants_ownership(self):
        with self.assertRaises(PermissionDenied):
            invite_member(self.company, "bob@example.com", "owner", invited_by=self.admin)
        membership = invite_member(
            self.company, "bob@example.com", "owner", invited_by=self.owner)
        self.assertEqual(membership.role, "owner")

    def test_update_role_replaces_permissions(self):
        invite_member(self.company, "bob@example.com", "member")
        membership = update_member_role(
            self.company, self.bob, "viewer", changed_by=self.admin)
        self.assertEqual(membership.role, "viewer")
        self.assertFalse(membership.permissions["expenses"]["create"])

    def test_remove_member_deactivates(self):
        invite_member(self.company, "bob@example.com", "member")
        remove_member(self.company, self.bob, removed_by=self.admin)
        membership = CompanyMembership.objects.get(company=self.company, user=self.bob)
        self.assertFalse(membership.is_active)
        self.assertFalse(resolve_membership(self.bob, self.company))

    def test_removed_member_can_be_reinvited(self):
        invite_member(self.company, "bob@example.com", "member")
        remove_member(self.company, self.bob)
        membership = invite_member(self.company, "bob@example.com", "viewer")
        self.assertTrue(membership.is_active)
        self.assertEqual(CompanyMembership.objects.filter(user=self.bob).count(), 1)

    def test_last_owner_cannot_leave(self):
        with self.assertRaises(ValidationFailed):
            remove_member(self.company, self.owner)
        with self.assertRaises(ValidationFailed):
            update_member_role(self.company, self.owner, "admin")

    def test_memberships_are_never_deleted(self):
        membership = CompanyMembership.objects.get(user=self.admin)
        with self.assertRaises(ValidationError):
            membership.delete()

    def test_create_company_is_root_admin_only(self):
        with self.assertRaises(PermissionDenied):
            create_company(self.owner, "Rogue Ltd")
        company = create_company(self.root, "New Co", owner=self.bob)
        self.assertEqual(company.slug, "new-co")
        self.assertEqual(resolve_membership(self.bob, company).role, Role.OWNER)

    def test_fiscal_year_start_must_be_a_month(self):
        with self.assertRaises(ValidationError):
            make_company("Odd Year Co", fiscal_year_start=13)

    def test_only_owner_demotes_or_removes_an_owner(self):
        invite_member(self.company, "bob@example.com", "owner", invited_by=self.owner)
        with self.assertRaises(PermissionDenied):
            update_member_role(self.company, self.bob, "viewer", changed_by=self.admin)
        with self.assertRaises(PermissionDenied):
            remove_member(self.company, self.bob, removed_by=self.admin)
        self.assertEqual(resolve_membership(self.bob, self.company).role, Role.OWNER)

        remove_member(self.company, self.bob, removed_by=self.owner)
        self.assertFalse(resolve_membership(self.bob, self.company))
