from contextlib import contextmanager
from threading import local

from django.conf import settings
from django.contrib.auth.base_user import BaseUserManager
from django.db import models

# Thread-local storage for whoever is performing the current mutation.
# Audit receivers read it; middleware and services set it.
_thread_locals = local()


def get_current_actor():
    return getattr(_thread_locals, "actor", None)


def set_current_actor(user):
    _thread_locals.actor = user


def clear_current_actor():
    if hasattr(_thread_locals, "actor"):
        del _thread_locals.actor


@contextmanager
def acting_as(user):
    """
    Attribute every audited write inside the block to `user`.
    Passing None keeps whoever is already bound.
    """
    previous = get_current_actor()
    if user is not None:
        set_current_actor(user)
    try:
        yield user
    finally:
        set_current_actor(previous)


def root_admin_emails():
    return getattr(settings, "ROOT_ADMIN_EMAILS", frozenset())


def user_is_root_admin(user) -> bool:
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    if not getattr(user, "is_active", False):
        return False
    email = (getattr(user, "email", "") or "").strip().lower()
    return bool(email) and email in root_admin_emails()


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):
        return self.filter(company=company)

    def visible_to(self, user):
        """
        Row-level filter: root admins see every row, everyone else only
        rows of companies where they hold an active membership.
        """
        if user_is_root_admin(user):
            return self
        if user is None or not getattr(user, "is_authenticated", False):
            return self.none()
        return self.filter(
            company__memberships__user=user,
            company__memberships__is_active=True,
            company__active=True,
        ).distinct()


class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    pass


class InvoiceQuerySet(TenantQuerySet):
    def active(self):
        # not soft-deleted
        return self.filter(deleted_at__isnull=True)

    def deleted(self):
        return self.filter(deleted_at__isnull=False)

    def counted(self):
        # what "active invoice" totals and counters include
        return self.active().exclude(status="cancelled")

    def owned_by(self, user):
        return self.filter(user=user)


class InvoiceManager(models.Manager.from_queryset(InvoiceQuerySet)):
    pass


class CompanyQuerySet(models.QuerySet):
    def active(self):
        return self.filter(active=True)

    def visible_to(self, user):
        if user_is_root_admin(user):
            return self
        if user is None or not getattr(user, "is_authenticated", False):
            return self.none()
        return self.filter(
            active=True,
            memberships__user=user,
            memberships__is_active=True,
        ).distinct()


class CompanyManager(models.Manager.from_queryset(CompanyQuerySet)):
    pass


class MembershipQuerySet(TenantQuerySet):
    def active(self):
        return self.filter(is_active=True, company__active=True)


class MembershipManager(models.Manager.from_queryset(MembershipQuerySet)):
    pass


class UserManager(BaseUserManager):
    """ Enforce rules around how users are created """

    use_in_migrations = True

    # Shared logic for both create_user() & create_superuser()
    def _create_user(self, username, email, password, **extra_fields):
        if not username:
            raise ValueError("The given username must be set")
        email = self.normalize_email(email)
        user = self.model(username=username, email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(username, email, password, **extra_fields)

    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        # You cannot pass conflicting values
        if extra_fields.get("is_staff") is not True or extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_staff=True and is_superuser=True")
        return self._create_user(username, email, password, **extra_fields)
