from .actions import (approve_invoices, cancel_invoices, issue_invoices,
                      return_invoices_to_draft, submit_invoices)
from .auditlog import AuditLogAdmin, AuditReviewAdmin
from .forms import (CompanyMembershipForm, UserAdminChangeForm,
                    UserAdminCreationForm)
from .inlines import InvoiceLineInline, MembershipInline
from .invoice import ClientAdmin, InvoiceAdmin
from .membership import CompanyAdmin, CompanyMembershipAdmin, UserAdmin
from .mixins import TenantAdminMixin
from .ReadOnly import ReadOnlyAdmin
