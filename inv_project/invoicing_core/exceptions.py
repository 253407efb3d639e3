from django.core.exceptions import ValidationError


class InvoicingError(Exception):
    """Base class for every error the invoicing core reports to callers."""
    code = "invoicing_error"

    def __init__(self, message=""):
        self.message = message
        super().__init__(message)


class NotMember(InvoicingError):
    """Caller has no active membership in the company (and is not a root admin)."""
    code = "no_access"

    def __init__(self, user=None, company=None):
        self.user = user
        self.company = company
        super().__init__(f"{user} has no access to {company}")

    # The resolver hands this back as a value; it reads as "no membership".
    def __bool__(self):
        return False


class PermissionDenied(InvoicingError):
    """Membership exists but lacks the resource/action flag."""
    code = "permission_denied"

    def __init__(self, resource, action):
        self.resource = str(resource)
        self.action = str(action)
        super().__init__(f"Not allowed to {self.action} {self.resource}")


class InvalidTransition(InvoicingError, ValidationError):
    """Requested status change is not reachable from the current status."""
    code = "invalid_transition"

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot go from {from_status} to {to_status}"
        # ValidationError keeps its own message bookkeeping for admin/forms
        ValidationError.__init__(self, message, code=self.code)
        self.message = message


class DuplicateInvoiceNumber(InvoicingError):
    """Uniqueness constraint on (invoice_number, owner) rejected a write."""
    code = "duplicate_invoice_number"

    def __init__(self, invoice_number, attempts=1):
        self.invoice_number = invoice_number
        self.attempts = attempts
        super().__init__(
            f"Invoice number {invoice_number} is already in use "
            f"(after {attempts} attempt(s))"
        )


class DeletionForbidden(InvoicingError):
    """Only draft invoices may ever be removed."""
    code = "deletion_forbidden"

    def __init__(self, status, message=None):
        self.status = status
        super().__init__(
            message or f"Invoices with status {status} must never be deleted"
        )


class ValidationFailed(InvoicingError, ValidationError):
    """Recoverable input problem: re-prompt the user."""
    code = "validation_failed"

    def __init__(self, field, message):
        self.field = field
        ValidationError.__init__(self, message, code=self.code)
        self.message = message
