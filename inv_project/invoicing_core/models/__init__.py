from .auditlog import AuditLog, AuditReview
from .client import Client
from .invoice import Invoice, InvoiceLine
from .membership import Company, CompanyMembership, User
