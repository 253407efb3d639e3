"""
Tenant access decorators for the JSON views.
The company comes from the `company_id` route argument; the caller's
membership is resolved on every request, never cached.
"""
from functools import wraps

from django.http import JsonResponse
from django.shortcuts import get_object_or_404

from .exceptions import (DeletionForbidden, DuplicateInvoiceNumber,
                         InvalidTransition, NotMember, PermissionDenied,
                         ValidationFailed)
from .models import Company
from .services.membership import check_access

ERROR_STATUS = {
    NotMember: 403,
    PermissionDenied: 403,
    InvalidTransition: 409,
    DeletionForbidden: 409,
    DuplicateInvoiceNumber: 409,
    ValidationFailed: 400,
}


def error_response(error):
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)), 400)
    body = {"ok": False, "error": error.code, "message": error.message}
    field = getattr(error, "field", None)
    if field:
        body["field"] = field
    return JsonResponse(body, status=status)


def require_permission(resource, action):
    """
    Usage:
        @require_permission(Resource.INVOICES, "read")
        def invoice_list(request, company_id):
            ...
    The view receives `request.company` and `request.membership`.
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, company_id, *args, **kwargs):
            company = get_object_or_404(Company, pk=company_id)
            access = check_access(request.user, company, resource, action)
            if not access:
                return error_response(access.error)
            request.company = company
            request.membership = access.value
            return view_func(request, company_id, *args, **kwargs)
        return wrapper
    return decorator
