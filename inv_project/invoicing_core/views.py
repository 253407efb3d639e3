from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from .decorators import error_response, require_permission
from .exceptions import ValidationFailed
from .models import Client, Invoice
from .permissions import Resource
from .services import (allocate_invoice_number, list_audit_entries,
                       request_deletion, transition_invoice)


def invoice_payload(invoice):
    return {
        "id": invoice.pk,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "client": invoice.client_company,
        "invoice_date": invoice.invoice_date.isoformat(),
        "currency": invoice.currency,
        "subtotal": str(invoice.subtotal),
        "vat_amount": str(invoice.vat_amount),
        "total": str(invoice.total),
        "deleted": invoice.is_deleted,
    }


def _company_invoice(request, pk):
    # scoped by company so an id from another tenant is simply not found
    return get_object_or_404(Invoice.objects.for_company(request.company), pk=pk)


@require_GET
@require_permission(Resource.INVOICES, "read")
def invoice_list(request, company_id):
    invoices = (
        Invoice.objects.for_company(request.company)
        .active()
        .order_by("-invoice_date", "-id")
    )
    status = request.GET.get("status")
    if status:
        invoices = invoices.filter(status=status)
    return JsonResponse({"ok": True, "invoices": [invoice_payload(i) for i in invoices]})


@require_POST
@require_permission(Resource.INVOICES, "read")
def invoice_transition(request, company_id, pk):
    # the service checks the action-specific flag (update/approve/issue)
    invoice = _company_invoice(request, pk)
    outcome = transition_invoice(invoice, request.POST.get("status", ""), request.user)
    if not outcome:
        return error_response(outcome.error)
    return JsonResponse({"ok": True, "invoice": invoice_payload(outcome.value)})


@require_GET
@require_permission(Resource.INVOICES, "create")
def next_invoice_number(request, company_id):
    name = request.GET.get("client", "")
    client = Client.objects.for_company(request.company).filter(name=name).first()
    try:
        number = allocate_invoice_number(
            request.user, client or name, request.GET.get("period"))
    except ValidationFailed as exc:
        return error_response(exc)
    return JsonResponse({"ok": True, "invoice_number": number})


@require_POST
@require_permission(Resource.INVOICES, "read")
def invoice_delete(request, company_id, pk):
    invoice = _company_invoice(request, pk)
    outcome = request_deletion(
        invoice,
        confirmation=request.POST.get("confirmation", ""),
        reason=request.POST.get("reason", ""),
        user=request.user,
        language=request.POST.get("language", "en"),
    )
    if outcome.rejected:
        return error_response(outcome.error)
    return JsonResponse({
        "ok": True,
        "already_deleted": outcome.already_deleted,
        "invoice": invoice_payload(outcome.value),
    })


@require_GET
@require_permission(Resource.COMPANY, "view_sensitive")
def audit_log(request, company_id):
    entries = list_audit_entries(
        company=request.company,
        action=request.GET.get("action"),
        table_name=request.GET.get("table_name"),
        critical_only=request.GET.get("critical") in ("1", "true"),
    )
    return JsonResponse({
        "ok": True,
        "entries": [
            {
                "id": e.pk,
                "action": e.action,
                "table_name": e.table_name,
                "record_id": e.record_id,
                "user": e.user.username if e.user else None,
                "is_critical": e.is_critical,
                "old_values": e.old_values,
                "new_values": e.new_values,
                "created_at": e.created_at.isoformat(),
            }
            for e in entries
        ],
    })
