from django.contrib import admin, messages
from django.utils.translation import gettext_lazy as _

from ..services.workflow import transition_invoice

# ---------- Admin actions ----------


def _transition_selected(modeladmin, request, queryset, target, label):
    """
    Run each selected invoice through the workflow service, which checks
    the caller's permission, locks the row and validates the transition.
    Failures are reported per invoice; one failure doesn't stop the batch.
    """
    success = 0
    total = queryset.count()
    for invoice in queryset:
        outcome = transition_invoice(invoice, target, request.user)
        if outcome:
            success += 1
            continue
        modeladmin.message_user(
            request,
            _("Could not %(label)s invoice %(number)s: %(err)s") % {
                "label": label, "number": invoice.invoice_number,
                "err": outcome.error.message,
            },
            level=messages.ERROR,
        )

    # Final summary message
    modeladmin.message_user(
        request,
        _("%(label)s: %(success)d of %(total)d invoices.") % {
            "label": label.capitalize(), "success": success, "total": total,
        },
        level=messages.SUCCESS if success == total else messages.WARNING,
    )


@admin.action(description="Submit selected invoices for approval")
def submit_invoices(modeladmin, request, queryset):
    _transition_selected(modeladmin, request, queryset, "pending_approval", "submit")


@admin.action(description="Approve selected invoices")
def approve_invoices(modeladmin, request, queryset):
    _transition_selected(modeladmin, request, queryset, "approved", "approve")


@admin.action(description="Send selected invoices back to draft")
def return_invoices_to_draft(modeladmin, request, queryset):
    _transition_selected(modeladmin, request, queryset, "draft", "return to draft")


@admin.action(description="Mark selected invoices as issued")
def issue_invoices(modeladmin, request, queryset):
    _transition_selected(modeladmin, request, queryset, "issued", "issue")


@admin.action(description="Cancel selected invoices")
def cancel_invoices(modeladmin, request, queryset):
    _transition_selected(modeladmin, request, queryset, "cancelled", "cancel")
