from django.urls import path

from . import views

app_name = "invoicing_core"

urlpatterns = [
    path("companies/<int:company_id>/invoices/",
         views.invoice_list, name="invoice-list"),
    path("companies/<int:company_id>/invoices/<int:pk>/transition/",
         views.invoice_transition, name="invoice-transition"),
    path("companies/<int:company_id>/invoices/<int:pk>/delete/",
         views.invoice_delete, name="invoice-delete"),
    path("companies/<int:company_id>/invoice-number/",
         views.next_invoice_number, name="invoice-number"),
    path("companies/<int:company_id>/audit-log/",
         views.audit_log, name="audit-log"),
]
