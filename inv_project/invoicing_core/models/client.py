from django.db import models

from ..managers import TenantManager
from .membership import Company


# ---------- Client ----------
# Who receives invoices. Invoices copy these fields at creation time,
# so editing a client never changes an invoice already written.
class Client(models.Model):
    company = models.ForeignKey(
        Company, on_delete=models.CASCADE, related_name="clients")

    # Legal or trade name; also the source of the invoice number abbreviation
    name = models.CharField(max_length=200)

    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=120, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=120, blank=True)

    tax_id = models.CharField(max_length=64, blank=True)
    company_registration = models.CharField(max_length=64, blank=True)
    email = models.EmailField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        db_table = "clients"
        indexes = [
            models.Index(fields=["company", "name"], name="client_company_name_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"], name="uq_company_client_name"
            ),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
