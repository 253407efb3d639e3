from django.apps import AppConfig


class InvoicingCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "invoicing_core"
    verbose_name = "Invoicing core"

    # ensure receivers are registered
    def ready(self):
        import invoicing_core.signals  # noqa: F401
