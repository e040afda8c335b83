from django.apps import AppConfig


class UploadsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.uploads"
    verbose_name = "Catalog File Uploads"

    def ready(self):
        # connect the broadcaster reset on settings overrides
        from . import broadcasting  # noqa: F401
