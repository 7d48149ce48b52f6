from django.apps import AppConfig


class BoxcardsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "boxcards"
    verbose_name = "Box cards"

    def ready(self):
        from . import signals  # noqa: F401
