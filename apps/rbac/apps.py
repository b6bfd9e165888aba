"""
RBAC app configuration.
"""
from django.apps import AppConfig


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """Register the audit worker task."""
        import apps.rbac.tasks  # noqa
