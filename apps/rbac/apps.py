"""
Roles & permissions app configuration.
"""
from django.apps import AppConfig


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    label = 'rbac'
    verbose_name = 'Roles & Permissions'

    def ready(self):
        # Connects cache invalidation receivers
        from apps.rbac import signals  # noqa: F401
