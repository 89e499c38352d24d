"""
Core app configuration and startup validation.
"""
import logging
import sys

from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate credential signing configuration when serving requests.

        Management commands other than runserver skip the checks so
        migrations and shells work without a full environment.
        """
        if len(sys.argv) > 1 and sys.argv[1] not in ('runserver', 'test'):
            return

        self._validate_jwt_configuration()
        logger.info("JWT configuration validated")

    def _validate_jwt_configuration(self):
        secret_key = getattr(settings, 'SECRET_KEY', None)

        for name in ('JWT_SECRET_KEY', 'JWT_REFRESH_SECRET_KEY'):
            value = getattr(settings, name, None)
            if not value:
                raise ImproperlyConfigured(f"{name} must be set in environment variables.")
            if len(value) < 32:
                raise ImproperlyConfigured(
                    f"{name} must be at least 32 characters long. Current length: {len(value)}."
                )
            if value == secret_key:
                raise ImproperlyConfigured(f"{name} must be different from SECRET_KEY.")
            if len(set(value)) < 16:
                raise ImproperlyConfigured(f"{name} has insufficient entropy.")

        if settings.JWT_SECRET_KEY == settings.JWT_REFRESH_SECRET_KEY:
            raise ImproperlyConfigured("JWT_SECRET_KEY and JWT_REFRESH_SECRET_KEY must differ.")
