from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)

MIN_JWT_SECRET_LENGTH = 32

# Commands that serve traffic and therefore need validated secrets.
SERVING_COMMANDS = {'runserver', 'test'}


def validate_jwt_settings(jwt_secret, secret_key):
    """
    Raise ImproperlyConfigured unless the JWT signing key is usable.

    The key must be set, at least 32 characters long, and different from
    Django's SECRET_KEY.
    """
    hint = "Generate a strong key with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""

    if not jwt_secret:
        raise ImproperlyConfigured(f"JWT_SECRET_KEY must be set in environment variables. {hint}")

    if len(jwt_secret) < MIN_JWT_SECRET_LENGTH:
        raise ImproperlyConfigured(
            f"JWT_SECRET_KEY must be at least {MIN_JWT_SECRET_LENGTH} characters long. "
            f"Current length: {len(jwt_secret)}. {hint}"
        )

    if jwt_secret == secret_key:
        raise ImproperlyConfigured(f"JWT_SECRET_KEY must be different from SECRET_KEY. {hint}")


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate security configuration before serving requests.

        Management commands other than runserver/test skip the check so
        migrations and shells work with partial configuration.
        """
        is_server = 'gunicorn' in sys.argv[0] or 'uvicorn' in sys.argv[0]
        if not is_server and len(sys.argv) > 1 and sys.argv[1] not in SERVING_COMMANDS:
            return

        validate_jwt_settings(
            getattr(settings, 'JWT_SECRET_KEY', None),
            getattr(settings, 'SECRET_KEY', None),
        )
        logger.info("JWT configuration validated")
