"""
Core API views.
"""
import logging

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Health check endpoint to verify system dependencies.

    GET /v1/health

    Returns 200 if all dependencies are healthy, 503 otherwise. The Celery
    check only runs when audit entries are dispatched to workers.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Health check",
        responses={200: OpenApiTypes.OBJECT, 503: OpenApiTypes.OBJECT},
        tags=['Health'],
    )
    def get(self, request):
        health_status = {
            'status': 'healthy',
            'database': 'unknown',
            'cache': 'unknown',
        }
        errors = []

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            health_status['database'] = 'healthy'
        except DatabaseError as e:
            health_status['database'] = 'unhealthy'
            errors.append(f"Database: {e}")
            logger.error("Database health check failed", exc_info=True)

        try:
            cache.set('health_check', 'ok', 10)
            if cache.get('health_check') == 'ok':
                health_status['cache'] = 'healthy'
            else:
                health_status['cache'] = 'unhealthy'
                errors.append("Cache: Unable to read test key")
        except Exception as e:
            health_status['cache'] = 'unhealthy'
            errors.append(f"Cache: {e}")
            logger.error("Cache health check failed", exc_info=True)

        if settings.AUDIT_DISPATCH == 'celery':
            health_status['celery'] = self._check_celery(errors)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)

    @staticmethod
    def _check_celery(errors):
        try:
            from config.celery import app as celery_app
            stats = celery_app.control.inspect(timeout=2.0).stats()
        except Exception as e:
            errors.append(f"Celery: {e}")
            logger.error("Celery health check failed", exc_info=True)
            return 'unhealthy'

        if not stats:
            errors.append("Celery: No workers available")
            return 'unhealthy'
        return 'healthy'
