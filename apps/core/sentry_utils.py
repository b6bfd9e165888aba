"""
Sentry utilities for adding tenant and user context.
"""
import sentry_sdk
from django.conf import settings


def set_tenant_context(tenant):
    """
    Set tenant context in Sentry for error tracking.

    Args:
        tenant: Tenant model instance
    """
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.set_context("tenant", {
        "id": str(tenant.id),
        "slug": tenant.slug,
        "status": tenant.status,
        "subscription_tier": tenant.subscription_tier,
    })
    sentry_sdk.set_tag("tenant_id", str(tenant.id))


def set_user_context(user, membership=None):
    """
    Set user context in Sentry. Only the id is sent; email stays out of Sentry.

    Args:
        user: User model instance
        membership: Optional Membership for the active tenant
    """
    if not settings.SENTRY_DSN:
        return

    user_data = {"id": str(user.id)}
    if membership is not None:
        user_data["tenant_id"] = str(membership.tenant_id)
        user_data["role"] = membership.role
    sentry_sdk.set_user(user_data)


def capture_message(message, level="info", **kwargs):
    """
    Capture a message in Sentry with optional context.

    Args:
        message: The message to capture
        level: Severity level (debug, info, warning, error, fatal)
        **kwargs: Context dictionaries to attach
    """
    if not settings.SENTRY_DSN:
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in kwargs.items():
            scope.set_context(key, value)
        sentry_sdk.capture_message(message, level=level)
