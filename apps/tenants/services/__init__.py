"""
Services for tenant and subscription management.
"""
from .tenant_service import TenantService
from .subscription_service import SubscriptionService

__all__ = [
    'TenantService',
    'SubscriptionService',
]
