"""
Tenant-scoped storage access.

Every read and write of tenant-owned rows goes through a
TenantScopedRepository, which requires the TenantScope produced by
AccessPolicy.authorize and pins each query to scope.tenant_id.

storage_call wraps the database work: on PostgreSQL it sets a
statement timeout and the app.current_tenant setting consulted by the
row-level security policies, and it maps timeouts to StorageTimeoutError.
"""
import logging
from contextlib import contextmanager

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.db import OperationalError, connection, transaction

from apps.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    StorageTimeoutError,
    UnscopedQueryError,
    ValidationError,
)
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for query_canceled (statement_timeout and cancel requests)
QUERY_CANCELED = '57014'

TIMEOUT_MARKERS = (
    'statement timeout',
    'canceling statement',
    'timeout expired',
    'database is locked',
)

_ENTITY_REGISTRY = {}


def tenant_resource(entity_type):
    """
    Class decorator registering a TenantScopedModel under an entity type name.

    Usage:
        @tenant_resource('project')
        class Project(TenantScopedModel):
            ...
    """
    def decorator(model):
        _ENTITY_REGISTRY[entity_type] = model
        model.entity_type = entity_type
        return model
    return decorator


def get_entity_model(entity_type):
    try:
        return _ENTITY_REGISTRY[entity_type]
    except KeyError:
        raise ValidationError(
            f"Unknown entity type: {entity_type}",
            {'entity_type': entity_type}
        )


def registered_entity_types():
    return sorted(_ENTITY_REGISTRY)


def registered_models():
    """(entity_type, model) pairs in registration order, parents before children."""
    return list(_ENTITY_REGISTRY.items())


def _is_timeout(exc):
    cause = exc.__cause__
    sqlstate = getattr(cause, 'sqlstate', None) or getattr(cause, 'pgcode', None)
    if sqlstate == QUERY_CANCELED:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TIMEOUT_MARKERS)


def _set_local(cursor, name, value):
    # set_config(..., true) is SET LOCAL with bind parameters
    cursor.execute("SELECT set_config(%s, %s, true)", [name, str(value)])


@contextmanager
def storage_call(tenant_id=None, timeout_ms=None, bypass_rls=False):
    """
    Run a block of storage work in a transaction with a bounded duration.

    Args:
        tenant_id: Tenant the work is pinned to (sets app.current_tenant)
        timeout_ms: Statement timeout, defaults to settings.STORAGE_TIMEOUT_MS
        bypass_rls: Allow rows of any tenant; used only by audited repair paths

    Raises:
        StorageTimeoutError: When the database cancels or times out the work.
    """
    timeout_ms = timeout_ms or settings.STORAGE_TIMEOUT_MS
    try:
        with transaction.atomic():
            if connection.vendor == 'postgresql':
                with connection.cursor() as cursor:
                    _set_local(cursor, 'statement_timeout', int(timeout_ms))
                    if tenant_id is not None:
                        _set_local(cursor, 'app.current_tenant', tenant_id)
                    if bypass_rls:
                        _set_local(cursor, 'app.rls_bypass', 'on')
            yield
    except OperationalError as exc:
        if _is_timeout(exc):
            logger.error(
                "Storage call timed out",
                extra={'tenant_id': tenant_id, 'timeout_ms': timeout_ms},
            )
            raise StorageTimeoutError(
                'Storage did not respond in time',
                {'timeout_ms': timeout_ms}
            ) from exc
        raise


class TenantScopedRepository:
    """
    CRUD access to one tenant-owned model, always filtered by a TenantScope.

    A cross-tenant lookup raises NotFoundError exactly like a missing row.
    Explicitly naming another tenant in a filter, record, or patch raises
    ForbiddenError.
    """

    TENANT_KEYS = ('tenant', 'tenant_id')

    def __init__(self, model, entity_type=None):
        self.model = model
        self.entity_type = entity_type or getattr(model, 'entity_type', model._meta.model_name)

    @classmethod
    def for_entity(cls, entity_type):
        return cls(get_entity_model(entity_type), entity_type)

    def _require_scope(self, scope):
        # Imported here; apps.rbac.policy depends on the rbac models.
        from apps.rbac.policy import TenantScope

        if not isinstance(scope, TenantScope) or scope.tenant_id is None:
            logger.error(
                "Unscoped data access attempted",
                extra={'entity_type': self.entity_type},
            )
            raise UnscopedQueryError(f"A TenantScope is required to access {self.entity_type}")
        return scope

    def _check_tenant_values(self, scope, values):
        for key in self.TENANT_KEYS:
            if key not in values:
                continue
            value = values[key]
            named = getattr(value, 'pk', value)
            if named is None or str(named) != str(scope.tenant_id):
                SecurityLogger.log_cross_tenant_attempt(
                    scope.user_id, scope.tenant_id, named, scope.action, self.entity_type
                )
                raise ForbiddenError('cross_tenant')

    def _scoped_queryset(self, scope):
        return self.model.objects.filter(**scope.as_filter())

    def find(self, scope, **filters):
        """Rows of the scoped tenant matching filters, as a list."""
        scope = self._require_scope(scope)
        self._check_tenant_values(scope, filters)
        filters = {key: value for key, value in filters.items() if key not in self.TENANT_KEYS}
        with storage_call(scope.tenant_id):
            return list(self._scoped_queryset(scope).filter(**filters))

    def count(self, scope, **filters):
        scope = self._require_scope(scope)
        self._check_tenant_values(scope, filters)
        filters = {key: value for key, value in filters.items() if key not in self.TENANT_KEYS}
        with storage_call(scope.tenant_id):
            return self._scoped_queryset(scope).filter(**filters).count()

    def get(self, scope, id, for_update=False):
        """
        Fetch one row of the scoped tenant.

        Raises:
            NotFoundError: Missing row, or a row owned by another tenant.
        """
        scope = self._require_scope(scope)
        with storage_call(scope.tenant_id):
            queryset = self._scoped_queryset(scope)
            if for_update:
                queryset = queryset.select_for_update()
            try:
                return queryset.get(pk=id)
            except (ObjectDoesNotExist, DjangoValidationError, ValueError):
                raise NotFoundError(
                    f"{self.entity_type.capitalize()} not found",
                    {'entity_type': self.entity_type, 'id': str(id)}
                )

    def insert(self, scope, record):
        """Create a row in the scoped tenant, created by the scoped user."""
        scope = self._require_scope(scope)
        record = dict(record)
        self._check_tenant_values(scope, record)
        for key in self.TENANT_KEYS:
            record.pop(key, None)
        record.pop('created_by', None)
        record['tenant_id'] = scope.tenant_id
        record['created_by_id'] = scope.user_id
        with storage_call(scope.tenant_id):
            instance = self.model(**record)
            instance.save(force_insert=True)
        return instance

    def update(self, scope, id, patch):
        """Apply patch to a row of the scoped tenant. Tenant can never change."""
        scope = self._require_scope(scope)
        patch = dict(patch)
        self._check_tenant_values(scope, patch)
        protected = set(getattr(self.model, 'PROTECTED_FIELDS', ())) - set(self.TENANT_KEYS)
        illegal = sorted(protected.intersection(patch))
        if illegal:
            raise ValidationError(
                'Read-only fields cannot be updated',
                {'fields': illegal}
            )
        for key in self.TENANT_KEYS:
            patch.pop(key, None)

        with storage_call(scope.tenant_id):
            instance = self.get(scope, id, for_update=True)
            for field, value in patch.items():
                setattr(instance, field, value)
            if patch:
                instance.save()
        return instance

    def delete(self, scope, id):
        scope = self._require_scope(scope)
        with storage_call(scope.tenant_id):
            instance = self.get(scope, id, for_update=True)
            instance.delete()
        return instance
