"""
Audit/activity recorder.

AuditRecorder.record is called by services after every mutation. It never
raises: entries are written after the surrounding transaction commits
(inline or through Celery, per settings.AUDIT_DISPATCH), storage failures
are retried with exponential backoff (bounded in total when writing inline),
and entries that still cannot be written go to the dead-letter log.
"""
import json
import logging
import time
import uuid

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from apps.core.exceptions import AuditWriteError
from apps.core.logging import SecurityLogger
from apps.core.sentry_utils import capture_message
from apps.rbac.models import AuditEntry

logger = logging.getLogger(__name__)

DISPATCH_SYNC = 'sync'
DISPATCH_CELERY = 'celery'


def build_entry(tenant_id, actor_user_id, action, entity_type, entity_id, metadata=None, request=None):
    """Serializable audit payload; the id is fixed here so retries stay idempotent."""
    metadata = dict(metadata or {})
    if request is not None and getattr(request, 'request_id', None):
        metadata.setdefault('request_id', request.request_id)
    return {
        'id': str(uuid.uuid4()),
        'tenant_id': str(tenant_id),
        'actor_user_id': str(actor_user_id) if actor_user_id else None,
        'action': action,
        'entity_type': entity_type,
        'entity_id': str(entity_id),
        'timestamp': timezone.now().isoformat(),
        'metadata': json.loads(json.dumps(metadata, cls=DjangoJSONEncoder)),
    }


class AuditRecorder:
    """Writes AuditEntry rows without ever failing the calling operation."""

    @classmethod
    def record(cls, tenant_id, actor_user_id, action, entity_type, entity_id, metadata=None, request=None):
        """
        Schedule an audit entry for the current transaction.

        Returns the entry payload. Nothing is written if the transaction
        rolls back.
        """
        entry = None
        try:
            entry = build_entry(tenant_id, actor_user_id, action, entity_type, entity_id, metadata, request)
            if settings.AUDIT_DISPATCH == DISPATCH_CELERY:
                transaction.on_commit(lambda: cls._enqueue(entry))
            else:
                transaction.on_commit(lambda: cls.write_inline(entry))
        except Exception as exc:
            logger.error(
                "Failed to schedule audit entry",
                extra={'audit_action': action, 'tenant_id': tenant_id},
                exc_info=True,
            )
            cls.dead_letter(entry or {'tenant_id': str(tenant_id), 'action': action,
                                      'entity_type': entity_type, 'entity_id': str(entity_id)}, exc, 0)
        return entry

    @classmethod
    def _enqueue(cls, entry):
        from apps.rbac.tasks import write_audit_entry

        try:
            write_audit_entry.apply_async(kwargs={'entry': entry}, queue='audit')
        except Exception as exc:
            # Broker unavailable: fall back to an inline write
            logger.warning(
                f"Audit queue unavailable, writing inline: {exc}",
                extra={'tenant_id': entry['tenant_id'], 'audit_action': entry['action']},
            )
            cls.write_inline(entry)

    @classmethod
    def persist(cls, entry):
        """
        Insert the entry. A row with the same id means an earlier attempt
        already succeeded.

        Raises:
            AuditWriteError: On any storage failure.
        """
        try:
            with transaction.atomic():
                if AuditEntry.objects.filter(id=entry['id']).exists():
                    return False
                AuditEntry(
                    id=uuid.UUID(entry['id']),
                    tenant_id=uuid.UUID(entry['tenant_id']),
                    actor_user_id=uuid.UUID(entry['actor_user_id']) if entry.get('actor_user_id') else None,
                    action=entry['action'],
                    entity_type=entry['entity_type'],
                    entity_id=entry['entity_id'],
                    timestamp=parse_datetime(entry['timestamp']) or timezone.now(),
                    metadata=entry.get('metadata') or {},
                ).save()
        except DatabaseError as exc:
            raise AuditWriteError(f"Could not write audit entry: {exc}") from exc
        return True

    @classmethod
    def write_inline(cls, entry):
        """
        Write in the calling thread, keeping total retry sleep within
        AUDIT_INLINE_MAX_DELAY seconds. Longer backoff is left to the worker.
        """
        return cls.write_with_retry(entry, max_delay=settings.AUDIT_INLINE_MAX_DELAY)

    @classmethod
    def write_with_retry(cls, entry, max_retries=None, backoff=None, max_delay=None, sleep=None):
        """
        Persist with bounded exponential backoff, dead-lettering on exhaustion.

        Retrying stops after max_retries, or earlier when the next sleep
        would take the total past max_delay seconds.

        Returns True when the entry was written.
        """
        max_retries = settings.AUDIT_MAX_RETRIES if max_retries is None else max_retries
        backoff = settings.AUDIT_RETRY_BACKOFF if backoff is None else backoff
        sleep = sleep or time.sleep

        attempt = 0
        slept = 0.0
        while True:
            attempt += 1
            try:
                cls.persist(entry)
                return True
            except AuditWriteError as exc:
                delay = backoff * (2 ** (attempt - 1))
                over_budget = max_delay is not None and slept + delay > max_delay
                if attempt > max_retries or over_budget:
                    cls.dead_letter(entry, exc, attempt)
                    return False
                logger.warning(
                    f"Audit write failed (attempt {attempt}), retrying in {delay}s",
                    extra={'tenant_id': entry.get('tenant_id'), 'audit_action': entry.get('action')},
                )
                sleep(delay)
                slept += delay

    @classmethod
    def dead_letter(cls, entry, error, attempts):
        SecurityLogger.log_audit_dead_letter(entry, str(error), attempts)
        capture_message(
            "Audit entry dead-lettered",
            level="error",
            audit_entry={key: entry.get(key) for key in ('id', 'tenant_id', 'action', 'entity_type', 'entity_id')},
        )
