"""
Celery tasks for asynchronous audit writes.
"""
import logging
from celery import shared_task
from django.conf import settings

from apps.core.exceptions import AuditWriteError

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='apps.rbac.tasks.write_audit_entry')
def write_audit_entry(self, entry):
    """
    Persist one audit entry, retrying with exponential backoff.

    After AUDIT_MAX_RETRIES retries the entry is dead-lettered instead of
    failing the task.

    Args:
        entry: Payload built by apps.rbac.audit.build_entry

    Returns:
        Dict with status ('written', 'duplicate' or 'dead_lettered')
    """
    from apps.rbac.audit import AuditRecorder

    max_retries = settings.AUDIT_MAX_RETRIES
    try:
        written = AuditRecorder.persist(entry)
    except AuditWriteError as exc:
        if self.request.retries >= max_retries:
            AuditRecorder.dead_letter(entry, exc, self.request.retries + 1)
            return {'status': 'dead_lettered', 'entry_id': entry['id']}

        countdown = settings.AUDIT_RETRY_BACKOFF * (2 ** self.request.retries)
        logger.warning(
            f"Audit write failed, retry {self.request.retries + 1}/{max_retries}",
            extra={'tenant_id': entry.get('tenant_id'), 'audit_action': entry.get('action')},
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_retries)

    return {'status': 'written' if written else 'duplicate', 'entry_id': entry['id']}
