"""
Celery configuration for Siteline.

The only worker duty is the audit trail: apps.rbac.tasks.* is routed to the
'audit' queue in settings.
"""
import os
from celery import Celery
from celery.signals import task_prerun, task_postrun, task_failure, task_retry
import logging

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('siteline')

# Load configuration from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    """Log task start."""
    logger.info(
        f"Task started: {task.name}",
        extra={'task_id': task_id, 'task_name': task.name},
    )


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, retval=None, **extra):
    """Log task completion."""
    logger.info(
        f"Task completed: {task.name}",
        extra={
            'task_id': task_id,
            'task_name': task.name,
            'result': str(retval)[:200] if retval else None,
        },
    )


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **extra):
    """Log task failure and send to Sentry."""
    logger.error(
        f"Task failed: {sender.name}",
        extra={
            'task_id': task_id,
            'task_name': sender.name,
            'exception': str(exception)[:500] if exception else None,
        },
        exc_info=einfo.exc_info if einfo else None,
    )

    from apps.core.sentry_utils import capture_message
    capture_message(
        f"Task failed: {sender.name}",
        level='error',
        task={'task_id': task_id, 'task_name': sender.name, 'exception': str(exception)[:500]},
    )


@task_retry.connect
def task_retry_handler(sender=None, request=None, reason=None, **extra):
    """Log task retry."""
    logger.warning(
        f"Task retry: {sender.name}",
        extra={
            'task_id': getattr(request, 'id', None),
            'task_name': sender.name,
            'reason': str(reason)[:200] if reason else None,
            'retry_count': getattr(request, 'retries', 0),
        },
    )
