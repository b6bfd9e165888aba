"""
Structured logging for Siteline: PII masking, JSON output, and security events.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    PHONE_PATTERN = re.compile(r'\+?\d{10,15}')
    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    SECRET_PATTERN = re.compile(
        r'(api[_-]?key|token|secret|password|authorization)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)',
        re.IGNORECASE
    )
    BEARER_PATTERN = re.compile(r'Bearer\s+[A-Za-z0-9\-_.]+', re.IGNORECASE)

    SENSITIVE_FIELDS = {
        'password', 'password_hash',
        'token', 'access_token', 'refresh_token', 'authorization',
        'secret', 'secret_key', 'jwt',
        'phone', 'phone_number',
    }

    # Email addresses in these keys are masked, not blanked.
    EMAIL_FIELDS = {'email', 'user_email', 'owner_email'}

    @classmethod
    def mask_phone(cls, text):
        if not isinstance(text, str):
            return text
        return cls.PHONE_PATTERN.sub(lambda m: m.group(0)[:3] + '*' * (len(m.group(0)) - 3), text)

    @classmethod
    def mask_email(cls, text):
        """Mask the local part of email addresses, keeping the first character."""
        if not isinstance(text, str):
            return text

        def _mask(match):
            local, _, domain = match.group(0).partition('@')
            if len(local) > 1:
                local = local[0] + '*' * (len(local) - 1)
            return f"{local}@{domain}"

        return cls.EMAIL_PATTERN.sub(_mask, text)

    @classmethod
    def mask_secrets(cls, text):
        if not isinstance(text, str):
            return text
        text = cls.BEARER_PATTERN.sub('Bearer ********', text)
        return cls.SECRET_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_secrets(text)
        text = cls.mask_email(text)
        text = cls.mask_phone(text)
        return text

    @classmethod
    def mask_value(cls, value):
        if isinstance(value, dict):
            return cls.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [cls.mask_value(item) for item in value]
        if isinstance(value, str):
            return cls.mask_text(value)
        return value

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            lowered = str(key).lower()
            if lowered in cls.EMAIL_FIELDS and isinstance(value, str):
                masked[key] = cls.mask_email(value)
            elif any(sensitive in lowered for sensitive in cls.SENSITIVE_FIELDS):
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            else:
                masked[key] = cls.mask_value(value)
        return masked


# LogRecord attributes that are never copied into the JSON payload as extras.
_RESERVED_ATTRS = frozenset({
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'request_id', 'tenant_id',
    'task_id', 'task_name',
})


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and tenant_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for attr in ('request_id', 'tenant_id', 'task_id', 'task_name'):
            value = getattr(record, attr, None)
            if value is not None:
                log_data[attr] = str(value)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            masked_value = PIIMasker.mask_value(value)
            try:
                json.dumps(masked_value)
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for authorization and tenant-isolation events.

    Every denial the access policy produces is recorded here with its
    internal reason, since the API itself only ever answers
    "Not authorized". Cross-tenant attempts and dead-lettered audit entries
    are also forwarded to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'cross_tenant_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'permission_denied')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (user_id, tenant_id, reason, ...)
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_time': timezone.now().isoformat(),
        }
        log_data.update({key: value for key, value in context.items() if value is not None})
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(f"Security event: {event_type}", extra=log_data)

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_permission_denied(user_id, tenant_id, action: str, reason: str, required_role: str = None):
        """
        Log a denied authorization decision.

        Args:
            user_id: Acting user ID
            tenant_id: Tenant the action targeted
            action: Action name (e.g. 'read', 'project.update')
            reason: Internal denial reason (no_membership, cross_tenant, ...)
            required_role: Role that was required, if any
        """
        SecurityLogger.log_event(
            'permission_denied',
            level='warning',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            action=action,
            reason=reason,
            required_role=required_role,
        )

    @staticmethod
    def log_cross_tenant_attempt(user_id, tenant_id, resource_tenant_id, action: str, entity_type: str = None):
        """Log an attempt to touch a row owned by a different tenant."""
        SecurityLogger.log_event(
            'cross_tenant_attempt',
            level='error',
            user_id=str(user_id) if user_id else None,
            tenant_id=str(tenant_id) if tenant_id else None,
            resource_tenant_id=str(resource_tenant_id) if resource_tenant_id else None,
            action=action,
            entity_type=entity_type,
        )

    @staticmethod
    def log_invalid_token(reason: str, ip_address: str = None, path: str = None):
        SecurityLogger.log_event(
            'invalid_token',
            level='warning',
            reason=reason,
            ip_address=ip_address,
            path=path,
        )

    @staticmethod
    def log_failed_login(email: str, ip_address: str = None, reason: str = None):
        SecurityLogger.log_event(
            'failed_login',
            level='warning',
            email=email,
            ip_address=ip_address,
            reason=reason,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, user_id=None, limit: str = None):
        """
        Log a rate limit violation.

        Args:
            endpoint: API endpoint that was rate limited
            ip_address: IP address of the request
            user_id: Acting user (if authenticated)
            limit: Rate limit that was exceeded (e.g., '10/h')
        """
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            user_id=str(user_id) if user_id else None,
            limit=limit,
        )

    @staticmethod
    def log_audit_dead_letter(entry: dict, error: str, attempts: int):
        """
        Record an audit entry that could not be persisted after all retries.

        The entry goes to the 'audit.deadletter' logger (its own JSON file)
        so it can be replayed later, and a security event is logged.
        """
        logging.getLogger('audit.deadletter').error(
            "Audit entry dead-lettered",
            extra={'audit_entry': entry, 'error': error, 'attempts': attempts},
        )
        SecurityLogger.log_event(
            'audit_dead_letter',
            level='error',
            tenant_id=entry.get('tenant_id'),
            audit_action=entry.get('action'),
            entity_type=entry.get('entity_type'),
            entity_id=entry.get('entity_id'),
            error=error,
            attempts=attempts,
        )
