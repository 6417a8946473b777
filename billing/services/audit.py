import logging
from typing import Optional, Any, Dict

from django.contrib.auth import get_user_model

from billing.models import AuditEvent

User = get_user_model()
logger = logging.getLogger(__name__)


def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id: Optional[Any]=None, detail: Optional[Dict[str, Any]]=None) -> AuditEvent:
    return AuditEvent.objects.create(
        user=user if isinstance(user, User) and getattr(user, 'pk', None) else None,
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail or {},
    )


def log_security_event(action: str, *, object_type: Optional[str]=None, object_id: Optional[Any]=None, detail: Optional[Dict[str, Any]]=None) -> None:
    """Log a warning and persist an audit row for a rejected or suspicious request."""
    logger.warning('security event %s on %s/%s: %s', action, object_type, object_id, detail)
    log_action(user=None, action=action, object_type=object_type, object_id=object_id, detail=detail)
