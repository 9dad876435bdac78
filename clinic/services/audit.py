from typing import Optional, Any, Dict
from django.contrib.auth import get_user_model
from clinic.models import AuditEvent

User = get_user_model()

def log_action(*, user: Optional[User], action: str, object_type: Optional[str]=None, object_id=None, detail: Optional[Dict[str, Any]]=None, tenant=None) -> AuditEvent:
    actor = user if isinstance(user, User) and getattr(user, 'pk', None) else None
    return AuditEvent.objects.create(
        user=actor,
        tenant=tenant or getattr(actor, 'tenant', None),
        action=action,
        object_type=object_type,
        object_id=str(object_id) if object_id is not None else None,
        detail=detail or {},
    )
