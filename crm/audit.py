from flask_login import current_user

from . import db
from .models import AuditLog


def _actor_id(performed_by):
    if performed_by is not None:
        return getattr(performed_by, "id", performed_by)
    try:
        return current_user.id if current_user.is_authenticated else None
    except (AttributeError, RuntimeError):
        # outside a request (scheduler thread, CLI): system action
        return None


def log_audit(entity, entity_id, action, field=None, old=None, new=None, description=None, performed_by=None):
    """Stage an AuditLog row in the current transaction; the caller commits."""
    log = AuditLog(
        entity=entity,
        entity_id=entity_id,
        action=action,
        field=field,
        old_value=str(old) if old is not None else None,
        new_value=str(new) if new is not None else None,
        description=description,
        performed_by_id=_actor_id(performed_by),
    )
    db.session.add(log)
    return log
