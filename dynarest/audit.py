from typing import Any, Dict

from .util import utcnow

UNDEFINED_USER = "Undefined"


def modified_by(user) -> str:
    return user.email or user.username or UNDEFINED_USER


def stamp_insert(entity, record: Dict[str, Any], user) -> Dict[str, Any]:
    """
    Set the created/updated audit fields of a new record
    """
    audit = entity.definition.audit
    if not audit.enabled:
        return record
    now = utcnow()
    record[audit.created_by] = record[audit.updated_by] = modified_by(user)
    record[audit.created_at] = record[audit.updated_at] = now
    return record


def stamp_update(entity, changes: Dict[str, Any], user) -> Dict[str, Any]:
    audit = entity.definition.audit
    if audit.enabled:
        changes[audit.updated_by] = modified_by(user)
        changes[audit.updated_at] = utcnow()
    return changes
