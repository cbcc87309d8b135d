"""
The operations exposed by the HTTP layer.

The functions take an entity code (or an EntityModel), the request values and a
RequestContext. They run in the session of the caller, dynarest.DB.session by
default, the caller commits.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import insert as sql_insert

import dynarest
from .acl import ACL_KEY, DELETE_OP, READ_OP, UPDATE_OP, acl_create, chgrp, chown
from .attr_parse import apply_values, build_record, resolve_constants, validate_record
from .audit import stamp_insert, stamp_update
from .config import get_config
from .documents import add_computed, document_paths, shape_document
from .entity import BINARY, POST_FIND, POST_INSERT, POST_UPDATE, PRE_DELETE, PRE_INSERT, PRE_UPDATE, get_hook
from .errors import InvalidArgumentError, NotFoundError, NotImplementedApiError, ValidationError
from .query import COUNT, FIND, FIND_ONE, REMOVE, EntityQuery, build_find_one, build_query
from .registry import ID_KEY, EntityModel, get_registry
from .reverse import reverse_populate
from .select import Selection, build_selection
from .util import as_list, is_object_id, new_object_id

ACL_PERMS = range(0, 8)


def _resolve(entity, registry=None) -> Tuple[Any, EntityModel]:
    registry = registry or get_registry()
    if isinstance(entity, EntityModel):
        return registry, entity
    return registry, registry.lookup(entity)


def _session(session):
    return session if session is not None else dynarest.DB.session


def _check_id(object_id: Any) -> str:
    if not is_object_id(object_id):
        raise InvalidArgumentError(f"Invalid ID format: {object_id}")
    return object_id.lower()


def run_hooks(entity: EntityModel, event: str, document, ctx) -> None:
    for name in entity.definition.actions.get(event, ()):
        get_hook(name)(entity, document, ctx)


def _by_id(entity: EntityModel, object_id: str, operation: str, ctx, selection: Optional[Selection] = None) -> EntityQuery:
    query = EntityQuery(entity, operation, ctx, FIND_ONE)
    query.and_(entity.table.c[ID_KEY] == object_id)
    query.selection = selection if selection is not None else build_selection(entity)
    return query


def find(entity, query: Any, ctx, registry=None, session=None) -> Dict[str, Any]:
    """
    :return: {"items": documents, "fields": projected root paths}
    """
    registry, model = _resolve(entity, registry)
    session = _session(session)
    ctx.locals["entity"] = model.code
    entity_query = build_query(registry, model, query, ctx, READ_OP, FIND)
    items = entity_query.execute(session)
    if entity_query.reverse_populate:
        reverse_populate(session, items, entity_query.reverse_populate, ctx)
    for item in items:
        run_hooks(model, POST_FIND, item, ctx)
    fields = entity_query.selection.fields if entity_query.selection.apply_root else document_paths(model, None)
    return {"items": items, "fields": fields}


def find_by_id(entity, object_id: str, query: Any, ctx, registry=None, session=None) -> Dict[str, Any]:
    registry, model = _resolve(entity, registry)
    object_id = _check_id(object_id)
    session = _session(session)
    ctx.locals["entity"] = model.code
    entity_query = build_find_one(registry, model, object_id, query, ctx)
    item = entity_query.execute(session)
    if item is None:
        raise NotFoundError(f"{model.code} {object_id}")
    if entity_query.reverse_populate:
        reverse_populate(session, [item], entity_query.reverse_populate, ctx)
    run_hooks(model, POST_FIND, item, ctx)
    return item


def find_binary(entity, object_id: str, attribute: str, ctx, registry=None, session=None) -> Dict[str, Any]:
    """
    :return: {"filename", "mimetype", "size", "binaryData"}
    """
    registry, model = _resolve(entity, registry)
    attr = model.attributes.get(attribute)
    if attr is None or attr.datatype != BINARY:
        raise InvalidArgumentError(f"{model.code}.{attribute} is not a binary attribute")
    object_id = _check_id(object_id)
    selection = Selection(root={attribute: 1}, apply_root=True, explicit=True)
    item = _by_id(model, object_id, READ_OP, ctx, selection).execute(_session(session))
    value = (item or {}).get(attribute)
    if not value or value.get("binaryData") is None:
        raise NotFoundError(f"{model.code} {object_id} {attribute}")
    return {key: value.get(key) for key in ("filename", "mimetype", "size", "binaryData")}


def count(entity, query: Any, ctx, registry=None, session=None) -> Dict[str, int]:
    registry, model = _resolve(entity, registry)
    entity_query = build_query(registry, model, query, ctx, READ_OP, COUNT)
    return {"count": entity_query.execute(_session(session))}


def insert(entity, body: Mapping[str, Any], ctx, registry=None, session=None) -> Dict[str, Any]:
    """
    :return: {"item": the new document, "skippedFields": body keys that aren't attributes}
    """
    registry, model = _resolve(entity, registry)
    session = _session(session)
    body = dict(body or {})
    skipped = [key for key in body if not model.is_path(key)]

    record = build_record(model, body, ctx)
    acl_create(model.definition.acl, record, ctx.user)
    stamp_insert(model, record, ctx.user)
    record[ID_KEY] = new_object_id()
    record[model.version_key] = 0
    run_hooks(model, PRE_INSERT, record, ctx)

    row = model.to_row(record)
    session.execute(sql_insert(model.table).values(**row))
    dynarest.log.info(f"Inserted {model.code} {record[ID_KEY]}")

    item = add_computed(model, shape_document(model, row, build_selection(model).fields), ctx)
    run_hooks(model, POST_INSERT, item, ctx)
    return {"item": item, "skippedFields": skipped}


def update_by_id(entity, object_id: str, body: Mapping[str, Any], ctx, registry=None, session=None) -> Dict[str, Any]:
    registry, model = _resolve(entity, registry)
    object_id = _check_id(object_id)
    session = _session(session)
    body = dict(body or {})
    skipped = [key for key in body if not model.is_path(key)]

    entity_query = _by_id(model, object_id, UPDATE_OP, ctx)
    current = entity_query.execute(session)
    if current is None:
        raise NotFoundError(f"{model.code} {object_id}")

    changes = resolve_constants(model, apply_values(model, body), ctx.user)
    record = {code: current.get(code) for code in model.attributes}
    record.update(changes)
    validate_record(model, record)
    changes = {code: record[code] for code in changes}
    stamp_update(model, changes, ctx.user)
    run_hooks(model, PRE_UPDATE, changes, ctx)

    values = model.to_row(changes)
    values[model.version_key] = model.table.c[model.version_key] + 1
    if not session.execute(entity_query.update_statement(values)).rowcount:
        raise NotFoundError(f"{model.code} {object_id}")
    dynarest.log.info(f"Updated {model.code} {object_id}: {', '.join(changes)}")

    item = entity_query.execute(session)
    run_hooks(model, POST_UPDATE, item, ctx)
    return {"item": item, "skippedFields": skipped}


def delete_by_id(entity, object_id: str, ctx, registry=None, session=None) -> Dict[str, int]:
    registry, model = _resolve(entity, registry)
    object_id = _check_id(object_id)
    run_hooks(model, PRE_DELETE, [object_id], ctx)
    entity_query = EntityQuery(model, DELETE_OP, ctx, REMOVE)
    entity_query.and_(model.table.c[ID_KEY] == object_id)
    return {"deleted": _session(session).execute(entity_query.delete_statement()).rowcount}


def delete_batch(entity, ids: Any, ctx, registry=None, session=None) -> Dict[str, int]:
    registry, model = _resolve(entity, registry)
    if not ids:
        raise InvalidArgumentError('Request body must contain an "id" field containing the array of record ID values to delete.')
    object_ids = [_check_id(object_id) for object_id in as_list(ids)]
    run_hooks(model, PRE_DELETE, object_ids, ctx)
    entity_query = EntityQuery(model, DELETE_OP, ctx, REMOVE)
    entity_query.and_(model.table.c[ID_KEY].in_(object_ids))
    return {"deleted": _session(session).execute(entity_query.delete_statement()).rowcount}


def delete_by_query(entity, query: Any, ctx, registry=None, session=None) -> Dict[str, int]:
    registry, model = _resolve(entity, registry)
    if not get_config("ALLOW_DELETE_BY_QUERY"):
        raise NotImplementedApiError(f"Delete by query is disabled for {model.code}")
    entity_query = build_query(registry, model, query, ctx, DELETE_OP, REMOVE)
    return {"deleted": _session(session).execute(entity_query.delete_statement()).rowcount}


def _change_acl(model: EntityModel, object_id: str, ctx, session, change) -> Dict[str, Any]:
    selection = Selection(root={ACL_KEY: 1}, apply_root=True, explicit=True)
    entity_query = _by_id(model, object_id, UPDATE_OP, ctx, selection)
    item = entity_query.execute(session)
    if item is None:
        raise NotFoundError(f"{model.code} {object_id}")
    acl = change(copy.deepcopy(item[ACL_KEY] or {}))
    values = model.to_row(stamp_update(model, {ACL_KEY: acl}, ctx.user))
    values[model.version_key] = model.table.c[model.version_key] + 1
    session.execute(entity_query.update_statement(values))
    return {ID_KEY: object_id, ACL_KEY: acl}


def change_owner(entity, object_id: str, owner: Any, ctx, registry=None, session=None) -> Dict[str, Any]:
    """
    :param owner: user id, the permissions of the current owner are kept, or {user id: perms}
    """
    registry, model = _resolve(entity, registry)
    object_id = _check_id(object_id)
    if not owner:
        raise ValidationError("An owner is required")
    return _change_acl(model, object_id, ctx, _session(session), lambda acl: chown(acl, owner))


def change_group(entity, object_id: str, group: str, perms: Any, ctx, registry=None, session=None) -> Dict[str, Any]:
    registry, model = _resolve(entity, registry)
    object_id = _check_id(object_id)
    try:
        perms = int(perms)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid permissions: {perms}")
    if perms not in ACL_PERMS:
        raise ValidationError(f"Invalid permissions: {perms}")
    return _change_acl(model, object_id, ctx, _session(session), lambda acl: chgrp(acl, group, perms))
