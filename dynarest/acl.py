#
# Record level access control
#
# Every record carries an ACL document in its "_acl" column:
#   {"public": 1, "owner": {"<user id>": 7}, "groups": {"<group>": 3}}
# The values are permission bitmasks, a user is granted an operation
# when the public bits, the bits of his user id or the bits of one of his groups
# contain the operation bit.
#
import copy
from typing import Any, Dict, Iterable, Mapping

from sqlalchemy import false, or_

import dynarest
from .errors import PermissionDeniedError, ValidationError

NIL = 0
READ = 1
UPDATE = 2
DELETE = 4
READ_UPDATE_DELETE = READ | UPDATE | DELETE

READ_OP = "READ"
UPDATE_OP = "UPDATE"
DELETE_OP = "DELETE"
ACL_BITS = {READ_OP: READ, UPDATE_OP: UPDATE, DELETE_OP: DELETE}

ACL_KEY = "_acl"
# placeholder replaced by the creating user's id in the default policy
CURRENT_USER = "CURRENT_USER"


def _has_bit(element, bit: int):
    return element.as_integer().op("&")(bit) != 0


def acl_clause(table, operation: str, user):
    """
    Build the filter granting `operation` to `user` on `table`
    :param table: table or alias carrying the ACL column
    :param operation: READ, UPDATE or DELETE
    :param user: dynarest.context.User
    :return: sqlalchemy clause
    """
    bit = ACL_BITS.get(operation)
    if bit is None:
        # unknown operations grant nothing
        dynarest.log.warning("Unknown ACL operation: %s", operation)
        return false()
    acl = table.c[ACL_KEY]
    clauses = [_has_bit(acl["public"], bit)]
    if user.id:
        clauses.append(_has_bit(acl[("owner", str(user.id))], bit))
    for group in user.groups:
        clauses.append(_has_bit(acl[("groups", group)], bit))
    return or_(*clauses)


def has_group(groups: Iterable[str], user) -> bool:
    return bool(set(groups) & set(user.groups))


def set_acl_defaults(acl: Dict[str, Any], user) -> Dict[str, Any]:
    """
    Replace the CURRENT_USER placeholder by the id of `user`,
    only used on records that aren't stored yet.
    Without user id the placeholder is removed
    """
    for prop in ("owner", "groups"):
        entries = acl.get(prop)
        if entries and CURRENT_USER in entries:
            perms = entries.pop(CURRENT_USER)
            if user.id:
                entries[str(user.id)] = perms
    return acl


def acl_create(policy, record: Dict[str, Any], user) -> Dict[str, Any]:
    """
    Check whether `user` may create records governed by `policy`
    and set the default ACL document on `record`
    """
    groups = list(policy.create)
    if groups and not has_group(groups, user):
        raise PermissionDeniedError(f"Failed ACL check on CREATE, requires one of [{','.join(groups)}] groups.")
    record[ACL_KEY] = set_acl_defaults(policy.default_document(), user)
    return record


def chown(acl: Mapping[str, Any], owner) -> Dict[str, Any]:
    """
    Change the owner of an ACL document
    :param owner: a user id, the current owner permissions are copied,
                  or a {user id: perms} mapping
    :return: the new ACL document
    """
    result = copy.deepcopy(dict(acl or {}))
    if isinstance(owner, str):
        new_owner = {}
        for perms in (result.get("owner") or {}).values():
            new_owner[owner] = perms
        result["owner"] = new_owner
    elif isinstance(owner, Mapping):
        if len(owner) != 1:
            raise ValidationError("Invalid object while setting acl owner, expecting {user._id: perms}.")
        result["owner"] = {str(uid): perms for uid, perms in owner.items()}
    else:
        raise ValidationError("Invalid acl owner")
    return result


def chgrp(acl: Mapping[str, Any], group: str, perms: int) -> Dict[str, Any]:
    result = copy.deepcopy(dict(acl or {}))
    groups = result.setdefault("groups", {})
    if group:
        groups[group] = perms
    return result
