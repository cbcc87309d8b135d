"""Entity definitions.

An :class:`EntityDefinition` describes the shape of one collection: its attributes,
access control policy, audit fields and relations. Definitions are built once
(see :mod:`dynarest.definitions`) and never mutated afterwards, the registry
compiles them into tables.

Behaviour that can't be expressed declaratively (default values, computed
attributes, entity actions) is provided through python callables registered by
name with :func:`register_hook`. Configuration only ever refers to hooks by name.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .acl import CURRENT_USER, READ_UPDATE_DELETE
from .errors import GenericError
from .util import utcnow

Hook = Callable[..., Any]

# datatypes
STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
DATE = "date"
OBJECTID = "objectid"
BINARY = "binary"
POINT = "point"
MIXED = "mixed"
VIRTUAL = "virtual"
ARRAY = "array"

SCALAR_TYPES = (STRING, NUMBER, BOOLEAN, DATE, OBJECTID)
DATATYPES = SCALAR_TYPES + (BINARY, POINT, MIXED, VIRTUAL, ARRAY)
TYPE_ALIASES = {
    "connector": OBJECTID,
    "datetime": DATE,
    "integer": NUMBER,
    "int32": NUMBER,
    "int64": NUMBER,
    "float": NUMBER,
    "double": NUMBER,
}

# entity action events
PRE_INSERT = "pre_insert"
POST_INSERT = "post_insert"
PRE_UPDATE = "pre_update"
POST_UPDATE = "post_update"
PRE_DELETE = "pre_delete"
POST_FIND = "post_find"
EVENTS = (PRE_INSERT, POST_INSERT, PRE_UPDATE, POST_UPDATE, PRE_DELETE, POST_FIND)

_HOOKS: Dict[str, Hook] = {}


def register_hook(name: str, func: Optional[Hook] = None):
    """Register a callable under `name`, can be used as a decorator:

    @register_hook("running")
    def running(entity, document, ctx):
        document["running"] = True
    """

    def decorator(fun: Hook) -> Hook:
        _HOOKS[name] = fun
        return fun

    if func is not None:
        return decorator(func)
    return decorator


def get_hook(name: str) -> Hook:
    try:
        return _HOOKS[name]
    except KeyError:
        raise GenericError(f"No hook registered with name '{name}'")


@dataclass(frozen=True)
class DefaultRule:
    """Produces the default value of an attribute when a record is created"""

    CONSTANT = "constant"
    NOW = "now"
    CURRENT_USER = "current_user"
    HOOK = "hook"

    kind: str = CONSTANT
    value: Any = None
    # user attribute for CURRENT_USER rules
    field: str = "username"
    hook: Optional[str] = None

    def evaluate(self, ctx) -> Any:
        if self.kind == self.NOW:
            return utcnow()
        if self.kind == self.CURRENT_USER:
            return getattr(ctx.user, self.field, None)
        if self.kind == self.HOOK:
            return get_hook(self.hook)(ctx)
        return copy.deepcopy(self.value)


@dataclass(frozen=True)
class ComputedRule:
    """Computes the value of a virtual attribute from a document"""

    CONCAT = "concat"
    CURRENT_USER = "current_user"
    HOOK = "hook"

    kind: str = CONCAT
    fields: Tuple[str, ...] = ()
    separator: str = " "
    field: str = "username"
    hook: Optional[str] = None

    def compute(self, document: Mapping[str, Any], ctx) -> Any:
        if self.kind == self.CURRENT_USER:
            return getattr(ctx.user, self.field, None)
        if self.kind == self.HOOK:
            return get_hook(self.hook)(document, ctx)
        values = [str(document[name]) for name in self.fields if document.get(name) not in (None, "")]
        return self.separator.join(values).strip()


@dataclass(frozen=True)
class Attribute:
    code: str
    datatype: str = STRING
    name: str = ""
    description: str = ""
    # datatype of the array items when datatype is ARRAY
    items: Optional[str] = None
    required: bool = False
    default: Optional[DefaultRule] = None
    min: Any = None
    max: Any = None
    enum: Optional[Tuple[Any, ...]] = None
    match: Optional[str] = None
    uppercase: bool = False
    lowercase: bool = False
    trim: bool = True
    index: bool = False
    connect_entity: Optional[str] = None
    order: int = 10000
    textsearch: int = 0
    csv: bool = True
    computed: Optional[ComputedRule] = None

    @property
    def is_json(self) -> bool:
        """stored as a JSON document"""
        return self.datatype in (BINARY, POINT, MIXED, ARRAY)


@dataclass(frozen=True)
class AclPolicy:
    # groups allowed to create records, empty means everybody
    create: Tuple[str, ...] = ()
    public: int = READ_UPDATE_DELETE
    owner: Mapping[str, int] = field(default_factory=lambda: {CURRENT_USER: READ_UPDATE_DELETE})
    groups: Mapping[str, int] = field(default_factory=dict)

    def default_document(self) -> Dict[str, Any]:
        return {"public": self.public, "owner": dict(self.owner), "groups": dict(self.groups)}


@dataclass(frozen=True)
class AuditPolicy:
    enabled: bool = True
    created_by: str = "createdBy"
    updated_by: str = "updatedBy"
    created_at: str = "createdDate"
    updated_at: str = "updatedDate"


@dataclass(frozen=True)
class EntityDefinition:
    """Static description of one collection"""

    code: str
    name: str = ""
    # sorted by order, then code
    attributes: Tuple[Attribute, ...] = ()
    acl: AclPolicy = field(default_factory=AclPolicy)
    audit: AuditPolicy = field(default_factory=AuditPolicy)
    csv: bool = True
    collection: Optional[str] = None
    # SQL collation name applied when sorting strings
    collation: Optional[str] = None
    base_filter: str = ""
    methods: Tuple[str, ...] = ("GET", "POST", "PUT", "DELETE")
    # event => hook names
    actions: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    seed: Tuple[Mapping[str, Any], ...] = ()

    @property
    def table_name(self) -> str:
        return self.collection or self.code

    def attribute(self, code: str) -> Optional[Attribute]:
        for attribute in self.attributes:
            if attribute.code == code:
                return attribute
        return None
