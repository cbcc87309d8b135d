"""
Parse entity definitions from configuration.

The configuration is a mapping of entity code to entity settings, usually read
from a YAML (or JSON) file with :func:`load_definitions`:

    address:
      name: Address
      acl:
        create: [public]
        default: {public: 4, owner: {CURRENT_USER: 7}}
      attributes:
        city:
          type: string
          default: New York
          textsearch: 5
        zip: {type: string, match: "^[0-9]{5}$"}

Invalid configuration raises ValueError, definitions are checked once at startup.
"""
from __future__ import annotations

import datetime
import re
from typing import Any, Dict, Mapping, Optional

import yaml

import dynarest
from .acl import CURRENT_USER, READ_UPDATE_DELETE
from .entity import (
    ARRAY,
    BINARY,
    BOOLEAN,
    DATATYPES,
    DATE,
    EVENTS,
    NUMBER,
    OBJECTID,
    STRING,
    TYPE_ALIASES,
    VIRTUAL,
    AclPolicy,
    Attribute,
    AuditPolicy,
    ComputedRule,
    DefaultRule,
    EntityDefinition,
)
from .util import as_list, to_title_case

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE")
DEFAULT_ORDER = 10000
STRING_MAX_LENGTH = 255


def load_definitions(path: str) -> Dict[str, Any]:
    """
    Read a YAML or JSON definitions file
    :return: raw configuration mapping, see parse_definitions
    """
    with open(path, encoding="utf-8") as definitions_file:
        raw = yaml.safe_load(definitions_file)
    if not isinstance(raw, Mapping):
        raise ValueError(f"Invalid entity definitions in {path}")
    return dict(raw)


def _datatype(raw: Any) -> str:
    datatype = TYPE_ALIASES.get(str(raw).lower(), str(raw).lower())
    if datatype not in DATATYPES:
        raise ValueError(f"Unknown datatype: {raw}")
    return datatype


def _parse_date(value: Any) -> Optional[datetime.datetime]:
    if value is None or isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    parsed = datetime.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


def parse_default(datatype: str, value: Any) -> Optional[DefaultRule]:
    """
    Derive the default rule of an attribute from its configured default value
    """
    if value is None:
        return None
    if isinstance(value, Mapping) and "kind" in value:
        return DefaultRule(**value)
    if not isinstance(value, str):
        return DefaultRule(DefaultRule.CONSTANT, value)
    lowered = value.lower()
    if datatype == BOOLEAN:
        if lowered in ("true", "false"):
            return DefaultRule(DefaultRule.CONSTANT, lowered == "true")
        return None
    if datatype == NUMBER:
        try:
            return DefaultRule(DefaultRule.CONSTANT, float(value))
        except ValueError:
            return None
    if datatype == DATE:
        if lowered == "now":
            return DefaultRule(DefaultRule.NOW)
        dynarest.log.warning(f"Ignoring date default '{value}', only 'now' is supported")
        return None
    return DefaultRule(DefaultRule.CONSTANT, value)


def parse_computed(spec: Any) -> Optional[ComputedRule]:
    if not spec:
        return None
    if not isinstance(spec, Mapping):
        raise ValueError(f"Invalid computed rule: {spec}")
    spec = dict(spec)
    if "fields" in spec:
        spec["fields"] = tuple(as_list(spec["fields"]))
    return ComputedRule(**spec)


def parse_attribute(code: str, spec: Any) -> Attribute:
    if isinstance(spec, (str, list)):
        spec = {"type": spec}
    spec = dict(spec or {})
    raw_type = spec.get("type", STRING)
    items = None
    if isinstance(raw_type, list):
        if len(raw_type) != 1:
            raise ValueError(f"Array attribute {code} must declare exactly one item type")
        items = _datatype(raw_type[0])
        datatype = ARRAY
    else:
        datatype = _datatype(raw_type)
        if datatype == ARRAY:
            items = _datatype(spec.get("items", "mixed"))

    minimum, maximum = spec.get("min"), spec.get("max")
    if datatype == STRING:
        minimum = int(minimum) if minimum else 0
        maximum = int(maximum) if maximum else STRING_MAX_LENGTH
    elif datatype == NUMBER:
        minimum = float(minimum) if minimum is not None else None
        maximum = float(maximum) if maximum is not None else None
    elif datatype == DATE:
        minimum, maximum = _parse_date(minimum), _parse_date(maximum)

    match = spec.get("match")
    if match is not None:
        re.compile(match)
    enum = spec.get("enum")

    connect_entity = spec.get("connect_entity", spec.get("ref"))
    if raw_type == "connector" and not connect_entity:
        raise ValueError(f"Connector attribute {code} requires a connect_entity")

    return Attribute(
        code=code,
        datatype=datatype,
        name=spec.get("name") or to_title_case(code),
        description=spec.get("description", ""),
        items=items,
        # uploads can't be enforced on updates
        required=bool(spec.get("required", False)) and datatype != BINARY,
        default=parse_default(datatype, spec.get("default")),
        min=minimum,
        max=maximum,
        enum=tuple(enum) if enum else None,
        match=match,
        uppercase=bool(spec.get("uppercase", False)),
        lowercase=bool(spec.get("lowercase", False)),
        trim=bool(spec.get("trim", True)),
        index=bool(spec.get("index", datatype == OBJECTID)),
        connect_entity=connect_entity.lower() if connect_entity else None,
        order=int(spec.get("order", DEFAULT_ORDER)),
        textsearch=int(spec.get("textsearch", 0)) if datatype == STRING else 0,
        csv=spec.get("csv", True) is not False,
        computed=parse_computed(spec.get("computed")) if datatype == VIRTUAL else None,
    )


def parse_acl(spec: Any) -> AclPolicy:
    spec = dict(spec or {})
    default = dict(spec.get("default") or {})
    return AclPolicy(
        create=tuple(as_list(spec.get("create"))),
        public=int(default.get("public", READ_UPDATE_DELETE)),
        owner=dict(default.get("owner") or {CURRENT_USER: READ_UPDATE_DELETE}),
        groups=dict(default.get("groups") or {}),
    )


def parse_audit(spec: Any) -> AuditPolicy:
    if spec is False:
        return AuditPolicy(enabled=False)
    return AuditPolicy(**dict(spec or {}))


def parse_actions(spec: Any) -> Dict[str, tuple]:
    """
    actions:
      pre: {insert: [hook names]}
      post: {find: [hook names]}
    """
    actions = {}
    for when, events in dict(spec or {}).items():
        for event, hooks in dict(events or {}).items():
            name = f"{when}_{event}"
            if name not in EVENTS:
                raise ValueError(f"Unknown entity action: {name}")
            actions[name] = tuple(as_list(hooks))
    return actions


def parse_entity(code: str, spec: Mapping[str, Any], collations: Mapping[str, str]) -> EntityDefinition:
    spec = dict(spec or {})
    attributes = [parse_attribute(attr_code, attr_spec) for attr_code, attr_spec in dict(spec.get("attributes") or {}).items()]
    attributes.sort(key=lambda attribute: (attribute.order, attribute.code))

    collation = spec.get("collation")
    if collation is not None:
        if collation not in collations:
            raise ValueError(f"Entity {code} contains a non-existent named collation: {collation}")
        collation = collations[collation]

    methods = tuple(method.upper() for method in as_list(spec.get("methods")) or HTTP_METHODS)
    for method in methods:
        if method not in HTTP_METHODS:
            raise ValueError(f"Invalid method {method} for entity {code}")

    return EntityDefinition(
        code=code,
        name=spec.get("name") or to_title_case(code),
        attributes=tuple(attributes),
        acl=parse_acl(spec.get("acl")),
        audit=parse_audit(spec.get("audit")),
        csv=spec.get("csv", True) is not False,
        collection=spec.get("collection"),
        collation=collation,
        base_filter=spec.get("base_filter", spec.get("queryString", "")) or "",
        methods=methods,
        actions=parse_actions(spec.get("actions")),
        seed=tuple(dict(record) for record in as_list(spec.get("seed"))),
    )


def parse_definitions(mapping: Mapping[str, Any], collations: Optional[Mapping[str, str]] = None) -> Dict[str, EntityDefinition]:
    """
    Build the entity definitions from a configuration mapping
    :param mapping: entity code => entity settings
    :param collations: collation name => SQL collation
    :return: entity code => EntityDefinition
    """
    collations = collations or {}
    definitions = {}
    for code, spec in mapping.items():
        code = code.lower()
        definitions[code] = parse_entity(code, spec, collations)

    for definition in definitions.values():
        for attribute in definition.attributes:
            if attribute.connect_entity and attribute.connect_entity not in definitions:
                raise ValueError(f"Attribute {definition.code}.{attribute.code} references unknown entity {attribute.connect_entity}")
    return definitions
