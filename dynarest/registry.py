"""
The entity registry compiles entity definitions into SQLAlchemy tables.

There is one current registry per process, it is replaced as a whole when the
definitions are reloaded:

    registry = init_registry(load_definitions("entities.yaml"))
    registry.create_all(engine)
    address = get_registry().lookup("address")
"""
from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional
from urllib.parse import parse_qsl

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    func,
    insert,
    select,
)
from werkzeug.datastructures import MultiDict

import dynarest
from .acl import ACL_KEY, set_acl_defaults
from .attr_parse import build_record
from .audit import stamp_insert
from .context import RequestContext, User
from .definitions import parse_definitions
from .entity import (
    BINARY,
    BOOLEAN,
    DATE,
    MIXED,
    NUMBER,
    OBJECTID,
    STRING,
    VIRTUAL,
    Attribute,
    EntityDefinition,
)
from .errors import GenericError, InvalidArgumentError
from .util import is_object_id, new_object_id, to_title_case

ID_KEY = "_id"
VERSION_KEY = "__v"
BINARY_DATA_SUFFIX = "__binaryData"
SEED_USER = "seed-data"


def _columns(attribute: Attribute) -> List[Column]:
    code, datatype = attribute.code, attribute.datatype
    if datatype == STRING:
        return [Column(code, String(attribute.max or 255), index=attribute.index)]
    if datatype == NUMBER:
        return [Column(code, Float, index=attribute.index)]
    if datatype == BOOLEAN:
        return [Column(code, Boolean, index=attribute.index)]
    if datatype == DATE:
        return [Column(code, DateTime, index=attribute.index)]
    if datatype == OBJECTID:
        return [Column(code, String(24), index=attribute.index)]
    if datatype == BINARY:
        return [Column(code, JSON(none_as_null=True)), Column(f"{code}{BINARY_DATA_SUFFIX}", LargeBinary)]
    # point, mixed, array
    return [Column(code, JSON(none_as_null=True))]


class EntityModel:
    """
    A compiled entity definition: the table and the lookup of the stored paths.
    Stored paths are the declared non-virtual attributes and the system columns
    """

    def __init__(self, definition: EntityDefinition, metadata: MetaData):
        self.definition = definition
        self.code = definition.code
        self.version_key = VERSION_KEY
        self.attributes: Dict[str, Attribute] = {}
        self.virtual_attributes: Dict[str, Attribute] = {}
        for attribute in definition.attributes:
            if attribute.datatype == VIRTUAL:
                self.virtual_attributes[attribute.code] = attribute
            else:
                self.attributes[attribute.code] = attribute

        self.system_paths = self._system_paths()
        for code in self.system_paths:
            if code in self.attributes:
                dynarest.log.warning(f"{self.code}.{code} is a system column, the attribute definition is ignored")
                del self.attributes[code]

        self.paths: Dict[str, Attribute] = {ID_KEY: self.system_paths[ID_KEY]}
        self.paths.update(self.attributes)
        self.paths.update(self.system_paths)

        columns = [Column(ID_KEY, String(24), primary_key=True)]
        for code, attribute in self.paths.items():
            if code == ID_KEY:
                continue
            if code == VERSION_KEY:
                columns.append(Column(VERSION_KEY, Integer, nullable=False, default=0))
                continue
            columns.extend(_columns(attribute))
        self.table = Table(definition.table_name, metadata, *columns)

        self.text_weights = {code: attribute.textsearch for code, attribute in self.attributes.items() if attribute.textsearch > 0}
        self.collation = definition.collation
        base_filter = MultiDict(parse_qsl(definition.base_filter, keep_blank_values=True))
        self.base_filter = {key: base_filter.getlist(key) for key in base_filter.keys()}

    def __repr__(self):
        return f"<EntityModel {self.code}>"

    def _system_paths(self) -> Dict[str, Attribute]:
        paths = {ID_KEY: Attribute(ID_KEY, OBJECTID, name="Id", index=False)}
        audit = self.definition.audit
        if audit.enabled:
            for code in (audit.created_by, audit.updated_by):
                paths[code] = Attribute(code, STRING, name=to_title_case(code))
            for code in (audit.created_at, audit.updated_at):
                paths[code] = Attribute(code, DATE, name=to_title_case(code))
        paths[ACL_KEY] = Attribute(ACL_KEY, MIXED, name="ACL", csv=False)
        paths[VERSION_KEY] = Attribute(VERSION_KEY, NUMBER, csv=False)
        return paths

    def path(self, code: str) -> Optional[Attribute]:
        return self.paths.get(code)

    def is_path(self, code: str) -> bool:
        return code in self.paths

    def to_row(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Map record values to column values, binary values are split in
        their metadata and their data column
        """
        row = {}
        for code, value in record.items():
            attribute = self.paths.get(code)
            if attribute is None:
                continue
            if attribute.datatype == BINARY:
                if value is None:
                    row[code] = None
                    row[f"{code}{BINARY_DATA_SUFFIX}"] = None
                else:
                    row[code] = {key: value.get(key) for key in ("filename", "mimetype", "size")}
                    row[f"{code}{BINARY_DATA_SUFFIX}"] = value.get("binaryData")
            else:
                row[code] = value
        return row


class EntityRegistry:
    def __init__(self, definitions: Mapping[str, EntityDefinition]):
        self.metadata = MetaData()
        self.entities: Dict[str, EntityModel] = {code: EntityModel(definition, self.metadata) for code, definition in definitions.items()}

    def __contains__(self, code) -> bool:
        return code in self.entities

    def __iter__(self) -> Iterator[EntityModel]:
        return iter(self.entities.values())

    def lookup(self, code: str) -> EntityModel:
        """
        :param code: entity code
        :return: EntityModel
        :raises InvalidArgumentError: unknown entity code
        """
        entity = self.entities.get(code) if isinstance(code, str) else None
        if entity is None:
            raise InvalidArgumentError(f"Invalid entity: {code}")
        return entity

    def create_all(self, engine) -> None:
        self.metadata.create_all(engine)

    def insert_seed_data(self, session) -> int:
        """
        Insert the seed records of the entities whose table is empty
        :return: number of inserted records
        """
        ctx = RequestContext(user=User(username=SEED_USER))
        inserted = 0
        for entity in self:
            seed = entity.definition.seed
            if not seed:
                continue
            if session.execute(select(func.count()).select_from(entity.table)).scalar():
                dynarest.log.info(f"{entity.code} already contains data, seed skipped")
                continue
            for values in seed:
                record = build_record(entity, values, ctx)
                record[ID_KEY] = values[ID_KEY].lower() if is_object_id(values.get(ID_KEY)) else new_object_id()
                stamp_insert(entity, record, ctx.user)
                record[ACL_KEY] = values.get(ACL_KEY) or set_acl_defaults(entity.definition.acl.default_document(), ctx.user)
                record[VERSION_KEY] = 0
                session.execute(insert(entity.table).values(**entity.to_row(record)))
                inserted += 1
            dynarest.log.info(f"Inserted {len(seed)} seed records in {entity.code}")
        return inserted


_registry: Optional[EntityRegistry] = None
_registry_lock = threading.Lock()


def _compile(definitions: Mapping[str, Any], collations: Optional[Mapping[str, str]]) -> EntityRegistry:
    if not all(isinstance(definition, EntityDefinition) for definition in definitions.values()):
        definitions = parse_definitions(definitions, collations)
    return EntityRegistry(definitions)


def init_registry(definitions: Mapping[str, Any], collations: Optional[Mapping[str, str]] = None) -> EntityRegistry:
    """
    Compile `definitions` (EntityDefinitions or raw configuration) and make it the current registry
    """
    global _registry
    registry = _compile(definitions, collations)
    with _registry_lock:
        _registry = registry
    dynarest.log.info(f"Registered entities: {', '.join(registry.entities)}")
    return registry


def reload_registry(definitions: Mapping[str, Any], collations: Optional[Mapping[str, str]] = None) -> EntityRegistry:
    """
    Replace the current registry, requests that already hold the previous registry complete with it
    """
    dynarest.log.info("Reloading entity definitions")
    return init_registry(definitions, collations)


def get_registry() -> EntityRegistry:
    with _registry_lock:
        registry = _registry
    if registry is None:
        raise GenericError("The entity registry has not been initialized")
    return registry
