"""
Translate request queries into SQL statements.

    query = build_query(registry, entity, {"city": ["~>new"], "_sort": ["-name"]}, ctx)
    documents = query.execute(DB.session)

Every statement is built by an EntityQuery and an EntityQuery can't be created
without an ACL operation: the ACL clause is its first clause, other clauses can
only be added to it.
"""
from __future__ import annotations

import functools
import operator
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, delete, func, select, update

import dynarest
from .acl import READ_OP, acl_clause
from .coercion import condition_clause, parse_condition
from .config import get_config
from .connect import ReversePopulate, apply_connect, resolve_connect
from .documents import add_computed, document_paths, projection_columns, shape_document
from .errors import InvalidArgumentError
from .operands import COLLATION, CONNECT, KEYWORDS, LIMIT, SELECT, SKIP, SORT, ApiOperations, separate_api_operations
from .registry import ID_KEY
from .select import SCORE, Selection, build_selection

FIND = "find"
FIND_ONE = "findOne"
COUNT = "count"
# filters only, for deletes
REMOVE = "remove"


@dataclass
class ForwardPopulate:
    path: str
    target: Any
    alias: Any
    selection: Selection


class EntityQuery:
    def __init__(self, entity, operation: str, ctx, op: str = FIND):
        """
        :param entity: EntityModel
        :param operation: ACL operation, READ, UPDATE or DELETE
        :param ctx: RequestContext
        :param op: FIND, FIND_ONE, COUNT or REMOVE
        """
        self.entity = entity
        self.operation = operation
        self.ctx = ctx
        self.op = op
        ctx.locals["acl"] = operation
        self.clauses = [acl_clause(entity.table, operation, ctx.user)]
        self.skip = 0
        self.limit: Optional[int] = None
        self.order_by: List[Any] = []
        self.selection: Optional[Selection] = None
        self.score = None
        self.populate: List[ForwardPopulate] = []
        self.reverse_populate: List[ReversePopulate] = []

    def and_(self, *clauses) -> "EntityQuery":
        self.clauses.extend(clauses)
        return self

    @property
    def where(self):
        return and_(*self.clauses)

    def add_forward_join(self, path: str, target, fields=()) -> None:
        alias = target.table.alias(f"connect_{path}")
        self.populate.append(ForwardPopulate(path, target, alias, build_selection(target, list(fields) or None)))

    def statement(self):
        table = self.entity.table
        if self.op == COUNT:
            return select(func.count()).select_from(table).where(self.where)

        columns = projection_columns(self.entity, table, document_paths(self.entity, self.selection))
        from_clause = table
        for populate in self.populate:
            on_clause = and_(populate.alias.c[ID_KEY] == table.c[populate.path], acl_clause(populate.alias, READ_OP, self.ctx.user))
            from_clause = from_clause.outerjoin(populate.alias, on_clause)
            target_columns = projection_columns(populate.target, populate.alias, document_paths(populate.target, populate.selection))
            columns.extend(column.label(f"{populate.path}.{column.name}") for column in target_columns)
        if self.score is not None:
            columns.append(self.score.label(SCORE))

        stmt = select(*columns).select_from(from_clause).where(self.where)
        if self.order_by:
            stmt = stmt.order_by(*self.order_by)
        if self.op == FIND_ONE:
            return stmt.limit(1)
        if self.skip:
            stmt = stmt.offset(self.skip)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return stmt

    def update_statement(self, values: Dict[str, Any]):
        return update(self.entity.table).where(self.where).values(**values)

    def delete_statement(self):
        return delete(self.entity.table).where(self.where)

    def shape(self, row) -> Dict[str, Any]:
        document = shape_document(self.entity, row, document_paths(self.entity, self.selection))
        for populate in self.populate:
            prefix = f"{populate.path}."
            if row.get(f"{prefix}{ID_KEY}") is None:
                document[populate.path] = None
                continue
            related = shape_document(populate.target, row, document_paths(populate.target, populate.selection), prefix)
            if not populate.selection.explicit:
                add_computed(populate.target, related, self.ctx)
            document[populate.path] = related
        if self.score is not None:
            document[SCORE] = row.get(SCORE)
        if self.selection is None or not self.selection.explicit:
            add_computed(self.entity, document, self.ctx)
        return document

    def execute(self, session):
        """
        :return: the count for COUNT queries, a document or None for FIND_ONE, else a list of documents
        """
        stmt = self.statement()
        dynarest.log.debug("%s %s: %s", self.op, self.entity.code, stmt)
        if self.op == COUNT:
            return session.execute(stmt).scalar_one()
        rows = session.execute(stmt).mappings().all()
        documents = [self.shape(row) for row in rows]
        if self.op == FIND_ONE:
            return documents[0] if documents else None
        return documents


def keyword_score(entity, keywords: str):
    """
    Relevance of the text search attributes: the sum of the weights of the attributes
    containing a keyword, for every keyword
    """
    if not entity.text_weights:
        raise InvalidArgumentError(f"Entity {entity.code} has no text search attributes")
    terms = keywords.split()
    if not terms:
        return None
    parts = [
        case((entity.table.c[code].icontains(term, autoescape=True), weight), else_=0)
        for code, weight in entity.text_weights.items()
        for term in terms
    ]
    return functools.reduce(operator.add, parts)


def _parse_int(value: Optional[str], default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        result = int(value)
    except ValueError:
        raise InvalidArgumentError(f"Invalid {name} value: {value}")
    if result < 0:
        raise InvalidArgumentError(f"Invalid {name} value: {value}")
    return result


def _collation(entity, name: Optional[str]) -> Optional[str]:
    if not name:
        return entity.collation
    collations = get_config("COLLATIONS") or {}
    if name not in collations:
        raise InvalidArgumentError(f"Invalid collation: {name}")
    return collations[name]


def _sort_clause(entity, item: str, collation: Optional[str]):
    descending = item.startswith("-")
    code = item[1:] if descending else item
    attribute = entity.path(code)
    if attribute is None or attribute.is_json:
        raise InvalidArgumentError(f"Invalid sort attribute: {item}")
    column = entity.table.c[code]
    if collation and attribute.datatype == "string":
        column = column.collate(collation)
    return column.desc() if descending else column.asc()


def _filter_clauses(entity, filters: Dict[str, List[str]], ctx) -> List[Any]:
    clauses = []
    for key, values in filters.items():
        attribute = entity.path(key)
        if attribute is None:
            dynarest.log.warning(f"Ignoring filter on unknown attribute {entity.code}.{key}")
            continue
        for value in values:
            clauses.append(condition_clause(entity.table.c[key], parse_condition(attribute, value, ctx.user)))
    return clauses


def apply_select_and_connect(query: EntityQuery, registry, operations: ApiOperations) -> EntityQuery:
    entity = query.entity
    selection = build_selection(entity, operations.operand_list(SELECT))
    if query.score is not None:
        selection.root[SCORE] = 1
    query.selection = selection

    connect = operations.operand_list(CONNECT)
    if connect:
        spec = resolve_connect(entity, connect, selection, registry)
        apply_connect(query, spec, registry)
        if selection.apply_root:
            for path in spec.root_select:
                selection.root[path] = 1
    return query


def build_query(registry, entity, query, ctx, operation: str = READ_OP, op: str = FIND) -> EntityQuery:
    """
    Build the query of a find, count or delete request
    :param registry: EntityRegistry, resolves _connect
    :param entity: EntityModel
    :param query: request query
    :param ctx: RequestContext
    :param operation: ACL operation
    :param op: FIND, COUNT or REMOVE
    :return: EntityQuery
    """
    result = EntityQuery(entity, operation, ctx, op)
    operations = separate_api_operations(query, entity)

    result.and_(*_filter_clauses(entity, entity.base_filter, ctx))
    result.and_(*_filter_clauses(entity, operations.attributes, ctx))

    keywords = " ".join(operations.operands.get(KEYWORDS, []))
    if keywords:
        score = keyword_score(entity, keywords)
        if score is not None:
            result.and_(score > 0)
            if op not in (COUNT, REMOVE):
                result.score = score

    if op in (COUNT, REMOVE):
        return result

    result.skip = _parse_int(operations.operand(SKIP), 0, SKIP)
    max_limit = get_config("MAX_LIMIT")
    limit = _parse_int(operations.operand(LIMIT), get_config("DEFAULT_LIMIT"), LIMIT)
    result.limit = max_limit if limit == 0 or limit > max_limit else limit

    collation = _collation(entity, operations.operand(COLLATION))
    sort = operations.operand_list(SORT)
    if sort:
        result.order_by = [_sort_clause(entity, item, collation) for item in sort]
    elif result.score is not None:
        result.order_by = [result.score.desc()]
    result.order_by.append(entity.table.c[ID_KEY])

    return apply_select_and_connect(result, registry, operations)


def build_find_one(registry, entity, object_id: str, query, ctx, operation: str = READ_OP) -> EntityQuery:
    """
    Query a record by id, only the _select and _connect operands apply
    """
    result = EntityQuery(entity, operation, ctx, FIND_ONE)
    result.and_(entity.table.c[ID_KEY] == object_id)
    return apply_select_and_connect(result, registry, separate_api_operations(query, entity))
