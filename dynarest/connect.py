"""
The _connect operand joins related records into the result documents.

    ?_connect=shipping                  forward: replace the shipping id by the address record
    ?_connect=person.shipping           reverse: the person records whose shipping references
                                        the result, stored in doc["_reverse"]["person_shipping"]

The fields of the related records are selected with _select:

    ?_connect=shipping&_select=name,shipping.city
    ?_connect=person.shipping&_select=city,person_shipping.firstname
"""
from dataclasses import dataclass, field
from typing import List, Tuple

from .entity import OBJECTID
from .errors import InvalidArgumentError


@dataclass(frozen=True)
class ForwardJoin:
    path: str
    # target fields, empty selects all
    select: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReverseJoin:
    entity: str
    attribute: str
    # space delimited target fields
    select: str = ""


@dataclass
class ConnectSpec:
    populate_regular: List[ForwardJoin] = field(default_factory=list)
    populate_reverse: List[ReverseJoin] = field(default_factory=list)
    root_select: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReversePopulate:
    """A follow-up query attaching the records of `model` whose `id_field` references a result"""

    model: object
    store_where: str
    id_field: str
    select: str = ""


def resolve_connect(entity, connect, selection, registry) -> ConnectSpec:
    """
    :param entity: the queried EntityModel
    :param connect: list of connectors
    :param selection: Selection of the query, holds the pending sub-selects
    :param registry: EntityRegistry
    :return: ConnectSpec
    """
    spec = ConnectSpec()
    # repeated directives are joined once
    for connector in dict.fromkeys(connect):
        parts = connector.split(".")
        if len(parts) == 1:
            attribute = entity.attributes.get(connector)
            if attribute is None:
                raise InvalidArgumentError(f"Invalid attribute code in _connect: {connector}")
            if attribute.datatype != OBJECTID or attribute.connect_entity not in registry:
                raise InvalidArgumentError(f"Attribute cannot be used with _connect: {connector}")
            target = registry.lookup(attribute.connect_entity)
            # "shipping.city" is selected as a sub-field of the shipping attribute
            prefix = f"{connector}."
            fields = tuple(selection.pending.get(connector, ())) + tuple(path[len(prefix) :] for path in selection.root if path.startswith(prefix))
            for name in fields:
                if not target.is_path(name):
                    raise InvalidArgumentError(f"Invalid attribute in _select for _connect {connector}: {name}")
            spec.root_select.append(connector)
            spec.populate_regular.append(ForwardJoin(connector, fields))
        elif len(parts) == 2 and all(parts):
            code, attribute_code = parts
            if code not in registry:
                raise InvalidArgumentError(f"Invalid entity code in _connect: {connector}")
            fields = selection.pending.get(f"{code}_{attribute_code}", [])
            spec.populate_reverse.append(ReverseJoin(code, attribute_code, " ".join(fields)))
        else:
            raise InvalidArgumentError(f"Invalid entry in _connect: {connector}")
    return spec


def apply_connect(query, spec: ConnectSpec, registry) -> None:
    """
    Add the joins of `spec` to an EntityQuery
    """
    for join in spec.populate_regular:
        attribute = query.entity.attributes[join.path]
        query.add_forward_join(join.path, registry.lookup(attribute.connect_entity), join.select)

    for join in spec.populate_reverse:
        foreign = registry.lookup(join.entity)
        attribute = foreign.attributes.get(join.attribute)
        if attribute is None:
            raise InvalidArgumentError(f"Invalid attribute used in _connect: {join.entity}.{join.attribute}")
        if attribute.is_json:
            raise InvalidArgumentError(f"Attribute cannot be used with _connect: {join.entity}.{join.attribute}")
        for name in join.select.split():
            if not foreign.is_path(name):
                raise InvalidArgumentError(f"Invalid attribute in _select for _connect {join.entity}.{join.attribute}: {name}")
        query.reverse_populate.append(
            ReversePopulate(
                model=foreign,
                store_where=f"{join.entity}_{join.attribute}",
                id_field=join.attribute,
                select=join.select,
            )
        )
