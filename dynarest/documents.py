#
# Shape result rows into JSON-compatible documents
#
from typing import Any, Dict, List, Mapping, Optional

from .entity import BINARY
from .registry import BINARY_DATA_SUFFIX, ID_KEY
from .select import Selection

BINARY_DATA = "binaryData"


def document_paths(entity, selection: Optional[Selection]) -> List[str]:
    """
    The paths that make up the documents of a query. Without applied selection
    all the stored paths are returned, binary attributes excluded
    """
    if selection is None or not selection.apply_root:
        return [code for code, attribute in entity.paths.items() if attribute.datatype != BINARY and code != entity.version_key]
    return selection.fields


def projection_columns(entity, table, paths: List[str]) -> List[Any]:
    """
    :param table: the entity table or an alias of it
    :return: the columns needed to build `paths`, raw binary data is only loaded when it is selected
    """
    names = [ID_KEY]
    for path in paths:
        head, _, sub = path.partition(".")
        attribute = entity.path(head)
        if attribute is None:
            continue
        if attribute.datatype == BINARY:
            if sub != BINARY_DATA:
                names.append(head)
            if not sub or sub == BINARY_DATA:
                names.append(f"{head}{BINARY_DATA_SUFFIX}")
        else:
            names.append(head)
    return [table.c[name] for name in dict.fromkeys(names)]


def _binary_value(row: Mapping[str, Any], prefix: str, head: str, sub: str) -> Any:
    if sub == BINARY_DATA:
        data = row.get(f"{prefix}{head}{BINARY_DATA_SUFFIX}")
        return None if data is None else {BINARY_DATA: data}
    meta = row.get(f"{prefix}{head}")
    if meta is None:
        return None
    if sub:
        return {sub: meta[sub]} if sub in meta else None
    value = dict(meta)
    data = row.get(f"{prefix}{head}{BINARY_DATA_SUFFIX}")
    if data is not None:
        value[BINARY_DATA] = data
    return value


def shape_document(entity, row: Mapping[str, Any], paths: List[str], prefix: str = "") -> Dict[str, Any]:
    """
    :param row: result row mapping, the column keys are prefixed with `prefix`
    :param paths: document paths, see document_paths
    :return: document
    """
    document = {ID_KEY: row.get(f"{prefix}{ID_KEY}")}
    for path in paths:
        head, _, sub = path.partition(".")
        attribute = entity.path(head)
        if attribute is None:
            continue
        if attribute.datatype == BINARY:
            value = _binary_value(row, prefix, head, sub)
            if value is None:
                if not sub:
                    document[head] = None
                continue
        else:
            value = row.get(f"{prefix}{head}")
            if sub:
                if not isinstance(value, Mapping) or sub not in value:
                    continue
                value = {sub: value[sub]}
        if sub and isinstance(document.get(head), dict):
            document[head].update(value)
        else:
            document[head] = value

    for code, attribute in entity.paths.items():
        if attribute.datatype == BINARY and isinstance(document.get(code), dict) and document[code].get("filename"):
            document[code]["url"] = "/".join(["", entity.code, str(document[ID_KEY]), code, document[code]["filename"]])
    return document


def add_computed(entity, document: Dict[str, Any], ctx) -> Dict[str, Any]:
    for code, attribute in entity.virtual_attributes.items():
        document[code] = attribute.computed.compute(document, ctx) if attribute.computed else None
    return document
