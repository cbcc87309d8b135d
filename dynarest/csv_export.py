#
# CSV export of find results (?_type=csv)
#
# Every value is double quoted, the columns are separated by ", ":
#   "Name", "City", "Active"
#   "John", "New York", "true"
#
import datetime
import re
from typing import Any, Iterable, List, Optional, Tuple

from .entity import BINARY, POINT
from .registry import ID_KEY
from .select import BINARY_FIELDS, POINT_FIELDS
from .util import isoformat, to_title_case

SEPARATOR = ", "
NEWLINE = "\n"


def csv_escape(value: Any) -> str:
    if value is None:
        clean = ""
    elif isinstance(value, bool):
        clean = f'"{str(value).lower()}"'
    elif isinstance(value, datetime.datetime):
        clean = f'"{isoformat(value)}"'
    else:
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        elif isinstance(value, (list, tuple)):
            value = ",".join("" if item is None else str(item) for item in value)
        clean = '"' + str(value).replace('"', '""') + '"'
        clean = re.sub(r"\r\n|\r", "\n", clean)
    if clean == '""':
        clean = ""
    return clean


def csv_columns(entity) -> List[Tuple[str, str]]:
    """
    :return: (path, header) of the exported columns, declared attributes first, in attribute order
    """
    columns = []
    for attribute in entity.definition.attributes:
        if not attribute.csv or attribute.code in entity.system_paths:
            continue
        name = attribute.name or to_title_case(attribute.code)
        if attribute.datatype == BINARY:
            columns.extend((f"{attribute.code}.{sub}", f"{name} {to_title_case(sub)}") for sub in BINARY_FIELDS)
        elif attribute.datatype == POINT:
            columns.extend((f"{attribute.code}.{sub}", f"{name} {to_title_case(sub)}") for sub in POINT_FIELDS)
        else:
            columns.append((attribute.code, name))
    for code, attribute in entity.system_paths.items():
        if attribute.csv and code != entity.version_key:
            columns.append((code, attribute.name or to_title_case(code.replace(".", " "))))
    return columns


def _lookup(document: dict, path: str) -> Any:
    head, _, sub = path.partition(".")
    value = document.get(head)
    if sub:
        return value.get(sub) if isinstance(value, dict) else None
    if isinstance(value, dict) and ID_KEY in value:
        # connected record
        return value[ID_KEY]
    return value


def csv_header_row(entity, fields: Optional[Iterable[str]] = None) -> Tuple[str, List[str]]:
    """
    :param fields: projected paths, a column is exported when its path or its head is projected
    :return: header line and the exported paths
    """
    columns = csv_columns(entity)
    if fields:
        wanted = set(fields)
        columns = [(path, name) for path, name in columns if path in wanted or path.partition(".")[0] in wanted]
    header = SEPARATOR.join(csv_escape(name) for _, name in columns) + NEWLINE
    return header, [path for path, _ in columns]


def csv_data_row(document: dict, fields: List[str]) -> str:
    return SEPARATOR.join(csv_escape(_lookup(document, path)) for path in fields) + NEWLINE


def to_csv(entity, documents: Iterable[dict], fields: Optional[Iterable[str]] = None) -> str:
    header, paths = csv_header_row(entity, fields)
    return header + "".join(csv_data_row(document, paths) for document in documents)
