from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .util import as_list

SKIP = "_skip"
LIMIT = "_limit"
SORT = "_sort"
POPULATE = "_populate"
SELECT = "_select"
CONNECT = "_connect"
KEYWORDS = "_keywords"
TYPE = "_type"
COLLATION = "_collation"

OPERANDS = (SKIP, LIMIT, SORT, POPULATE, SELECT, CONNECT, KEYWORDS, TYPE, COLLATION)


@dataclass
class ApiOperations:
    """
    A request query split in reserved operands, attribute filters and the remaining parameters
    """

    operands: Dict[str, List[str]] = field(default_factory=dict)
    attributes: Dict[str, List[str]] = field(default_factory=dict)
    extras: Dict[str, List[str]] = field(default_factory=dict)

    def operand(self, name: str) -> Optional[str]:
        values = self.operands.get(name)
        return values[0] if values else None

    def operand_list(self, name: str) -> List[str]:
        """
        comma delimited items of all the values of the operand
        """
        return [item.strip() for value in self.operands.get(name, []) for item in str(value).split(",") if item.strip()]


def normalize_query(query: Any) -> Dict[str, List[str]]:
    """
    One-or-many normalization of a request query: werkzeug MultiDict or mapping
    """
    if query is None:
        return {}
    if hasattr(query, "getlist"):
        return {key: query.getlist(key) for key in query.keys()}
    return {key: as_list(value) for key, value in query.items()}


def separate_api_operations(query: Any, entity) -> ApiOperations:
    """
    :param query: request query
    :param entity: EntityModel, its stored paths are the attribute filters
    :return: ApiOperations
    """
    result = ApiOperations()
    for key, values in normalize_query(query).items():
        if entity.is_path(key):
            result.attributes[key] = values
        elif key in OPERANDS:
            result.operands[key] = values
        else:
            result.extras[key] = values
    return result
