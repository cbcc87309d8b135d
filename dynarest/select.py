from dataclasses import dataclass, field
from typing import Any, Dict, List

from .entity import BINARY, POINT
from .errors import InvalidArgumentError
from .util import as_list

SCORE = "_score"

BINARY_FIELDS = ("filename", "mimetype", "size")
POINT_FIELDS = ("type", "coordinates")


@dataclass
class Selection:
    # projected path => 1
    root: Dict[str, int] = field(default_factory=dict)
    # restrict the root columns to `root`
    apply_root: bool = False
    # relation key => sub-fields, consumed by _connect
    pending: Dict[str, List[str]] = field(default_factory=dict)
    explicit: bool = False

    @property
    def fields(self) -> List[str]:
        return [path for path in self.root if path != SCORE]


def _select_items(select: Any) -> List[str]:
    if isinstance(select, str):
        select = [select]
    return [item.strip() for value in as_list(select) for item in str(value).split(",") if item.strip()]


def build_selection(entity, select: Any = None) -> Selection:
    """
    Build the projection of a query from the _select operand

    Without select list all the stored paths are projected, for binary attributes only
    the metadata. An explicit select list may contain stored paths, sub-fields of stored
    paths ("photo.filename") and fields of related entities ("shipping.city"), the latter are
    queued in `pending` for the _connect resolution.

    :param entity: EntityModel
    :param select: comma delimited string or list
    :return: Selection
    """
    selection = Selection()
    items = _select_items(select)
    if items:
        selection.explicit = True
        for item in items:
            parts = item.split(".")
            if len(parts) == 1 and entity.is_path(item):
                selection.root[item] = 1
            elif len(parts) == 2 and entity.is_path(parts[0]):
                selection.root[item] = 1
            elif len(parts) == 2 and parts[0] and parts[1]:
                pending = selection.pending.setdefault(parts[0], [])
                if parts[1] not in pending:
                    pending.append(parts[1])
            else:
                raise InvalidArgumentError(f"Invalid entry in the _select list: {item}")
    else:
        for code, attribute in entity.paths.items():
            if attribute.datatype == BINARY:
                selection.root.update({f"{code}.{sub}": 1 for sub in BINARY_FIELDS})
            elif attribute.datatype == POINT:
                selection.root.update({f"{code}.{sub}": 1 for sub in POINT_FIELDS})
            else:
                selection.root[code] = 1

    selection.root.pop(entity.version_key, None)
    selection.apply_root = bool(selection.root)
    return selection
