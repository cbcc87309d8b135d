from typing import Any, Dict, List, Sequence

import dynarest
from .acl import READ_OP
from .connect import ReversePopulate
from .query import EntityQuery
from .registry import ID_KEY
from .select import build_selection

REVERSE_KEY = "_reverse"


def _fetch(session, spec: ReversePopulate, ids: List[str], ctx) -> Dict[str, List[dict]]:
    model = spec.model
    query = EntityQuery(model, READ_OP, ctx)
    query.and_(model.table.c[spec.id_field].in_(ids))
    selection = build_selection(model, spec.select.split() or None)
    if selection.apply_root:
        selection.root[spec.id_field] = 1
    query.selection = selection
    query.order_by = [model.table.c[ID_KEY]]

    grouped: Dict[str, List[dict]] = {}
    for document in query.execute(session):
        grouped.setdefault(document.get(spec.id_field), []).append(document)
    return grouped


def reverse_populate(session, documents: Sequence[Dict[str, Any]], specs: Sequence[ReversePopulate], ctx) -> Sequence[Dict[str, Any]]:
    """
    Attach the records referencing `documents` in doc["_reverse"][store_where].
    The specs run in order, the documents are only modified when all of them succeed

    :param documents: the primary result documents
    :param specs: ReversePopulate list
    :param ctx: RequestContext, the READ ACL applies to the related records
    """
    ids = [document[ID_KEY] for document in documents]
    if not ids:
        return documents
    results = []
    for spec in specs:
        dynarest.log.debug(f"reverse populate {spec.model.code}.{spec.id_field} into {spec.store_where}")
        results.append((spec, _fetch(session, spec, ids, ctx)))

    for document in documents:
        reverse = document.setdefault(REVERSE_KEY, {})
        for spec, grouped in results:
            reverse[spec.store_where] = grouped.get(document[ID_KEY], [])
    return documents
