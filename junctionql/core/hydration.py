from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.sql.sqltypes import Enum as SAEnumType

from ..sql.builders import (
    NATURAL,
    ORDER_KEY_PREFIX,
    RELATION_KEY_PREFIX,
    ROWS_KEY,
    TOTAL_COUNT_KEY,
    RelationPlan,
)
from .selection import LIST, RelationSelection, RowSelection
from .utils import coerce_value, encode_cursor, load_json

PUSHED_ATTR = '_pushed'


def _coerce_enum(sa_type: Any, value: Any) -> Any:
    enum_cls = getattr(sa_type, 'enum_class', None)
    if enum_cls is None or value is None or isinstance(value, Enum):
        return value
    try:
        return enum_cls[value]
    except KeyError:
        return enum_cls(value)


def hydrate_scalar(attr: Any, value: Any) -> Any:
    """Convert a value read from a row or a JSON document to the column's Python type."""
    sa_type = getattr(attr, 'type', None)
    if isinstance(sa_type, SAEnumType):
        return _coerce_enum(sa_type, value)
    return coerce_value(sa_type, value)


class Hydrator:
    """Builds strawberry instances from fetched rows and pushed-down JSON.

    Scalar fields become attributes. Relation values are hydrated eagerly
    and kept per response key in ``_pushed``, where the relation field
    resolvers read them back.
    """

    def __init__(
        self,
        *,
        shapes: Mapping[str, Any],
        row_types: Mapping[str, type],
        connection_types: Mapping[str, type],
        edge_types: Mapping[str, type],
        page_info_type: type,
    ):
        self.shapes = shapes
        self.row_types = row_types
        self.connection_types = connection_types
        self.edge_types = edge_types
        self.page_info_type = page_info_type

    def row(self, table_id: str, rows: RowSelection, mapping: Mapping[str, Any]) -> Any:
        shape = self.shapes[table_id]
        inst = self.row_types[table_id]()
        for name in rows.scalars:
            setattr(inst, name, hydrate_scalar(shape.scalars[name], mapping.get(name)))
        pushed: Dict[str, Any] = {}
        for rel in rows.relations:
            spec = shape.relations[rel.field_name]
            raw = load_json(mapping.get(f"{RELATION_KEY_PREFIX}{rel.response_key}"))
            pushed[rel.response_key] = self.relation(spec.target.id, rel, raw)
        setattr(inst, PUSHED_ATTR, pushed)
        return inst

    def relation(self, table_id: str, rel: RelationSelection, raw: Any) -> Any:
        if rel.mode == LIST:
            return [self.row(table_id, rel.rows, m) for m in (raw or [])]
        raw = raw or {}
        rows = load_json(raw.get(ROWS_KEY)) or []
        return self.connection(table_id, rel, rows, total_count=raw.get(TOTAL_COUNT_KEY))

    def cursor(self, plan: RelationPlan, mapping: Mapping[str, Any], index: int) -> str:
        if not plan.order_is_unique:
            return encode_cursor([NATURAL, index])
        values = [
            hydrate_scalar(attr, mapping.get(f"{ORDER_KEY_PREFIX}{i}"))
            for i, attr in enumerate(plan.order_attributes)
        ]
        return encode_cursor([*plan.cursor_prefix, *values])

    def connection(
        self,
        table_id: str,
        rel: RelationSelection,
        rows: List[Mapping[str, Any]],
        *,
        total_count: Optional[int] = None,
    ) -> Any:
        plan: RelationPlan = rel.plan
        window = plan.window
        has_next_page = False
        if window.fetch_extra and window.page_size is not None and len(rows) > window.page_size:
            has_next_page = True
            rows = rows[:window.page_size]
        edge_cls = self.edge_types[table_id]
        nodes: List[Any] = []
        edges: List[Any] = []
        for i, mapping in enumerate(rows):
            node = self.row(table_id, rel.rows, mapping)
            nodes.append(node)
            edges.append(edge_cls(cursor=self.cursor(plan, mapping, window.start + i), node=node))
        page_info = self.page_info_type(
            has_next_page=has_next_page,
            has_previous_page=window.has_previous_page,
            start_cursor=edges[0].cursor if edges else None,
            end_cursor=edges[-1].cursor if edges else None,
        )
        return self.connection_types[table_id](
            nodes=nodes,
            edges=edges,
            page_info=page_info,
            total_count=int(total_count or 0),
        )


__all__ = ['Hydrator', 'hydrate_scalar', 'PUSHED_ATTR']
