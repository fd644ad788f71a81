"""SQL assembly for root collections and many-to-many relations.

Every relation is rendered as a correlated scalar sub-select that aggregates
its rows into a JSON array with the dialect adapter, so a whole GraphQL
request becomes a single statement. Nested relations are columns of their
parent's inner select and correlate to the parent's right-table alias.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import and_, func, literal_column, or_, select
from sqlalchemy.sql.sqltypes import JSON as SA_JSON

from ..catalog import Attribute, Catalog, Table
from ..core.errors import TypeResolutionError
from ..core.inference import RelationDescriptor
from ..core.naming import map_graphql_to_python
from ..core.selection import CONNECTION, LIST, RelationSelection, RowSelection
from ..core.utils import coerce_value, decode_cursor, parse_order_spec, resolve_page_size
from ..settings import SchemaSettings
from .aliases import AliasAllocator

_logger = logging.getLogger("junctionql")

PRIMARY_KEY_ASC = 'primary_key_asc'
NATURAL = 'natural'

ROWS_KEY = 'rows'
TOTAL_COUNT_KEY = 'total_count'
ORDER_KEY_PREFIX = 'o.'
RELATION_KEY_PREFIX = 'r.'

ArgHook = Callable[['QueryBuilder', Mapping[str, Any]], None]


@dataclass
class QueryContext:
    """Request-scoped state shared by every builder of one root statement.

    ``shapes`` maps a table id to its field shape (``scalars`` and
    ``relations``), see :class:`junctionql.registry.TableShape`.
    """

    adapter: Any
    catalog: Catalog
    shapes: Mapping[str, Any]
    settings: SchemaSettings = field(default_factory=SchemaSettings)


@dataclass(frozen=True)
class JoinSpec:
    target: Any
    onclause: Any
    correlated: bool = False


@dataclass(frozen=True)
class OrderTerm:
    attribute: Attribute
    column: Any
    direction: str

    @property
    def spec(self) -> str:
        return f"{self.attribute.name}:{self.direction}"


@dataclass(frozen=True)
class PageWindow:
    page_size: Optional[int]
    start: int
    fetch_extra: bool
    has_previous_page: bool


@dataclass(frozen=True)
class RelationPlan:
    """What hydration needs to rebuild pagination state from fetched rows."""

    mode: str
    window: PageWindow
    cursor_prefix: Tuple[str, ...]
    order_is_unique: bool
    order_attributes: Tuple[Attribute, ...]


@dataclass(frozen=True)
class ProjectedColumn:
    key: str
    expr: Any
    nested: bool = False


class QueryBuilder:
    """Accumulates FROM/JOIN, WHERE, ORDER BY and LIMIT state for one select.

    A builder with a ``parent`` renders as a sub-select correlated to the
    parent's alias. Joins marked ``correlated`` point at an alias owned by an
    enclosing query; they are rendered as WHERE predicates instead of JOINs.
    """

    def __init__(self, alias: Any, *, table: Table, context: QueryContext, parent: Optional['QueryBuilder'] = None):
        self.alias = alias
        self.table = table
        self.context = context
        self.parent = parent
        self.joins: List[JoinSpec] = []
        self.junction_alias: Any = None
        self.cursor_prefix: List[str] = []
        self.limit: Optional[int] = None
        self.offset: Optional[int] = None
        self._where: List[Any] = []
        self._keyset: Any = None
        self._order: List[OrderTerm] = []
        self._order_is_unique = False

    @property
    def adapter(self) -> Any:
        return self.context.adapter

    # ---------- scope ----------
    def aliases_in_scope(self) -> Set[str]:
        names = {self.alias.name}
        names.update(j.target.name for j in self.joins)
        if self.junction_alias is not None:
            names.add(self.junction_alias.name)
        if self.parent is not None:
            names |= self.parent.aliases_in_scope()
        return names

    # ---------- clauses ----------
    def join(self, target: Any, onclause: Any, *, correlated: bool = False) -> JoinSpec:
        spec = JoinSpec(target=target, onclause=onclause, correlated=correlated)
        self.joins.append(spec)
        return spec

    def where(self, *exprs: Any) -> 'QueryBuilder':
        self._where.extend(e for e in exprs if e is not None)
        return self

    @property
    def wheres(self) -> Tuple[Any, ...]:
        return tuple(self._where)

    def order_by(self, attribute: Attribute, direction: str = 'asc') -> OrderTerm:
        term = OrderTerm(attribute=attribute, column=self.alias.c[attribute.name], direction=direction)
        self._order.append(term)
        return term

    @property
    def order(self) -> Tuple[OrderTerm, ...]:
        return tuple(self._order)

    def is_order_unique(self) -> bool:
        return self._order_is_unique

    def set_order_is_unique(self, value: bool = True) -> None:
        self._order_is_unique = value

    def after(self, values: Sequence[Any]) -> None:
        """Keyset predicate: rows strictly after ``values`` in the current ordering."""
        terms = self._order
        if len(values) != len(terms):
            raise ValueError("Invalid cursor")
        coerced = [coerce_value(t.attribute.type, v) for t, v in zip(terms, values)]
        if any(v is None for v in coerced):
            raise ValueError("Invalid cursor")
        branches = []
        for i, term in enumerate(terms):
            eqs = [terms[j].column == coerced[j] for j in range(i)]
            cmp = term.column < coerced[i] if term.direction == 'desc' else term.column > coerced[i]
            branches.append(and_(*eqs, cmp))
        self._keyset = or_(*branches)

    # ---------- rendering ----------
    def from_clause(self) -> Any:
        frm = self.alias
        for j in self.joins:
            if not j.correlated:
                frm = frm.join(j.target, j.onclause)
        return frm

    def _filter_predicates(self) -> List[Any]:
        preds = [j.onclause for j in self.joins if j.correlated]
        preds.extend(self._where)
        return preds

    def _correlate(self, stmt: Any) -> Any:
        if self.parent is not None:
            stmt = stmt.correlate(self.parent.alias)
        return stmt

    def build_select(self, columns: Sequence[Any]) -> Any:
        stmt = select(*columns).select_from(self.from_clause())
        preds = self._filter_predicates()
        if self._keyset is not None:
            preds.append(self._keyset)
        if preds:
            stmt = stmt.where(and_(*preds))
        if self._order:
            stmt = stmt.order_by(*[t.column.desc() if t.direction == 'desc' else t.column.asc() for t in self._order])
        if self.offset:
            stmt = stmt.offset(self.offset)
        if self.limit is not None:
            stmt = stmt.limit(self.limit)
        return self._correlate(stmt)

    def build_count(self) -> Any:
        """``count(*)`` over the filtered rows, ignoring cursors and pagination."""
        stmt = select(func.count()).select_from(self.from_clause())
        preds = self._filter_predicates()
        if preds:
            stmt = stmt.where(and_(*preds))
        return self._correlate(stmt)


# ---------- shared steps ----------

def _order_specs(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(x) for x in raw]


def apply_ordering(qb: QueryBuilder, order_by: Any, *, auto_camel: bool = False) -> bool:
    """Apply explicit ``"column:direction"`` entries; returns whether any were given.

    An explicit ordering that covers every primary-key column is unique,
    unless one of its columns is nullable: keyset comparisons cannot step
    over NULLs, so such orderings page with positional cursors.
    """
    specs = _order_specs(order_by)
    if not specs:
        return False
    scalars = qb.context.shapes[qb.table.id].scalars
    for spec in specs:
        name, direction = parse_order_spec(spec)
        py_name = map_graphql_to_python(name, scalars, auto_camel=auto_camel)
        attr = scalars.get(py_name)
        if attr is None:
            raise ValueError(f"Unknown order_by column: {name}")
        qb.order_by(attr, direction)
    qb.cursor_prefix = [t.spec for t in qb.order]
    pk = qb.context.catalog.primary_key_attributes(qb.table)
    ordered = {id(t.attribute) for t in qb.order}
    if pk and all(id(a) in ordered for a in pk) and not any(t.attribute.nullable for t in qb.order):
        qb.set_order_is_unique()
    return True


def apply_primary_key_fallback(qb: QueryBuilder) -> bool:
    """Order by the primary key when nothing else makes the order deterministic."""
    if qb.order or qb.is_order_unique():
        return False
    pk = qb.context.catalog.primary_key_attributes(qb.table)
    if not pk:
        return False
    for attr in pk:
        qb.order_by(attr, 'asc')
    qb.cursor_prefix = [PRIMARY_KEY_ASC]
    qb.set_order_is_unique()
    return True


def apply_pagination(qb: QueryBuilder, arguments: Mapping[str, Any], *, connection: bool) -> PageWindow:
    """Apply ``first``/``offset`` (and ``after`` for connections) to ``qb``.

    Unique orderings use keyset cursors ``[*cursor_prefix, *values]``;
    other orderings fall back to positional ``["natural", index]`` cursors.
    Connections fetch one extra row to detect a following page.
    """
    settings = qb.context.settings
    offset = arguments.get('offset')
    if offset is not None and int(offset) < 0:
        raise ValueError("offset must be non-negative")
    size = resolve_page_size(
        arguments.get('first'),
        default_page_size=settings.default_page_size if connection else None,
        max_page_size=settings.max_page_size,
        logger=_logger,
    )
    after = arguments.get('after') if connection else None
    start = 0
    if after is not None:
        values = decode_cursor(after)
        if qb.is_order_unique():
            n = len(qb.cursor_prefix)
            if len(values) != n + len(qb.order) or values[:n] != list(qb.cursor_prefix):
                raise ValueError("Invalid cursor")
            qb.after(values[n:])
        else:
            if len(values) != 2 or values[0] != NATURAL or not isinstance(values[1], int) or isinstance(values[1], bool):
                raise ValueError("Invalid cursor")
            start = values[1] + 1
    start += int(offset or 0)
    qb.offset = start or None
    fetch_extra = connection and size is not None
    qb.limit = size + 1 if fetch_extra else size
    return PageWindow(
        page_size=size,
        start=start,
        fetch_extra=fetch_extra,
        has_previous_page=after is not None or bool(offset),
    )


def relation_plan(qb: QueryBuilder, mode: str, window: PageWindow) -> RelationPlan:
    return RelationPlan(
        mode=mode,
        window=window,
        cursor_prefix=tuple(qb.cursor_prefix),
        order_is_unique=qb.is_order_unique(),
        order_attributes=tuple(t.attribute for t in qb.order),
    )


def _is_json_attribute(attr: Attribute) -> bool:
    return isinstance(attr.type, SA_JSON)


def project_rows(qb: QueryBuilder, rows: RowSelection) -> List[ProjectedColumn]:
    """Columns for the requested scalars, the ordering values and nested relations."""
    shape = qb.context.shapes[qb.table.id]
    out: List[ProjectedColumn] = []
    for name in rows.scalars:
        attr = shape.scalars[name]
        out.append(ProjectedColumn(key=name, expr=qb.alias.c[attr.name], nested=_is_json_attribute(attr)))
    for i, term in enumerate(qb.order):
        out.append(ProjectedColumn(key=f"{ORDER_KEY_PREFIX}{i}", expr=term.column))
    for rel in rows.relations:
        spec = shape.relations[rel.field_name]
        out.append(ProjectedColumn(
            key=f"{RELATION_KEY_PREFIX}{rel.response_key}",
            expr=spec.build(qb, rel),
            nested=True,
        ))
    return out


def json_key(key: str) -> Any:
    return literal_column("'" + key.replace("'", "''") + "'")


def json_rows_subquery(qb: QueryBuilder, columns: Sequence[ProjectedColumn]) -> Any:
    """Aggregate the builder's rows into a JSON array scalar sub-select."""
    adapter = qb.adapter
    labelled = [c.expr.label(f"c{i}") for i, c in enumerate(columns)]
    if not labelled:
        labelled = [literal_column('1').label('c')]
    limited = qb.build_select(labelled).subquery()
    pairs: List[Any] = []
    for i, c in enumerate(columns):
        col = limited.c[f"c{i}"]
        pairs.extend([json_key(c.key), adapter.json_nested(col) if c.nested else col])
    agg = select(adapter.json_array_coalesce(adapter.json_array_agg(adapter.json_object(*pairs)))).select_from(limited)
    if qb.parent is not None:
        agg = agg.correlate(qb.parent.alias)
    return agg.scalar_subquery()


def connection_object(qb: QueryBuilder, rows: Any, *, total_count: bool) -> Any:
    adapter = qb.adapter
    pairs = [json_key(ROWS_KEY), adapter.json_nested(rows)]
    if total_count:
        pairs.extend([json_key(TOTAL_COUNT_KEY), qb.build_count().scalar_subquery()])
    return adapter.json_object(*pairs)


# ---------- many-to-many ----------

@dataclass
class AssembledRelation:
    expr: Any
    builder: QueryBuilder
    plan: RelationPlan


class ManyToManyQueryAssembler:
    """Correlated sub-select for one many-to-many relation.

    The right table is joined to the junction table, and the junction table
    is tied to the enclosing row of the left table. The junction alias is
    left on the builder for argument hooks such as the junction condition.
    """

    def __init__(self, descriptor: RelationDescriptor, *, types: Any, auto_camel: bool = False):
        self.descriptor = descriptor
        self.types = types
        self.auto_camel = auto_camel

    def assemble(
        self,
        parent: QueryBuilder,
        mode: str,
        selection: RelationSelection,
        arg_hooks: Iterable[ArgHook] = (),
    ) -> AssembledRelation:
        d = self.descriptor
        if self.types.output_type(d.right_table) is None:
            raise TypeResolutionError(
                f"Could not determine the output type for {parent.context.catalog.describe(d.right_table)}"
            )
        allocator = AliasAllocator(parent.aliases_in_scope())
        right = allocator.alias(d.right_table)
        junction = allocator.alias(d.junction_table)
        qb = QueryBuilder(right, table=d.right_table, context=parent.context, parent=parent)
        qb.junction_alias = junction
        qb.join(junction, right.c[d.right_key.name] == junction.c[d.junction_right_key.name])
        qb.join(
            parent.alias,
            junction.c[d.junction_left_key.name] == parent.alias.c[d.left_key.name],
            correlated=True,
        )

        arguments = selection.arguments or {}
        for hook in arg_hooks:
            hook(qb, arguments)
        apply_ordering(qb, arguments.get('order_by'), auto_camel=self.auto_camel)
        apply_primary_key_fallback(qb)
        window = apply_pagination(qb, arguments, connection=mode == CONNECTION)

        rows = json_rows_subquery(qb, project_rows(qb, selection.rows))
        if mode == LIST:
            expr = rows
        else:
            expr = connection_object(qb, rows, total_count=selection.total_count)
        plan = relation_plan(qb, mode, window)
        selection.plan = plan
        _logger.debug(
            "m2m %s -> %s via %s as %s/%s (%s)",
            d.left_table.name, d.right_table.name, d.junction_table.name, right.name, junction.name, mode,
        )
        return AssembledRelation(expr=expr, builder=qb, plan=plan)


__all__ = [
    'QueryContext',
    'JoinSpec',
    'OrderTerm',
    'PageWindow',
    'RelationPlan',
    'ProjectedColumn',
    'QueryBuilder',
    'AssembledRelation',
    'ManyToManyQueryAssembler',
    'apply_ordering',
    'apply_primary_key_fallback',
    'apply_pagination',
    'relation_plan',
    'project_rows',
    'json_rows_subquery',
    'connection_object',
    'PRIMARY_KEY_ASC',
    'NATURAL',
    'ROWS_KEY',
    'TOTAL_COUNT_KEY',
    'ORDER_KEY_PREFIX',
    'RELATION_KEY_PREFIX',
]
