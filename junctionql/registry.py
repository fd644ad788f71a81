"""Schema pipeline: catalogue → strawberry schema.

:class:`JunctionSchema` runs an ordered list of named stages over a frozen
:class:`BuildContext`. Each stage returns a new context:

``prepare``
    selectable tables, plain row/edge/connection classes
``types``
    plugin type contributions (condition inputs)
``fields``
    scalar columns and plugin field contributions per table
``finalize``
    annotate and decorate the strawberry types
``query``
    root collection fields

Resolution follows a pushdown model: a root resolver analyses the selection,
renders one SELECT with every relation as a correlated JSON sub-select,
executes it once and hydrates the result. Relation resolvers only read back
the pushed-down value for their response key.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Annotated, Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import strawberry
from sqlalchemy import literal_column
from strawberry.schema.config import StrawberryConfig
from strawberry.types import Info as StrawberryInfo

from .adapters import get_adapter
from .catalog import Attribute, Catalog, Table
from .conditions import equality_predicates, table_condition_fields
from .core.errors import QueryContextError, TypeResolutionError
from .core.hydration import PUSHED_ATTR, Hydrator
from .core.naming import Inflector
from .core.omit import READ, OmitPredicate, no_omit
from .core.selection import CONNECTION, LIST, SelectionAnalyzer
from .core.utils import get_db_session
from .plugins import FieldSpec, ManyToManyPlugin, SchemaPlugin, TableConditionPlugin, collection_arguments
from .settings import SchemaSettings
from .sql.aliases import AliasAllocator
from .sql.builders import (
    QueryBuilder,
    QueryContext,
    apply_ordering,
    apply_pagination,
    apply_primary_key_fallback,
    project_rows,
    relation_plan,
)
from .types import TypeRegistry

_logger = logging.getLogger("junctionql")

_LOCK_KEY = '_junctionql_db_lock'


@strawberry.type(description="Information about pagination in a connection.")
class PageInfo:
    has_next_page: bool = strawberry.field(description="When paginating forwards, are there more items?")
    has_previous_page: bool = strawberry.field(description="When paginating backwards, are there more items?")
    start_cursor: Optional[str] = strawberry.field(default=None, description="When paginating backwards, the cursor to continue.")
    end_cursor: Optional[str] = strawberry.field(default=None, description="When paginating forwards, the cursor to continue.")


@dataclass(frozen=True)
class TableShape:
    """Exposed fields of one table: scalar columns and contributed relations."""

    table: Table
    type_name: str
    scalars: Mapping[str, Attribute]
    relations: Mapping[str, FieldSpec]


@dataclass(frozen=True)
class BuildContext:
    catalog: Catalog
    settings: SchemaSettings
    inflector: Inflector
    omit: OmitPredicate
    types: TypeRegistry
    plugins: Tuple[SchemaPlugin, ...] = ()
    tables: Tuple[Table, ...] = ()
    row_types: Mapping[str, type] = field(default_factory=dict)
    edge_types: Mapping[str, type] = field(default_factory=dict)
    connection_types: Mapping[str, type] = field(default_factory=dict)
    shapes: Mapping[str, TableShape] = field(default_factory=dict)
    hydrator: Optional[Hydrator] = None
    query: Optional[type] = None


Stage = Tuple[str, Callable[[BuildContext], BuildContext]]


def _get_context_lock(info: StrawberryInfo) -> asyncio.Lock:
    """Per-request lock stored on ``info.context`` so root fields share the session serially."""
    ctx = getattr(info, 'context', None)
    lock = None
    if isinstance(ctx, dict):
        lock = ctx.get(_LOCK_KEY)
        if lock is None:
            lock = ctx[_LOCK_KEY] = asyncio.Lock()
    elif ctx is not None:
        lock = getattr(ctx, _LOCK_KEY, None)
        if lock is None:
            lock = asyncio.Lock()
            setattr(ctx, _LOCK_KEY, lock)
    return lock or asyncio.Lock()


def _read_pushed(self, info: StrawberryInfo) -> Any:
    pushed = getattr(self, PUSHED_ATTR, None) or {}
    key = info.path.key
    if key not in pushed:
        raise QueryContextError(f"Relation value for '{key}' was not loaded with its parent row")
    return pushed[key]


def _make_resolver(fn_name: str, impl: Callable, arguments: Sequence[Any], return_annotation: Any, *, is_async: bool):
    """Build a resolver whose signature exposes ``arguments`` to strawberry."""
    params = 'self, info'
    if arguments:
        params += ', ' + ', '.join(f"{a.name}=None" for a in arguments)
    call = 'await _impl(self, info)' if is_async else '_impl(self, info)'
    src = f"{'async ' if is_async else ''}def {fn_name}({params}):\n    return {call}\n"
    env: Dict[str, Any] = {'_impl': impl}
    exec(src, env)
    fn = env[fn_name]
    fn.__module__ = __name__
    anns: Dict[str, Any] = {'info': StrawberryInfo}
    for a in arguments:
        anns[a.name] = Annotated[a.annotation, strawberry.argument(description=a.description)]
    anns['return'] = return_annotation
    fn.__annotations__ = anns
    return fn


class JunctionSchema:
    """Generate a strawberry schema from a catalogue.

    Example:
        schema = JunctionSchema(Catalog.from_metadata(Base.metadata)).to_strawberry()
        await schema.execute(query, context_value={'db_session': session})
    """

    def __init__(
        self,
        catalog: Catalog,
        settings: Optional[SchemaSettings] = None,
        inflector: Optional[Inflector] = None,
        omit: Optional[OmitPredicate] = None,
        plugins: Optional[Sequence[SchemaPlugin]] = None,
    ):
        self.catalog = catalog
        self.settings = settings or SchemaSettings()
        self.inflector = inflector or Inflector()
        self.omit = omit or no_omit
        self.plugins: Tuple[SchemaPlugin, ...] = tuple(
            plugins if plugins is not None else (TableConditionPlugin(), ManyToManyPlugin())
        )

    @property
    def stages(self) -> List[Stage]:
        return [
            ('prepare', self._prepare),
            ('types', self._contribute_types),
            ('fields', self._contribute_fields),
            ('finalize', self._finalize),
            ('query', self._build_query),
        ]

    def build(self) -> BuildContext:
        ctx = BuildContext(
            catalog=self.catalog,
            settings=self.settings,
            inflector=self.inflector,
            omit=self.omit,
            types=TypeRegistry(self.inflector),
            plugins=self.plugins,
        )
        for name, stage in self.stages:
            ctx = stage(ctx)
            _logger.debug("schema stage %s done", name)
        return ctx

    def to_strawberry(self, *, strawberry_config: Optional[StrawberryConfig] = None) -> strawberry.Schema:
        ctx = self.build()
        config = strawberry_config or StrawberryConfig(auto_camel_case=self.settings.auto_camel_case)
        return strawberry.Schema(query=ctx.query, config=config)

    # ---------- stages ----------
    def _prepare(self, ctx: BuildContext) -> BuildContext:
        tables = tuple(t for t in ctx.catalog.tables if t.is_selectable and not ctx.omit(t, READ))
        row_types: Dict[str, type] = {}
        edge_types: Dict[str, type] = {}
        connection_types: Dict[str, type] = {}
        for table in tables:
            type_name = ctx.inflector.table_type(table)
            row_cls = type(type_name, (), {'__doc__': table.description or f'A row of `{table.name}`.'})
            row_cls.__module__ = __name__
            row_types[table.id] = ctx.types.register(type_name, row_cls)
            edge_name = ctx.inflector.edge(type_name)
            edge_cls = type(edge_name, (), {'__doc__': f'A `{type_name}` edge in the connection.'})
            edge_cls.__module__ = __name__
            edge_types[table.id] = ctx.types.register(edge_name, edge_cls)
            conn_name = ctx.inflector.connection(type_name)
            conn_cls = type(conn_name, (), {'__doc__': f'A connection to a list of `{type_name}` values.'})
            conn_cls.__module__ = __name__
            connection_types[table.id] = ctx.types.register(conn_name, conn_cls)
        return replace(ctx, tables=tables, row_types=row_types, edge_types=edge_types, connection_types=connection_types)

    def _contribute_types(self, ctx: BuildContext) -> BuildContext:
        for plugin in ctx.plugins:
            for name, tp in (plugin.contribute_types(ctx) or {}).items():
                ctx.types.register(name, tp)
        return ctx

    def _contribute_fields(self, ctx: BuildContext) -> BuildContext:
        shapes: Dict[str, TableShape] = {}
        for table in ctx.tables:
            scalars = {
                ctx.inflector.column(a): a
                for a in table.attributes
                if not ctx.omit(a, READ)
            }
            relations: Dict[str, FieldSpec] = {}
            for plugin in ctx.plugins:
                for name, spec in (plugin.contribute_fields(ctx, table) or {}).items():
                    if name in scalars or name in relations:
                        raise TypeResolutionError(
                            f"Field '{name}' from plugin {plugin.name} clashes with an existing field "
                            f"of {ctx.catalog.describe(table)}"
                        )
                    relations[name] = spec
            shapes[table.id] = TableShape(
                table=table,
                type_name=ctx.inflector.table_type(table),
                scalars=scalars,
                relations=relations,
            )
        return replace(ctx, shapes=shapes)

    def _relation_annotation(self, ctx: BuildContext, spec: FieldSpec) -> Any:
        if spec.target.id not in ctx.row_types:
            raise TypeResolutionError(f"Could not determine type for {ctx.catalog.describe(spec.target)}")
        if spec.mode == LIST:
            return List[ctx.row_types[spec.target.id]]  # type: ignore[index]
        return ctx.connection_types[spec.target.id]

    def _finalize(self, ctx: BuildContext) -> BuildContext:
        for table in ctx.tables:
            shape = ctx.shapes[table.id]
            row_cls = ctx.row_types[table.id]
            annotations: Dict[str, Any] = {}
            for fname, attr in shape.scalars.items():
                annotations[fname] = Optional[ctx.types.python_type(attr)]
                setattr(row_cls, fname, strawberry.field(default=None, description=attr.description))
            for fname, spec in shape.relations.items():
                resolver = _make_resolver(
                    f"_rel_{fname}_resolver",
                    _read_pushed,
                    spec.arguments,
                    self._relation_annotation(ctx, spec),
                    is_async=False,
                )
                setattr(row_cls, fname, strawberry.field(resolver=resolver, description=spec.description))
            row_cls.__annotations__ = annotations
            strawberry.type(row_cls, name=shape.type_name, description=table.description)

            edge_cls = ctx.edge_types[table.id]
            edge_cls.__annotations__ = {'cursor': Optional[str], 'node': row_cls}
            edge_cls.cursor = strawberry.field(description="A cursor for use in pagination.")
            edge_cls.node = strawberry.field(description=f"The `{shape.type_name}` at the end of the edge.")
            strawberry.type(edge_cls, name=ctx.inflector.edge(shape.type_name))

            conn_cls = ctx.connection_types[table.id]
            conn_cls.__annotations__ = {
                'nodes': List[row_cls],  # type: ignore[valid-type]
                'edges': List[edge_cls],  # type: ignore[valid-type]
                'page_info': PageInfo,
                'total_count': int,
            }
            conn_cls.nodes = strawberry.field(description=f"A list of `{shape.type_name}` objects.")
            conn_cls.edges = strawberry.field(
                description=f"A list of edges which contains the `{shape.type_name}` and cursor to aid in pagination."
            )
            conn_cls.page_info = strawberry.field(description="Information to aid in pagination.")
            conn_cls.total_count = strawberry.field(
                description=f"The count of *all* `{shape.type_name}` you could get from the connection."
            )
            strawberry.type(conn_cls, name=ctx.inflector.connection(shape.type_name))
        hydrator = Hydrator(
            shapes=ctx.shapes,
            row_types=ctx.row_types,
            connection_types=ctx.connection_types,
            edge_types=ctx.edge_types,
            page_info_type=PageInfo,
        )
        return replace(ctx, hydrator=hydrator)

    def _build_query(self, ctx: BuildContext) -> BuildContext:
        QueryPlain = type('Query', (), {'__doc__': 'The root query type.'})
        QueryPlain.__module__ = __name__
        for table in ctx.tables:
            shape = ctx.shapes[table.id]
            condition_type = ctx.types.condition_type(shape.type_name)
            for mode, fname in (
                (CONNECTION, ctx.inflector.all_rows(table)),
                (LIST, ctx.inflector.all_rows_simple(table)),
            ):
                spec = FieldSpec(
                    name=fname,
                    mode=mode,
                    target=table,
                    arguments=collection_arguments(mode, condition_type),
                    build=None,  # type: ignore[arg-type]
                    description=f"Reads and enables pagination through a set of `{shape.type_name}`.",
                )
                resolver = _make_resolver(
                    f"_root_{fname}_resolver",
                    self._make_root_impl(ctx, spec),
                    spec.arguments,
                    self._relation_annotation(ctx, spec),
                    is_async=True,
                )
                setattr(QueryPlain, fname, strawberry.field(resolver=resolver, description=spec.description))
        query = strawberry.type(QueryPlain, name='Query')
        return replace(ctx, query=query)

    # ---------- resolution ----------
    def _make_root_impl(self, ctx: BuildContext, spec: FieldSpec):
        table = spec.target
        condition_fields = table_condition_fields(table, ctx.inflector, ctx.omit)
        auto_camel = ctx.settings.auto_camel_case

        async def _impl(_root, info: StrawberryInfo):
            session = get_db_session(info)
            if session is None:
                raise QueryContextError("No database session in the request context (expected 'db_session')")
            try:
                dialect_name = session.get_bind().dialect.name
            except AttributeError:
                dialect_name = 'sqlite'
            qctx = QueryContext(
                adapter=get_adapter(dialect_name),
                catalog=ctx.catalog,
                shapes=ctx.shapes,
                settings=ctx.settings,
            )
            analyzer = SelectionAnalyzer(ctx.shapes, auto_camel=auto_camel)
            selection = analyzer.relation_selection(spec, info.selected_fields[0], spec.name)
            alias = AliasAllocator().alias(table)
            qb = QueryBuilder(alias, table=table, context=qctx)
            args = selection.arguments
            qb.where(*equality_predicates(alias, condition_fields, args.get('condition'), auto_camel=auto_camel))
            apply_ordering(qb, args.get('order_by'), auto_camel=auto_camel)
            apply_primary_key_fallback(qb)
            window = apply_pagination(qb, args, connection=spec.mode == CONNECTION)
            selection.plan = relation_plan(qb, spec.mode, window)
            columns = [c.expr.label(c.key) for c in project_rows(qb, selection.rows)]
            stmt = qb.build_select(columns or [literal_column('1').label('_')])
            async with _get_context_lock(info):
                result = await session.execute(stmt)
                rows = [dict(r._mapping) for r in result]
                total_count = None
                if spec.mode == CONNECTION and selection.total_count:
                    total_count = (await session.execute(qb.build_count())).scalar_one()
            _logger.debug("root %s: %d rows", spec.name, len(rows))
            hydrator = ctx.hydrator
            if spec.mode == LIST:
                return [hydrator.row(table.id, selection.rows, m) for m in rows]
            return hydrator.connection(table.id, selection, rows, total_count=total_count)

        return _impl


__all__ = ['JunctionSchema', 'BuildContext', 'TableShape', 'PageInfo', 'Stage']
