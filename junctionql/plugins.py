"""Schema plugins.

A plugin contributes named types (``contribute_types``) and extra fields for
a table's row type (``contribute_fields``). Contributions are plain data:
:class:`FieldSpec` describes the GraphQL field and carries the callable that
renders its SQL for a parent query builder.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Tuple

from .catalog import Table
from .conditions import JunctionConditionInjector, build_condition_input, table_condition_fields
from .core.errors import TypeResolutionError
from .core.inference import RelationDescriptor, infer_many_to_many
from .core.omit import FILTER
from .core.selection import CONNECTION, LIST, RelationSelection
from .settings import effective_simple_collections, has_connections, has_simple_collections
from .sql.builders import ManyToManyQueryAssembler, QueryBuilder

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .registry import BuildContext

_logger = logging.getLogger("junctionql")

_ARG_DESC_FIRST = "Only read the first `n` values of the set."
_ARG_DESC_OFFSET = "Skip the first `n` values. Combined with `after` the offset counts from the cursor."
_ARG_DESC_AFTER = "Read all values in the set after (below) this cursor."
_ARG_DESC_ORDER_BY = "Ordering as a list of 'column:direction' entries (direction asc|desc, default asc)."
_ARG_DESC_CONDITION = "A condition to be used in determining which values should be returned by the collection."


@dataclass(frozen=True)
class ArgumentSpec:
    name: str
    annotation: Any
    description: Optional[str] = None


@dataclass(frozen=True)
class FieldSpec:
    """A generated collection field on a row type.

    ``build(parent_builder, selection)`` returns the SQL expression whose
    value the field resolver later reads back by response key.
    """

    name: str
    mode: str
    target: Table
    arguments: Tuple[ArgumentSpec, ...]
    build: Callable[[QueryBuilder, RelationSelection], Any]
    description: Optional[str] = None


def collection_arguments(mode: str, condition_type: Any = None) -> Tuple[ArgumentSpec, ...]:
    args = [
        ArgumentSpec('first', Optional[int], _ARG_DESC_FIRST),
        ArgumentSpec('offset', Optional[int], _ARG_DESC_OFFSET),
    ]
    if mode == CONNECTION:
        args.append(ArgumentSpec('after', Optional[str], _ARG_DESC_AFTER))
    args.append(ArgumentSpec('order_by', Optional[List[str]], _ARG_DESC_ORDER_BY))
    if condition_type is not None:
        args.append(ArgumentSpec('condition', Optional[condition_type], _ARG_DESC_CONDITION))
    return tuple(args)


class SchemaPlugin:
    """Base class; both extension points default to contributing nothing."""

    name = 'plugin'

    def contribute_types(self, ctx: 'BuildContext') -> Mapping[str, type]:
        return {}

    def contribute_fields(self, ctx: 'BuildContext', table: Table) -> Mapping[str, FieldSpec]:
        return {}


class TableConditionPlugin(SchemaPlugin):
    """``<Type>Condition`` inputs used by the root collection fields."""

    name = 'table_condition'

    def contribute_types(self, ctx: 'BuildContext') -> Mapping[str, type]:
        out: Dict[str, type] = {}
        for table in ctx.tables:
            type_name = ctx.inflector.table_type(table)
            cond_name = ctx.inflector.condition_type_name(type_name)
            tp = build_condition_input(
                cond_name,
                table_condition_fields(table, ctx.inflector, ctx.omit),
                ctx.types,
                description=(
                    f"A condition to be used against `{type_name}` object types. "
                    "All fields are tested for equality and combined with a logical 'and.'"
                ),
                field_description=lambda fname, _attr: f"Checks for equality with the object's `{fname}` field.",
            )
            if tp is not None:
                out[cond_name] = tp
        return out


class ManyToManyPlugin(SchemaPlugin):
    """Connection and simple-collection fields for inferred many-to-many relations."""

    name = 'many_to_many'

    def __init__(self):
        self._catalog_key: Optional[int] = None
        self._relations: Dict[str, List[RelationDescriptor]] = {}

    def relations(self, ctx: 'BuildContext', table: Table) -> List[RelationDescriptor]:
        """Inferred relations of ``table``, computed once per catalogue."""
        if self._catalog_key != id(ctx.catalog):
            self._catalog_key = id(ctx.catalog)
            self._relations = {}
        if table.id not in self._relations:
            self._relations[table.id] = infer_many_to_many(table, ctx.catalog, ctx.omit)
        return self._relations[table.id]

    def _injector(self, ctx: 'BuildContext', descriptor: RelationDescriptor) -> JunctionConditionInjector:
        return JunctionConditionInjector(
            descriptor,
            types=ctx.types,
            inflector=ctx.inflector,
            omit=ctx.omit,
            auto_camel=ctx.settings.auto_camel_case,
        )

    def contribute_types(self, ctx: 'BuildContext') -> Mapping[str, type]:
        out: Dict[str, type] = {}
        for table in ctx.tables:
            if ctx.omit(table, FILTER):
                continue
            for descriptor in self.relations(ctx, table):
                injector = self._injector(ctx, descriptor)
                tp = injector.build_input_type()
                if tp is not None:
                    out[injector.type_name()] = tp
        return out

    def contribute_fields(self, ctx: 'BuildContext', table: Table) -> Mapping[str, FieldSpec]:
        out: Dict[str, FieldSpec] = {}
        readable = {t.id for t in ctx.tables}
        for descriptor in self.relations(ctx, table):
            right = descriptor.right_table
            if right.id not in readable:
                raise TypeResolutionError(
                    f"Could not determine type for {ctx.catalog.describe(right)} "
                    f"(constraint: {descriptor.junction_right_constraint.name})"
                )
            setting = effective_simple_collections(
                (descriptor.junction_right_constraint.tags or {}).get('simple_collections'),
                (right.tags or {}).get('simple_collections'),
                ctx.settings.simple_collections,
            )
            injector = self._injector(ctx, descriptor)
            condition_type = ctx.types.get(injector.type_name())
            assembler = ManyToManyQueryAssembler(
                descriptor, types=ctx.types, auto_camel=ctx.settings.auto_camel_case
            )
            description = f"Reads and enables pagination through a set of `{ctx.inflector.table_type(right)}`."
            modes = []
            if has_connections(setting):
                modes.append((CONNECTION, ctx.inflector.relation_field_name(descriptor)))
            if has_simple_collections(setting):
                modes.append((LIST, ctx.inflector.relation_field_name_simple(descriptor)))
            for mode, field_name in modes:
                if field_name in out:
                    raise TypeResolutionError(
                        f"Field '{field_name}' is generated twice on {ctx.catalog.describe(table)}"
                    )
                out[field_name] = FieldSpec(
                    name=field_name,
                    mode=mode,
                    target=right,
                    arguments=collection_arguments(mode, condition_type),
                    build=_relation_builder(assembler, mode, injector if condition_type is not None else None),
                    description=description,
                )
                _logger.debug(
                    "m2m field %s.%s (%s) via %s", table.name, field_name, mode, descriptor.junction_table.name
                )
        return out


def _relation_builder(assembler: ManyToManyQueryAssembler, mode: str, injector: Optional[JunctionConditionInjector]):
    hooks = (injector,) if injector is not None else ()

    def build(parent: QueryBuilder, selection: RelationSelection) -> Any:
        return assembler.assemble(parent, mode, selection, arg_hooks=hooks).expr

    return build


__all__ = [
    'ArgumentSpec',
    'FieldSpec',
    'SchemaPlugin',
    'TableConditionPlugin',
    'ManyToManyPlugin',
    'collection_arguments',
]
