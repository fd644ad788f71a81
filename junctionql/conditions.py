"""Equality conditions: table-level and junction-scoped.

A condition is an input object whose fields are columns. A field set to a
value filters on ``column = value``, a field explicitly set to null filters
on ``column IS NULL`` and an absent field adds nothing.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import strawberry
from strawberry import UNSET

from .catalog import Attribute, Table
from .core.errors import QueryContextError
from .core.inference import RelationDescriptor
from .core.naming import Inflector, map_graphql_to_python
from .core.omit import FILTER, READ, OmitPredicate, no_omit
from .core.utils import coerce_value
from .types import TypeRegistry

_logger = logging.getLogger("junctionql")


def _condition_items(condition: Any) -> Iterable[Tuple[str, Any]]:
    """(name, value) pairs that are present; strawberry inputs skip UNSET fields."""
    if condition is None or condition is UNSET:
        return ()
    if isinstance(condition, Mapping):
        return list(condition.items())
    items = []
    for name in getattr(condition, '__annotations__', {}) or {}:
        value = getattr(condition, name, UNSET)
        if value is not UNSET:
            items.append((name, value))
    return items


def equality_predicates(
    alias: Any,
    fields: Mapping[str, Attribute],
    condition: Any,
    *,
    auto_camel: bool = False,
) -> List[Any]:
    """Predicates for ``condition`` against ``alias``; unknown fields raise ``ValueError``."""
    preds: List[Any] = []
    for name, value in _condition_items(condition):
        py_name = map_graphql_to_python(name, fields, auto_camel=auto_camel)
        attr = fields.get(py_name)
        if attr is None:
            raise ValueError(f"Unknown condition field: {name}")
        col = alias.c[attr.name]
        if value is None:
            preds.append(col.is_(None))
        else:
            preds.append(col == coerce_value(attr.type, value))
    return preds


def build_condition_input(
    type_name: str,
    fields: Mapping[str, Attribute],
    types: TypeRegistry,
    *,
    description: Optional[str] = None,
    field_description: Optional[Callable[[str, Attribute], Optional[str]]] = None,
) -> Optional[type]:
    """Create (and register) a strawberry input with one optional field per attribute."""
    if not fields:
        return None
    existing = types.get(type_name)
    if existing is not None:
        return existing
    InPlain = type(type_name, (), {'__doc__': description or f'Equality condition {type_name}.'})
    anns: Dict[str, Any] = {}
    for fname, attr in fields.items():
        anns[fname] = Optional[types.python_type(attr)]
        desc = field_description(fname, attr) if field_description else attr.description
        setattr(InPlain, fname, strawberry.field(default=UNSET, description=desc))
    setattr(InPlain, '__annotations__', anns)
    InType = strawberry.input(InPlain, name=type_name, description=description)  # type: ignore
    return types.register(type_name, InType)


def table_condition_fields(table: Table, inflector: Inflector, omit: OmitPredicate = no_omit) -> Dict[str, Attribute]:
    return {
        inflector.column(a): a
        for a in table.attributes
        if not omit(a, READ) and not omit(a, FILTER)
    }


class JunctionConditionInjector:
    """Filters a many-to-many relation by columns of its junction table.

    Only junction columns that are filterable and not part of either join key
    take part. The injector is used as an argument hook of
    :class:`~junctionql.sql.builders.ManyToManyQueryAssembler` and reads the
    junction alias the assembler leaves on the query builder.
    """

    def __init__(
        self,
        descriptor: RelationDescriptor,
        *,
        types: Optional[TypeRegistry] = None,
        inflector: Optional[Inflector] = None,
        omit: OmitPredicate = no_omit,
        auto_camel: bool = False,
    ):
        self.descriptor = descriptor
        self.inflector = inflector or Inflector()
        self.types = types if types is not None else TypeRegistry(self.inflector)
        self.omit = omit
        self.auto_camel = auto_camel
        keys = set(map(id, (*descriptor.junction_left_key_attributes, *descriptor.junction_right_key_attributes)))
        self.fields: Dict[str, Attribute] = {
            self.inflector.column(a): a
            for a in descriptor.junction_table.attributes
            if id(a) not in keys and not omit(a, FILTER)
        }

    @property
    def relevant_attributes(self) -> List[Attribute]:
        return list(self.fields.values())

    def type_name(self) -> str:
        return self.inflector.condition_type_name(self.inflector.relation_field_name(self.descriptor))

    def build_input_type(self, name: Optional[str] = None) -> Optional[type]:
        """Input type for the relation's ``condition`` argument, or ``None`` without relevant columns."""
        if not self.fields:
            _logger.debug("m2m %s: no junction columns to filter on", self.descriptor.junction_table.name)
            return None
        relation_name = self.inflector.relation_field_name(self.descriptor)
        return build_condition_input(
            name or self.type_name(),
            self.fields,
            self.types,
            description=(
                f"A condition to be used against `{relation_name}` object types. "
                "All fields are tested for equality and combined with a logical 'and.'"
            ),
            field_description=lambda fname, _attr: f"Checks for equality with the `{fname}` field in the junction table.",
        )

    def predicates(self, alias: Any, condition: Any) -> List[Any]:
        return equality_predicates(alias, self.fields, condition, auto_camel=self.auto_camel)

    def apply(self, qb: Any, condition: Any) -> None:
        alias = getattr(qb, 'junction_alias', None)
        if alias is None:
            raise QueryContextError(
                f"No junction alias on the query builder for {self.descriptor.junction_table.name}"
            )
        qb.where(*self.predicates(alias, condition))

    def __call__(self, qb: Any, arguments: Mapping[str, Any]) -> None:
        self.apply(qb, (arguments or {}).get('condition'))


__all__ = [
    'JunctionConditionInjector',
    'build_condition_input',
    'equality_predicates',
    'table_condition_fields',
]
