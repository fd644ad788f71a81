from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import inflection

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..catalog import Attribute, Table
    from .inference import RelationDescriptor

NameConverter = Optional[Callable[[str], str]]

__all__ = [
    'NameConverter',
    'Inflector',
    'from_camel',
    'to_camel',
    'map_graphql_to_python',
]

_camel_to_snake_pattern = re.compile(r'(?<!^)(?=[A-Z])')


def from_camel(name: str) -> str:
    """Convert lower/upper camelCase to snake_case."""
    if not name:
        return name
    return _camel_to_snake_pattern.sub('_', str(name)).lower()


def to_camel(name: str) -> str:
    """Convert snake_case to lowerCamelCase."""
    if not name:
        return name
    parts = str(name).split('_')
    return parts[0] + ''.join(p.capitalize() for p in parts[1:])


def map_graphql_to_python(
    name: str,
    fields_map: Dict[str, Any],
    *,
    auto_camel: bool,
    name_converter: NameConverter = None,
) -> str:
    """Map a GraphQL field/argument name back to the Python key used in ``fields_map``."""
    if not name:
        return name
    if name in fields_map:
        return name
    if auto_camel:
        snake = from_camel(name)
        if snake in fields_map:
            return snake
        for py_name in fields_map.keys():
            if to_camel(py_name) == name:
                return py_name
    if callable(name_converter):
        for py_name in fields_map.keys():
            if name_converter(py_name) == name:
                return py_name
    return name


class Inflector:
    """Pure naming strategy for generated types and fields.

    Field names are produced in snake_case; strawberry's ``auto_camel_case``
    (see :class:`~junctionql.settings.SchemaSettings`) decides whether they
    are exposed camelCased. Subclass and override any method to rename.
    """

    def pluralize(self, name: str) -> str:
        return inflection.pluralize(name)

    def singularize(self, name: str) -> str:
        return inflection.singularize(name)

    def upper_camel(self, name: str) -> str:
        return inflection.camelize(inflection.underscore(name), True)

    def snake(self, name: str) -> str:
        return inflection.underscore(name)

    def _singularized_table_name(self, table: 'Table') -> str:
        return self.singularize(table.name)

    # ---------- columns / tables ----------
    def column(self, attr: 'Attribute') -> str:
        return self.snake(attr.name)

    def table_type(self, table: 'Table') -> str:
        explicit = (table.tags or {}).get('name')
        if explicit:
            return str(explicit)
        return self.upper_camel(self._singularized_table_name(table))

    def connection(self, type_name: str) -> str:
        return f"{self.upper_camel(self.pluralize(type_name))}Connection"

    def edge(self, type_name: str) -> str:
        return f"{self.upper_camel(self.pluralize(type_name))}Edge"

    def condition_type_name(self, name: str) -> str:
        return f"{self.upper_camel(name)}Condition"

    def all_rows(self, table: 'Table') -> str:
        return f"all_{self.snake(self.pluralize(self._singularized_table_name(table)))}"

    def all_rows_simple(self, table: 'Table') -> str:
        return f"{self.all_rows(table)}_list"

    # ---------- many-to-many ----------
    def _relation_base_name(self, descriptor: 'RelationDescriptor') -> str:
        keys = [
            *descriptor.junction_left_key_attributes,
            *descriptor.junction_right_key_attributes,
        ]
        right = self.pluralize(self._singularized_table_name(descriptor.right_table))
        junction = self._singularized_table_name(descriptor.junction_table)
        return self.snake(f"{right}_by_{junction}_{'_and_'.join(self.column(a) for a in keys)}")

    def relation_field_name(self, descriptor: 'RelationDescriptor') -> str:
        explicit = (descriptor.junction_right_constraint.tags or {}).get('many_to_many_field_name')
        if explicit:
            return str(explicit)
        return self._relation_base_name(descriptor)

    def relation_field_name_simple(self, descriptor: 'RelationDescriptor') -> str:
        explicit = (descriptor.junction_right_constraint.tags or {}).get('many_to_many_simple_field_name')
        if explicit:
            return str(explicit)
        return f"{self._relation_base_name(descriptor)}_list"
