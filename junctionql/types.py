from __future__ import annotations

import uuid as _py_uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Uuid as SA_UUID
from sqlalchemy.sql.sqltypes import (
    JSON as SA_JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnumType,
    Integer,
    Numeric as SANumeric,
    String,
)
from sqlalchemy.types import TypeDecorator
from sqlalchemy.dialects.postgresql import ARRAY as PG_ARRAY, JSONB as PG_JSONB, UUID as PG_UUID
import strawberry
from strawberry.scalars import JSON as ST_JSON

from .core.naming import Inflector

__all__ = ['TypeRegistry', 'sa_python_type']


def sa_python_type(sqlatype: Any) -> Any:
    """Map a SQLAlchemy column type to a Python (annotation) type.

    Unknown types map to ``str``.
    """
    if sqlatype is None:
        return str
    if isinstance(sqlatype, TypeDecorator):
        inner_impl = getattr(sqlatype, 'impl', None)
        if inner_impl is not None and inner_impl is not sqlatype:
            return sa_python_type(inner_impl)
    # Enum subclasses String, so it is checked first
    if isinstance(sqlatype, SAEnumType):
        enum_cls = getattr(sqlatype, 'enum_class', None)
        return enum_cls if enum_cls is not None else str
    if isinstance(sqlatype, Boolean):
        return bool
    if isinstance(sqlatype, Integer):
        return int
    if isinstance(sqlatype, DateTime):
        return datetime
    if isinstance(sqlatype, Date):
        return date
    if isinstance(sqlatype, String):
        return str
    # DECIMAL/NUMERIC are exposed as Float
    if isinstance(sqlatype, SANumeric):
        return float
    if isinstance(sqlatype, (PG_UUID, SA_UUID)):
        return _py_uuid.UUID
    if isinstance(sqlatype, PG_ARRAY):
        inner = getattr(sqlatype, 'item_type', None)
        return List[sa_python_type(inner)]  # type: ignore[index]
    if isinstance(sqlatype, (SA_JSON, PG_JSONB)):
        return ST_JSON
    return str


class TypeRegistry:
    """Name → strawberry type lookup shared by the schema pipeline and plugins."""

    def __init__(self, inflector: Optional[Inflector] = None):
        self.inflector = inflector or Inflector()
        self._types: Dict[str, Any] = {}

    def register(self, name: str, tp: Any) -> Any:
        existing = self._types.get(name)
        if existing is not None and existing is not tp:
            raise ValueError(f"Type name '{name}' is already registered")
        self._types[name] = tp
        return tp

    def get(self, name: str) -> Optional[Any]:
        return self._types.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._types

    def names(self) -> List[str]:
        return list(self._types.keys())

    def output_type(self, table) -> Optional[Any]:
        return self._types.get(self.inflector.table_type(table))

    def connection_type(self, table) -> Optional[Any]:
        return self._types.get(self.inflector.connection(self.inflector.table_type(table)))

    def condition_type(self, name: str) -> Optional[Any]:
        return self._types.get(self.inflector.condition_type_name(name))

    def python_type(self, attribute) -> Any:
        py_t = sa_python_type(getattr(attribute, 'type', None))
        if isinstance(py_t, type) and issubclass(py_t, Enum):
            return self._strawberry_enum(py_t)
        return py_t

    def _strawberry_enum(self, enum_cls: type) -> Any:
        if hasattr(enum_cls, '__strawberry_definition__') or hasattr(enum_cls, '_enum_definition'):
            return enum_cls
        existing = self._types.get(enum_cls.__name__)
        if existing is not None:
            return existing
        return self.register(enum_cls.__name__, strawberry.enum(enum_cls, name=enum_cls.__name__))  # type: ignore
