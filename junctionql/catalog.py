"""Immutable snapshot of tables, columns and constraints.

The catalogue is what inference and schema generation read. It is normally
built from SQLAlchemy metadata (declared models or a reflected database) via
:meth:`Catalog.from_metadata` / :func:`reflect_catalog`, but it can also be
assembled by hand, which the tests do to model broken introspection results.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import MetaData
from sqlalchemy import ForeignKeyConstraint as SAForeignKeyConstraint
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlalchemy.exc import NoReferencedColumnError, NoReferencedTableError
from sqlalchemy.types import TypeEngine

_logger = logging.getLogger("junctionql")

DEFAULT_NAMESPACE = 'public'


class ConstraintKind(str, Enum):
    PRIMARY = 'p'
    UNIQUE = 'u'
    FOREIGN = 'f'


@dataclass(frozen=True, eq=False)
class Namespace:
    id: str
    name: str


@dataclass(frozen=True, eq=False)
class Attribute:
    """A table column.

    ``num`` is the 1-based ordinal within the owning table and is what
    uniqueness checks compare. ``type`` is the SQLAlchemy type of the column.
    """

    id: str
    name: str
    num: int
    type: Any
    class_id: str
    type_modifier: Optional[int] = None
    description: Optional[str] = None
    nullable: bool = True
    tags: Mapping[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Attribute({self.id!r})"


@dataclass(frozen=True, eq=False)
class Table:
    id: str
    name: str
    namespace: Namespace
    attributes: Tuple[Attribute, ...]
    description: Optional[str] = None
    is_selectable: bool = True
    tags: Mapping[str, Any] = field(default_factory=dict)

    def attribute_by_name(self, name: str) -> Optional[Attribute]:
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Table({self.id!r})"


@dataclass(frozen=True, eq=False)
class Constraint:
    id: str
    name: str
    class_id: str

    kind = None  # type: ConstraintKind | None


@dataclass(frozen=True, eq=False)
class PrimaryKeyConstraint(Constraint):
    key_attribute_nums: Tuple[int, ...] = ()
    tags: Mapping[str, Any] = field(default_factory=dict)

    kind = ConstraintKind.PRIMARY


@dataclass(frozen=True, eq=False)
class UniqueConstraint(Constraint):
    key_attribute_nums: Tuple[int, ...] = ()
    tags: Mapping[str, Any] = field(default_factory=dict)

    kind = ConstraintKind.UNIQUE


@dataclass(frozen=True, eq=False)
class ForeignKeyConstraint(Constraint):
    """``class_id`` owns the local columns, ``foreign_class_id`` is the referenced table."""

    foreign_class_id: str = ''
    key_attribute_nums: Tuple[int, ...] = ()
    foreign_key_attribute_nums: Tuple[int, ...] = ()
    tags: Mapping[str, Any] = field(default_factory=dict)

    kind = ConstraintKind.FOREIGN


class Catalog:
    """Indexed, read-only view over tables and constraints.

    Constraints are kept in the order given; every ordered query below
    (``constraints_of``, ``foreign_constraints``) preserves it.
    """

    def __init__(self, tables: Iterable[Table], constraints: Iterable[Constraint] = ()):
        self._tables: Tuple[Table, ...] = tuple(tables)
        self._constraints: Tuple[Constraint, ...] = tuple(constraints)
        self._tables_by_id: Dict[str, Table] = {t.id: t for t in self._tables}
        self._attributes: Dict[Tuple[str, int], Attribute] = {}
        for t in self._tables:
            for a in t.attributes:
                self._attributes[(t.id, a.num)] = a
        self._owned: Dict[str, List[Constraint]] = {}
        self._incoming: Dict[str, List[ForeignKeyConstraint]] = {}
        for con in self._constraints:
            self._owned.setdefault(con.class_id, []).append(con)
            if isinstance(con, ForeignKeyConstraint):
                self._incoming.setdefault(con.foreign_class_id, []).append(con)

    # ---------- lookups ----------
    @property
    def tables(self) -> Tuple[Table, ...]:
        return self._tables

    @property
    def constraints(self) -> Tuple[Constraint, ...]:
        return self._constraints

    def table_by_id(self, table_id: str) -> Optional[Table]:
        return self._tables_by_id.get(table_id)

    def get_table(self, name: str, namespace: Optional[str] = None) -> Optional[Table]:
        for t in self._tables:
            if t.name == name and (namespace is None or t.namespace.name == namespace):
                return t
        return None

    def attribute(self, class_id: str, num: int) -> Optional[Attribute]:
        return self._attributes.get((class_id, num))

    def constraints_of(self, table: Table) -> List[Constraint]:
        return list(self._owned.get(table.id, ()))

    def foreign_constraints(self, table: Table) -> List[ForeignKeyConstraint]:
        """Foreign keys that reference ``table`` (incoming)."""
        return list(self._incoming.get(table.id, ()))

    def outgoing_foreign_keys(self, table: Table) -> List[ForeignKeyConstraint]:
        return [c for c in self._owned.get(table.id, ()) if isinstance(c, ForeignKeyConstraint)]

    def primary_key_constraint(self, table: Table) -> Optional[PrimaryKeyConstraint]:
        for c in self._owned.get(table.id, ()):
            if isinstance(c, PrimaryKeyConstraint):
                return c
        return None

    def primary_key_attributes(self, table: Table) -> List[Attribute]:
        """Primary key columns of ``table``; empty when it has none or they do not resolve."""
        pk = self.primary_key_constraint(table)
        if pk is None:
            return []
        attrs = [self.attribute(table.id, n) for n in pk.key_attribute_nums]
        if not all(attrs):
            return []
        return attrs  # type: ignore[return-value]

    def key_attributes(self, con: ForeignKeyConstraint) -> Tuple[Optional[Attribute], ...]:
        """Local columns of a foreign key; unresolved ordinals come back as ``None``."""
        return tuple(self.attribute(con.class_id, n) for n in con.key_attribute_nums)

    def foreign_key_attributes(self, con: ForeignKeyConstraint) -> Tuple[Optional[Attribute], ...]:
        """Referenced columns of a foreign key; unresolved ordinals come back as ``None``."""
        return tuple(self.attribute(con.foreign_class_id, n) for n in con.foreign_key_attribute_nums)

    def describe(self, entity: Any) -> str:
        """Human readable name for errors and log lines."""
        if isinstance(entity, Table):
            return f'table "{entity.namespace.name}"."{entity.name}"'
        if isinstance(entity, Attribute):
            owner = self.table_by_id(entity.class_id)
            owner_name = owner.name if owner is not None else entity.class_id
            return f'column "{entity.name}" of table "{owner_name}"'
        if isinstance(entity, Constraint):
            owner = self.table_by_id(entity.class_id)
            owner_name = owner.name if owner is not None else entity.class_id
            return f'constraint "{entity.name}" on "{owner_name}"'
        return repr(entity)

    # ---------- construction ----------
    @classmethod
    def from_metadata(cls, metadata: MetaData) -> 'Catalog':
        """Build a catalogue from SQLAlchemy table metadata.

        Tags are taken from each object's ``info`` mapping and descriptions
        from table/column comments. Constraints are emitted per table as
        primary key, unique constraints, then foreign keys; the latter two
        sorted by column ordinals, then name.
        """
        sa_tables = list(metadata.tables.values())
        namespaces: Dict[str, Namespace] = {}
        table_ids: Dict[Any, str] = {}
        col_nums: Dict[str, Dict[str, int]] = {}
        tables: List[Table] = []
        for sa_table in sa_tables:
            ns_name = sa_table.schema or DEFAULT_NAMESPACE
            ns = namespaces.setdefault(ns_name, Namespace(id=ns_name, name=ns_name))
            table_id = f"{ns_name}.{sa_table.name}"
            table_ids[sa_table] = table_id
            nums: Dict[str, int] = {}
            attrs: List[Attribute] = []
            for i, col in enumerate(sa_table.columns, start=1):
                nums[col.name] = i
                attrs.append(Attribute(
                    id=f"{table_id}.{col.name}",
                    name=col.name,
                    num=i,
                    type=col.type,
                    class_id=table_id,
                    type_modifier=_type_modifier(col.type),
                    description=col.comment,
                    nullable=bool(col.nullable),
                    tags=dict(col.info or {}),
                ))
            col_nums[table_id] = nums
            tables.append(Table(
                id=table_id,
                name=sa_table.name,
                namespace=ns,
                attributes=tuple(attrs),
                description=sa_table.comment,
                tags=dict(sa_table.info or {}),
            ))

        constraints: List[Constraint] = []
        for sa_table in sa_tables:
            table_id = table_ids[sa_table]
            nums = col_nums[table_id]
            pk_cols = list(sa_table.primary_key.columns)
            if pk_cols:
                constraints.append(PrimaryKeyConstraint(
                    id=f"{table_id}.{sa_table.primary_key.name or sa_table.name + '_pkey'}",
                    name=sa_table.primary_key.name or f"{sa_table.name}_pkey",
                    class_id=table_id,
                    key_attribute_nums=tuple(nums[c.name] for c in pk_cols),
                    tags=dict(sa_table.primary_key.info or {}),
                ))
            uniques: List[UniqueConstraint] = []
            for sa_con in sa_table.constraints:
                if isinstance(sa_con, SAUniqueConstraint):
                    cols = [c.name for c in sa_con.columns]
                    name = sa_con.name or f"{sa_table.name}_{'_'.join(cols)}_key"
                    uniques.append(UniqueConstraint(
                        id=f"{table_id}.{name}",
                        name=name,
                        class_id=table_id,
                        key_attribute_nums=tuple(nums[c] for c in cols),
                        tags=dict(sa_con.info or {}),
                    ))
            # Column(unique=True) renders inline and has no UniqueConstraint object
            for col in sa_table.columns:
                if col.unique:
                    name = f"{sa_table.name}_{col.name}_key"
                    if not any(u.key_attribute_nums == (nums[col.name],) for u in uniques):
                        uniques.append(UniqueConstraint(
                            id=f"{table_id}.{name}",
                            name=name,
                            class_id=table_id,
                            key_attribute_nums=(nums[col.name],),
                        ))
            uniques.sort(key=lambda u: (u.key_attribute_nums, u.name))
            constraints.extend(uniques)

            fks: List[ForeignKeyConstraint] = []
            for sa_fk in sa_table.foreign_key_constraints:
                fks.append(_foreign_key_from_sa(sa_fk, table_id, nums, table_ids, col_nums))
            fks.sort(key=lambda f: (f.key_attribute_nums, f.name))
            constraints.extend(fks)

        _logger.debug("catalog built: %d tables, %d constraints", len(tables), len(constraints))
        return cls(tables, constraints)


def _type_modifier(sa_type: Any) -> Optional[int]:
    if not isinstance(sa_type, TypeEngine):
        return None
    for attr_name in ('length', 'precision'):
        value = getattr(sa_type, attr_name, None)
        if isinstance(value, int):
            return value
    return None


def _foreign_key_from_sa(
    sa_fk: SAForeignKeyConstraint,
    table_id: str,
    nums: Mapping[str, int],
    table_ids: Mapping[Any, str],
    col_nums: Mapping[str, Mapping[str, int]],
) -> ForeignKeyConstraint:
    local_names = [c.name for c in sa_fk.columns]
    name = sa_fk.name or f"{table_id.split('.', 1)[1]}_{'_'.join(local_names)}_fkey"
    foreign_class_id = ''
    foreign_nums: List[int] = []
    for element in sa_fk.elements:
        try:
            target_col = element.column
        except (NoReferencedTableError, NoReferencedColumnError):
            # Referenced table is outside this metadata; keep the id, leave the ordinal unresolvable.
            parts = element.target_fullname.split('.')
            tbl = parts[-2] if len(parts) >= 2 else parts[0]
            schema = parts[-3] if len(parts) >= 3 else DEFAULT_NAMESPACE
            foreign_class_id = foreign_class_id or f"{schema}.{tbl}"
            foreign_nums.append(0)
            continue
        target_id = table_ids.get(target_col.table)
        if target_id is None:
            target_id = f"{target_col.table.schema or DEFAULT_NAMESPACE}.{target_col.table.name}"
        foreign_class_id = foreign_class_id or target_id
        foreign_nums.append(col_nums.get(target_id, {}).get(target_col.name, 0))
    return ForeignKeyConstraint(
        id=f"{table_id}.{name}",
        name=name,
        class_id=table_id,
        foreign_class_id=foreign_class_id,
        key_attribute_nums=tuple(nums[n] for n in local_names),
        foreign_key_attribute_nums=tuple(foreign_nums),
        tags=dict(sa_fk.info or {}),
    )


async def reflect_catalog(engine: Any, *, schema: Optional[str] = None, only: Optional[Sequence[str]] = None) -> Catalog:
    """Reflect a live database through an ``AsyncEngine`` and build a catalogue."""
    metadata = MetaData()

    def _reflect(sync_conn):
        metadata.reflect(bind=sync_conn, schema=schema, only=only)

    async with engine.connect() as conn:
        await conn.run_sync(_reflect)
    return Catalog.from_metadata(metadata)


__all__ = [
    'ConstraintKind',
    'Namespace',
    'Attribute',
    'Table',
    'Constraint',
    'PrimaryKeyConstraint',
    'UniqueConstraint',
    'ForeignKeyConstraint',
    'Catalog',
    'reflect_catalog',
    'DEFAULT_NAMESPACE',
]
