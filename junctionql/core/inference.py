"""Many-to-many relation inference.

Given a left table, walk the foreign keys that reference it and keep those
whose owning table is a genuine junction: a table with a second foreign key
to some other table, single-column keys on both sides, and no primary or
unique constraint that would make either side one-to-one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..catalog import (
    Attribute,
    Catalog,
    ForeignKeyConstraint,
    PrimaryKeyConstraint,
    Table,
    UniqueConstraint,
)
from .errors import CatalogIntegrityError
from .omit import READ, OmitPredicate, no_omit

_logger = logging.getLogger("junctionql")


@dataclass(frozen=True)
class RelationDescriptor:
    """Everything needed to materialize one inferred many-to-many relation."""

    left_key_attributes: Tuple[Attribute, ...]
    junction_left_key_attributes: Tuple[Attribute, ...]
    junction_right_key_attributes: Tuple[Attribute, ...]
    right_key_attributes: Tuple[Attribute, ...]
    left_table: Table
    junction_table: Table
    right_table: Table
    junction_left_constraint: ForeignKeyConstraint
    junction_right_constraint: ForeignKeyConstraint

    @property
    def key_attributes(self) -> Tuple[Attribute, ...]:
        """The four join columns, in left → junction → right order."""
        return (
            *self.left_key_attributes,
            *self.junction_left_key_attributes,
            *self.junction_right_key_attributes,
            *self.right_key_attributes,
        )

    # Single-column keys only, so the joins can address the first element directly.
    @property
    def left_key(self) -> Attribute:
        return self.left_key_attributes[0]

    @property
    def junction_left_key(self) -> Attribute:
        return self.junction_left_key_attributes[0]

    @property
    def junction_right_key(self) -> Attribute:
        return self.junction_right_key_attributes[0]

    @property
    def right_key(self) -> Attribute:
        return self.right_key_attributes[0]


def _matches_unique_key(catalog: Catalog, junction_table: Table, attrs: Sequence[Attribute]) -> bool:
    """True when ``attrs`` are exactly the columns of a primary/unique constraint on the junction."""
    nums = [a.num for a in attrs]
    for con in catalog.constraints_of(junction_table):
        if not isinstance(con, (PrimaryKeyConstraint, UniqueConstraint)):
            continue
        if len(con.key_attribute_nums) == len(nums) and all(
            n == nums[i] for i, n in enumerate(con.key_attribute_nums)
        ):
            return True
    return False


def _find_junction_right_constraint(
    catalog: Catalog, junction_table: Table, left_table: Table
) -> Optional[ForeignKeyConstraint]:
    for con in catalog.outgoing_foreign_keys(junction_table):
        if con.foreign_class_id != left_table.id:
            return con
    return None


def infer_many_to_many(
    left_table: Table,
    catalog: Catalog,
    omit: OmitPredicate = no_omit,
) -> List[RelationDescriptor]:
    """Infer the many-to-many relations reachable from ``left_table``.

    Pure and deterministic: the result follows the catalogue order of the
    foreign keys referencing ``left_table``. Tables that merely reference the
    left table, unreadable keys, composite keys and one-to-one junctions are
    skipped without error. A constraint whose owning table or key columns are
    missing from the catalogue raises :class:`CatalogIntegrityError`.
    """
    relations: List[RelationDescriptor] = []
    for junction_left_constraint in catalog.foreign_constraints(left_table):
        if omit(junction_left_constraint, READ):
            continue
        junction_table = catalog.table_by_id(junction_left_constraint.class_id)
        if junction_table is None:
            raise CatalogIntegrityError(
                f"Could not find the table that referenced us (constraint: {junction_left_constraint.name})"
            )
        junction_right_constraint = _find_junction_right_constraint(catalog, junction_table, left_table)
        if junction_right_constraint is None:
            continue
        right_table = catalog.table_by_id(junction_right_constraint.foreign_class_id)
        if right_table is None:
            raise CatalogIntegrityError(
                f"Could not find the table referenced by {catalog.describe(junction_right_constraint)}"
            )

        left_keys = catalog.foreign_key_attributes(junction_left_constraint)
        junction_left_keys = catalog.key_attributes(junction_left_constraint)
        junction_right_keys = catalog.key_attributes(junction_right_constraint)
        right_keys = catalog.foreign_key_attributes(junction_right_constraint)
        key_lists = (left_keys, junction_left_keys, junction_right_keys, right_keys)
        if not all(keys and all(keys) for keys in key_lists):
            raise CatalogIntegrityError(
                f"Could not find key columns! ({catalog.describe(junction_left_constraint)}, "
                f"{catalog.describe(junction_right_constraint)})"
            )

        if any(omit(attr, READ) for keys in key_lists for attr in keys):
            _logger.debug("m2m skip %s: key column not readable", junction_table.name)
            continue

        if len(left_keys) > 1 or len(right_keys) > 1:
            _logger.debug("m2m skip %s: composite key", junction_table.name)
            continue

        if _matches_unique_key(catalog, junction_table, junction_left_keys) or _matches_unique_key(
            catalog, junction_table, junction_right_keys
        ):
            _logger.debug("m2m skip %s: junction key is unique (one-to-one)", junction_table.name)
            continue

        relations.append(RelationDescriptor(
            left_key_attributes=tuple(left_keys),  # type: ignore[arg-type]
            junction_left_key_attributes=tuple(junction_left_keys),  # type: ignore[arg-type]
            junction_right_key_attributes=tuple(junction_right_keys),  # type: ignore[arg-type]
            right_key_attributes=tuple(right_keys),  # type: ignore[arg-type]
            left_table=left_table,
            junction_table=junction_table,
            right_table=right_table,
            junction_left_constraint=junction_left_constraint,
            junction_right_constraint=junction_right_constraint,
        ))
    return relations


__all__ = ['RelationDescriptor', 'infer_many_to_many']
