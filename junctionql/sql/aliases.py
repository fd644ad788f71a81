from __future__ import annotations

from typing import Dict, Iterable, Set

from sqlalchemy import column, table as table_clause_factory
from sqlalchemy.sql.expression import Alias, TableClause

from ..catalog import DEFAULT_NAMESPACE, Table


def table_clause(table: Table) -> TableClause:
    """Lightweight SQLAlchemy ``TableClause`` for a catalogue table.

    Tables in the default namespace are left unqualified so they resolve
    through the connection's search path (or SQLite's main database).
    """
    schema = None if table.namespace.name == DEFAULT_NAMESPACE else table.namespace.name
    cols = [column(a.name, a.type) for a in table.attributes]
    return table_clause_factory(table.name, *cols, schema=schema)


class AliasAllocator:
    """Hands out SQL alias names unique within one query scope.

    One allocator is created per assembly invocation and seeded with the
    names already visible from enclosing queries, so a relation from a table
    to itself never shadows the outer row.
    """

    def __init__(self, reserved: Iterable[str] = ()):
        self._used: Set[str] = set(reserved)
        self._counters: Dict[str, int] = {}

    def allocate(self, base: str) -> str:
        n = self._counters.get(base, 0)
        while True:
            n += 1
            candidate = f"{base}_{n}"
            if candidate not in self._used:
                break
        self._counters[base] = n
        self._used.add(candidate)
        return candidate

    def alias(self, table: Table) -> Alias:
        return table_clause(table).alias(self.allocate(table.name))

    @property
    def used(self) -> Set[str]:
        return set(self._used)


__all__ = ['AliasAllocator', 'table_clause']
