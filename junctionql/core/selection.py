"""Turn strawberry's ``info.selected_fields`` into a plan the SQL builders use.

Fragments (named and inline) are flattened, ``@skip``/``@include`` are
honoured and every selected relation keeps its response key, so two aliased
selections of the same relation with different arguments stay separate.
Argument values arrive already resolved from variables.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from strawberry.types.nodes import FragmentSpread, InlineFragment, SelectedField

from .naming import from_camel, map_graphql_to_python

CONNECTION = 'connection'
LIST = 'list'

_PAGE_INFO_CURSORS = ('start_cursor', 'end_cursor')


@dataclass
class RowSelection:
    scalars: List[str] = field(default_factory=list)
    relations: List['RelationSelection'] = field(default_factory=list)

    def add_scalar(self, name: str) -> None:
        if name not in self.scalars:
            self.scalars.append(name)

    def add_relation(self, rel: 'RelationSelection') -> None:
        """Add ``rel``, folding it into an earlier selection with the same response key."""
        for existing in self.relations:
            if existing.response_key != rel.response_key:
                continue
            if existing.field_name != rel.field_name or existing.arguments != rel.arguments:
                raise ValueError(
                    f"Field '{rel.response_key}' is selected more than once with different arguments"
                )
            existing.merge(rel)
            return
        self.relations.append(rel)

    def merge(self, other: 'RowSelection') -> None:
        for s in other.scalars:
            self.add_scalar(s)
        for rel in other.relations:
            self.add_relation(rel)


@dataclass
class RelationSelection:
    field_name: str
    response_key: str
    mode: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    rows: RowSelection = field(default_factory=RowSelection)
    total_count: bool = False
    cursors: bool = False
    page_info: bool = False
    # set by the SQL builders once the relation is assembled
    plan: Any = None

    def merge(self, other: 'RelationSelection') -> None:
        self.rows.merge(other.rows)
        self.total_count = self.total_count or other.total_count
        self.cursors = self.cursors or other.cursors
        self.page_info = self.page_info or other.page_info


def _is_skipped(node: Any) -> bool:
    directives = getattr(node, 'directives', None) or {}
    skip = directives.get('skip')
    if isinstance(skip, dict) and skip.get('if'):
        return True
    include = directives.get('include')
    if isinstance(include, dict) and not include.get('if', True):
        return True
    return False


def iter_fields(selections: Optional[Iterable[Any]]) -> Iterable[SelectedField]:
    """Yield selected fields, descending into fragment spreads and inline fragments."""
    for node in selections or ():
        if _is_skipped(node):
            continue
        if isinstance(node, (FragmentSpread, InlineFragment)):
            yield from iter_fields(node.selections)
        elif isinstance(node, SelectedField):
            yield node


def _python_name(name: str, candidates: Iterable[str], auto_camel: bool) -> str:
    return map_graphql_to_python(name, {c: None for c in candidates}, auto_camel=auto_camel)


def normalize_arguments(arguments: Optional[Mapping[str, Any]], auto_camel: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (arguments or {}).items():
        out[from_camel(k) if auto_camel else k] = v
    return out


class SelectionAnalyzer:
    """Builds :class:`RowSelection` trees.

    ``shapes`` maps a catalogue table id to an object exposing ``scalars``
    (python field name → attribute) and ``relations`` (python field name →
    relation field spec with ``mode`` and ``target``).
    """

    def __init__(self, shapes: Mapping[str, Any], *, auto_camel: bool = False):
        self.shapes = shapes
        self.auto_camel = auto_camel

    def row_selection(self, table_id: str, selections: Optional[Iterable[Any]]) -> RowSelection:
        shape = self.shapes[table_id]
        known = list(shape.scalars.keys()) + list(shape.relations.keys())
        rows = RowSelection()
        for sf in iter_fields(selections):
            if sf.name.startswith('__'):
                continue
            py_name = _python_name(sf.name, known, self.auto_camel)
            if py_name in shape.scalars:
                rows.add_scalar(py_name)
                continue
            spec = shape.relations.get(py_name)
            if spec is None:
                continue
            rows.add_relation(self.relation_selection(spec, sf, py_name))
        return rows

    def relation_selection(self, spec: Any, sf: SelectedField, py_name: str) -> RelationSelection:
        rel = RelationSelection(
            field_name=py_name,
            response_key=sf.alias or sf.name,
            mode=spec.mode,
            arguments=normalize_arguments(sf.arguments, self.auto_camel),
        )
        if spec.mode == LIST:
            rel.rows = self.row_selection(spec.target.id, sf.selections)
            return rel
        self.connection_selection(spec.target.id, sf.selections, rel)
        return rel

    def connection_selection(self, table_id: str, selections: Optional[Iterable[Any]], rel: RelationSelection) -> RelationSelection:
        """Fold ``nodes``, ``edges``, ``page_info`` and ``total_count`` into ``rel``."""
        conn_fields = ('nodes', 'edges', 'page_info', 'total_count')
        for sf in iter_fields(selections):
            name = _python_name(sf.name, conn_fields, self.auto_camel)
            if name == 'nodes':
                rel.rows.merge(self.row_selection(table_id, sf.selections))
            elif name == 'edges':
                for ef in iter_fields(sf.selections):
                    ename = _python_name(ef.name, ('cursor', 'node'), self.auto_camel)
                    if ename == 'cursor':
                        rel.cursors = True
                    elif ename == 'node':
                        rel.rows.merge(self.row_selection(table_id, ef.selections))
            elif name == 'page_info':
                rel.page_info = True
                for pf in iter_fields(sf.selections):
                    if _python_name(pf.name, _PAGE_INFO_CURSORS, self.auto_camel) in _PAGE_INFO_CURSORS:
                        rel.cursors = True
            elif name == 'total_count':
                rel.total_count = True
        return rel


__all__ = [
    'CONNECTION',
    'LIST',
    'RowSelection',
    'RelationSelection',
    'SelectionAnalyzer',
    'iter_fields',
    'normalize_arguments',
]
