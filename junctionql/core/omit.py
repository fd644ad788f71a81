"""Read/filter permission predicates.

An omit predicate answers ``omit(entity, action) -> bool`` for any catalogue
entity (table, attribute or constraint). ``action`` is ``"read"`` or
``"filter"``.
"""
from __future__ import annotations

from typing import Any, Callable, FrozenSet

READ = 'read'
FILTER = 'filter'
ACTIONS: FrozenSet[str] = frozenset({READ, FILTER})

OmitPredicate = Callable[[Any, str], bool]


def no_omit(entity: Any, action: str) -> bool:
    return False


def _omitted_actions(raw: Any) -> FrozenSet[str]:
    if raw is None or raw is False:
        return frozenset()
    if raw is True:
        return ACTIONS
    if isinstance(raw, str):
        parts = [p.strip().lower() for p in raw.split(',')]
        return frozenset(p for p in parts if p)
    try:
        return frozenset(str(p).strip().lower() for p in raw)
    except TypeError:
        return frozenset()


def tag_omit(entity: Any, action: str) -> bool:
    """Omit entities whose ``omit`` tag lists ``action``.

    ``omit: True`` hides the entity for every action; otherwise the tag is a
    comma separated string (``"read,filter"``) or a list of actions.
    """
    tags = getattr(entity, 'tags', None) or {}
    return action in _omitted_actions(tags.get('omit'))


__all__ = ['READ', 'FILTER', 'ACTIONS', 'OmitPredicate', 'no_omit', 'tag_omit']
