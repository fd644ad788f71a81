from __future__ import annotations


class JunctionQLError(RuntimeError):
    """Base class for fatal schema-build errors raised by junctionql."""


class CatalogIntegrityError(JunctionQLError):
    """The introspected catalogue references tables or columns it does not contain."""


class TypeResolutionError(JunctionQLError):
    """A table passed inference but the type registry has no output type for it."""


class QueryContextError(JunctionQLError):
    """A query-time component ran without the state its caller must provide."""


__all__ = [
    'JunctionQLError',
    'CatalogIntegrityError',
    'TypeResolutionError',
    'QueryContextError',
]
