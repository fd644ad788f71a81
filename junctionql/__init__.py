"""junctionql public API and lightweight lazy exports.

This __init__ avoids importing heavy submodules (strawberry type
construction, SQL builders) at import time, so catalogue code can be used
on its own.

Exposes:
- Lazy attributes: JunctionSchema, SchemaSettings, Catalog, Inflector,
  StrawberryConfig
- Lazy plugins: SchemaPlugin, ManyToManyPlugin, TableConditionPlugin
- Lazy functions: infer_many_to_many, reflect_catalog, tag_omit, no_omit
"""
from __future__ import annotations

_LAZY = {
    'JunctionSchema': '.registry',
    'BuildContext': '.registry',
    'SchemaSettings': '.settings',
    'Catalog': '.catalog',
    'reflect_catalog': '.catalog',
    'Inflector': '.core.naming',
    'RelationDescriptor': '.core.inference',
    'infer_many_to_many': '.core.inference',
    'tag_omit': '.core.omit',
    'no_omit': '.core.omit',
    'SchemaPlugin': '.plugins',
    'ManyToManyPlugin': '.plugins',
    'TableConditionPlugin': '.plugins',
    'JunctionConditionInjector': '.conditions',
    'ManyToManyQueryAssembler': '.sql.builders',
    'JunctionQLError': '.core.errors',
    'CatalogIntegrityError': '.core.errors',
    'TypeResolutionError': '.core.errors',
    'QueryContextError': '.core.errors',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    if name == 'registry':
        return _importlib.import_module(__name__ + '.registry')
    if name == 'StrawberryConfig':
        from strawberry.schema.config import StrawberryConfig as _StrawberryConfig
        return _StrawberryConfig
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(module, __name__), name)


__all__ = [*_LAZY, 'StrawberryConfig', 'registry']
