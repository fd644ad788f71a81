"""Schema-wide settings.

Settings are plain dataclass fields; :meth:`SchemaSettings.from_env` fills
them from ``JUNCTIONQL_*`` environment variables after loading a ``.env``
file with python-dotenv.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

SIMPLE_COLLECTIONS_VALUES = (None, 'omit', 'both', 'only')

ENV_PREFIX = 'JUNCTIONQL_'


def _parse_bool(name: str, raw: str) -> bool:
    lv = raw.strip().lower()
    if lv in ('true', 't', '1', 'yes', 'y', 'on'):
        return True
    if lv in ('false', 'f', '0', 'no', 'n', 'off'):
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")


def _parse_optional_int(name: str, raw: str) -> Optional[int]:
    s = raw.strip()
    if s == '' or s.lower() == 'none':
        return None
    try:
        value = int(s)
    except ValueError:
        raise ValueError(f"{name}: expected an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name}: must be non-negative, got {value}")
    return value


def normalize_simple_collections(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip().lower()
    if s == '':
        return None
    if s not in SIMPLE_COLLECTIONS_VALUES:
        raise ValueError(
            f"simple_collections must be one of 'omit', 'both', 'only' (got {value!r})"
        )
    return s


@dataclass(frozen=True)
class SchemaSettings:
    simple_collections: Optional[str] = None
    auto_camel_case: bool = False
    default_page_size: Optional[int] = None
    max_page_size: Optional[int] = 100

    def __post_init__(self):
        object.__setattr__(self, 'simple_collections', normalize_simple_collections(self.simple_collections))
        for name in ('default_page_size', 'max_page_size'):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> 'SchemaSettings':
        """Read settings from the environment (``.env`` included unless ``dotenv`` is false)."""
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ
        kwargs: dict = {}
        raw = env.get(f'{ENV_PREFIX}SIMPLE_COLLECTIONS')
        if raw is not None:
            kwargs['simple_collections'] = normalize_simple_collections(raw)
        raw = env.get(f'{ENV_PREFIX}AUTO_CAMEL_CASE')
        if raw is not None:
            kwargs['auto_camel_case'] = _parse_bool(f'{ENV_PREFIX}AUTO_CAMEL_CASE', raw)
        for field_name in ('default_page_size', 'max_page_size'):
            var = f'{ENV_PREFIX}{field_name.upper()}'
            raw = env.get(var)
            if raw is not None:
                kwargs[field_name] = _parse_optional_int(var, raw)
        return cls(**kwargs)


def effective_simple_collections(*candidates: Any) -> Optional[str]:
    """First explicitly set ``simple_collections`` value among ``candidates``."""
    for value in candidates:
        if value is not None:
            return normalize_simple_collections(value)
    return None


def has_connections(setting: Optional[str]) -> bool:
    return setting != 'only'


def has_simple_collections(setting: Optional[str]) -> bool:
    return setting in ('only', 'both')


__all__ = [
    'SchemaSettings',
    'SIMPLE_COLLECTIONS_VALUES',
    'effective_simple_collections',
    'has_connections',
    'has_simple_collections',
]
