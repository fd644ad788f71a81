from __future__ import annotations
import base64
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, Numeric, Uuid


def parse_order_spec(spec: str) -> Tuple[str, str]:
    """Split a ``"column:direction"`` entry; direction defaults to ``asc``."""
    cn, _, dd = str(spec).partition(':')
    dd = (dd or 'asc').strip().lower()
    if dd not in ('asc', 'desc'):
        raise ValueError(f"Invalid order direction '{dd}' in '{spec}'. Use asc or desc")
    return cn.strip(), dd


def coerce_value(sa_type: Any, val: Any) -> Any:
    """Coerce a GraphQL/JSON value to what a column of ``sa_type`` compares against.

    Values that cannot be coerced are returned unchanged and left to the
    database to reject.
    """
    if val is None or sa_type is None:
        return val
    if isinstance(val, (list, tuple)):
        return [coerce_value(sa_type, v) for v in val]
    if isinstance(sa_type, DateTime):
        if isinstance(val, str):
            s = val.replace('Z', '+00:00') if 'Z' in val else val
            try:
                dv = datetime.fromisoformat(s)
            except ValueError:
                return val
            if not getattr(sa_type, 'timezone', False) and dv.tzinfo is not None:
                dv = dv.replace(tzinfo=None)
            return dv
        return val
    if isinstance(sa_type, Date):
        if isinstance(val, str):
            try:
                return date.fromisoformat(val[:10])
            except ValueError:
                return val
        return val
    if isinstance(sa_type, Boolean):
        if isinstance(val, str):
            lv = val.strip().lower()
            if lv in ('true', 't', '1', 'yes', 'y'):
                return True
            if lv in ('false', 'f', '0', 'no', 'n'):
                return False
        return bool(val)
    if isinstance(sa_type, Integer):
        if isinstance(val, str):
            try:
                return int(val)
            except ValueError:
                return val
        return val
    if isinstance(sa_type, Float):
        if isinstance(val, str):
            try:
                return float(val)
            except ValueError:
                return val
        return val
    if isinstance(sa_type, Numeric):
        if isinstance(val, (str, int, float)) and not isinstance(val, bool):
            try:
                return Decimal(str(val))
            except ArithmeticError:
                return val
        return val
    if isinstance(sa_type, Uuid) and isinstance(val, str):
        try:
            return UUID(val)
        except ValueError:
            return val
    return val


def _json_default(o: Any) -> Any:
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, (Decimal, UUID)):
        return str(o)
    if isinstance(o, Enum):
        return o.value
    raise TypeError(f"Cannot serialize {type(o).__name__} in cursor")


def encode_cursor(values: Sequence[Any]) -> str:
    """Opaque cursor: urlsafe base64 of a JSON array."""
    raw = json.dumps(list(values), default=_json_default, separators=(',', ':'))
    return base64.urlsafe_b64encode(raw.encode('utf-8')).decode('ascii')


def decode_cursor(cursor: str) -> List[Any]:
    try:
        raw = base64.urlsafe_b64decode(str(cursor).encode('ascii'))
        values = json.loads(raw.decode('utf-8'))
    except (ValueError, UnicodeError) as e:
        raise ValueError("Invalid cursor") from e
    if not isinstance(values, list):
        raise ValueError("Invalid cursor")
    return values


def load_json(value: Any) -> Any:
    """Decode a JSON column value; drivers hand it back either parsed or as text."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode('utf-8')
    if isinstance(value, str):
        return json.loads(value)
    return value


# --- Context helpers ---
def get_db_session(info_or_ctx: Any) -> Any | None:
    """Extract the request's ``AsyncSession`` from a strawberry ``Info`` or a context.

    Tries ``db_session``, ``db``, ``session`` and ``async_session``, first as
    mapping keys and then as attributes. Returns ``None`` when none is set.
    """
    if info_or_ctx is None:
        return None
    ctx = getattr(info_or_ctx, 'context', info_or_ctx)
    if ctx is None:
        return None
    candidates = ('db_session', 'db', 'session', 'async_session')
    get = getattr(ctx, 'get', None)
    if callable(get):
        for k in candidates:
            v = get(k, None)
            if v is not None:
                return v
    for k in candidates:
        v = getattr(ctx, k, None)
        if v is not None:
            return v
    return None


def resolve_page_size(
    first: Optional[int],
    *,
    default_page_size: Optional[int],
    max_page_size: Optional[int],
    logger: Any = None,
) -> Optional[int]:
    """Effective row limit for a connection; negative values are rejected."""
    if first is not None and int(first) < 0:
        raise ValueError("first must be non-negative")
    size = int(first) if first is not None else default_page_size
    if max_page_size is not None and size is not None and size > max_page_size:
        if logger is not None:
            logger.warning("page size %s clamped to %s", size, max_page_size)
        size = max_page_size
    return size
