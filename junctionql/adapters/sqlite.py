from __future__ import annotations
from sqlalchemy import func, literal
from sqlalchemy.sql.sqltypes import LargeBinary as _LB
from .base import BaseAdapter


class SQLiteAdapter(BaseAdapter):
    name = 'sqlite'

    def json_object(self, *args):
        # SQLite JSON cannot hold BLOBs; convert binary-like values to hex text
        conv: list = []
        for i, a in enumerate(args or ()):  # key, value, key, value...
            if i % 2 == 0:
                conv.append(a)
                continue
            v = a
            if isinstance(getattr(v, 'type', None), _LB):
                v = func.lower(func.hex(v))
            conv.append(v)
        return func.json_object(*conv)

    def json_array_agg(self, expr):
        return func.json_group_array(expr)

    def json_array_coalesce(self, expr):
        return func.coalesce(expr, literal('[]'))

    def json_nested(self, expr):
        # json_object() quotes TEXT arguments; json() marks them as JSON values
        return func.json(expr)
