from __future__ import annotations


class BaseAdapter:
    """Dialect hooks for building JSON-valued sub-selects."""

    name = 'base'

    def json_object(self, *args):
        raise NotImplementedError

    def json_array_agg(self, expr):
        raise NotImplementedError

    def json_array_coalesce(self, expr):
        raise NotImplementedError

    def json_nested(self, expr):
        """Wrap a JSON-valued sub-select so it embeds as JSON rather than as text."""
        return expr
