from __future__ import annotations


class JsonRelationError(Exception):
    """Base class for errors raised by sqla_json_relations."""


class ConfigurationError(JsonRelationError, ValueError):
    """A JSON relation was declared with an invalid path, dialect or target.

    Raised while the relation is being defined, never while a query runs.
    """


class RelationNotLoadedError(JsonRelationError, AttributeError):
    """The relation was read from an instance before it was loaded."""
