"""Belongs-to relations stored in JSON columns, for SQLAlchemy.

sqla_json_relations resolves relations whose foreign keys live inside a JSON
column of the parent row: either a JSON array of keys or a JSON array of
objects whose extra fields become ``pivot`` data.  Declare a
``BelongsToJson`` on the parent model, then call
``json_load(session, models, loads=(...))`` (or ``json_aload`` with an
``AsyncSession``) to load it with one query per relation, or filter parents
with ``Model.relation.has()``.
"""

from ._version import __version__, __version_tuple__
from .core import (
    get_json_relation,
    json_aload,
    json_cache_clear,
    json_cache_info,
    json_load,
    json_select,
)
from .datastructures import Pivot, frozendict
from .exceptions import ConfigurationError, JsonRelationError, RelationNotLoadedError
from .grammar import (
    JsonGrammar,
    MySQLGrammar,
    PostgreSQLGrammar,
    SQLiteGrammar,
    default_json_grammar,
    get_json_grammar,
    init_json_grammar,
    reset_json_grammar,
)
from .path import JsonPath, parse_path
from .relations import BelongsToJson, JsonCapability
from .tools import (
    add_conditions,
    get_primary_key,
    get_root_table_name,
    get_table_name,
    get_table_names,
    unique_scalars,
)


__all__ = (
    "BelongsToJson",
    "ConfigurationError",
    "JsonCapability",
    "JsonGrammar",
    "JsonPath",
    "JsonRelationError",
    "MySQLGrammar",
    "Pivot",
    "PostgreSQLGrammar",
    "RelationNotLoadedError",
    "SQLiteGrammar",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "default_json_grammar",
    "frozendict",
    "get_json_grammar",
    "get_json_relation",
    "get_primary_key",
    "get_root_table_name",
    "get_table_name",
    "get_table_names",
    "init_json_grammar",
    "json_aload",
    "json_cache_clear",
    "json_cache_info",
    "json_load",
    "json_select",
    "parse_path",
    "reset_json_grammar",
    "unique_scalars",
)
