"""
Dialect-specific JSON containment grammars.

Each grammar compiles the predicate "this owner key appears in the JSON array
stored on the parent", either as a plain member of an array of scalars or as
the key field of an element in an array of objects. The grammar is chosen once
from configuration (a dialect name or an engine), never from the query that is
being built.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from functools import lru_cache
from typing import Any, Final

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine

from .exceptions import ConfigurationError


DEFAULT_DIALECT: Final[str] = "postgresql"

logger = logging.getLogger(__name__)


def _mysql_json_path(segments: Sequence[str]) -> str:
    return "$" + "".join(f'."{segment}"' for segment in segments)


class JsonGrammar(ABC):
    """Abstract base class for JSON containment compilation."""

    name: str

    @abstractmethod
    def compile_array_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
    ) -> sa.ColumnElement[bool]:
        """Test that *value* is a member of the scalar array at *path* in *document*."""

    @abstractmethod
    def compile_object_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
        key_field: str,
    ) -> sa.ColumnElement[bool]:
        """Test that an object of the array at *path* has ``key_field == value``.

        *key_field* is rendered as a bound parameter.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class PostgreSQLGrammar(JsonGrammar):
    """PostgreSQL grammar built on ``jsonb`` containment (``@>``)."""

    name = "postgresql"

    def _target(
        self, document: sa.ColumnElement[Any], path: Sequence[str]
    ) -> sa.ColumnElement[Any]:
        target: sa.ColumnElement[Any] = sa.cast(document, JSONB)
        for segment in path:
            target = target[segment]

        return target

    def compile_array_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
    ) -> sa.ColumnElement[bool]:
        return self._target(document, path).contains(
            sa.func.jsonb_build_array(value, type_=JSONB)
        )

    def compile_object_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
        key_field: str,
    ) -> sa.ColumnElement[bool]:
        key = sa.cast(sa.bindparam("json_key_field", key_field, unique=True), sa.Text)
        return self._target(document, path).contains(
            sa.func.jsonb_build_array(sa.func.jsonb_build_object(key, value), type_=JSONB)
        )


class MySQLGrammar(JsonGrammar):
    """MySQL / MariaDB grammar built on ``json_contains``."""

    name = "mysql"

    def _target(
        self, document: sa.ColumnElement[Any], path: Sequence[str]
    ) -> sa.ColumnElement[Any]:
        if not path:
            return document

        return sa.func.json_extract(document, sa.literal(_mysql_json_path(path)))

    def compile_array_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
    ) -> sa.ColumnElement[bool]:
        return sa.func.json_contains(
            self._target(document, path),
            sa.func.json_array(value),
            type_=sa.Boolean,
        )

    def compile_object_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
        key_field: str,
    ) -> sa.ColumnElement[bool]:
        key = sa.bindparam("json_key_field", key_field, unique=True)
        return sa.func.json_contains(
            self._target(document, path),
            sa.func.json_array(sa.func.json_object(key, value)),
            type_=sa.Boolean,
        )


class SQLiteGrammar(JsonGrammar):
    """SQLite grammar built on the ``json_each`` table-valued function.

    Note: Requires the JSON1 functions (built in since SQLite 3.38).
    """

    name = "sqlite"

    def _elements(
        self, document: sa.ColumnElement[Any], path: Sequence[str]
    ) -> sa.TableValuedAlias:
        return sa.func.json_each(document, sa.literal(_mysql_json_path(path))).table_valued(
            "value"
        )

    def compile_array_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
    ) -> sa.ColumnElement[bool]:
        elements = self._elements(document, path)
        return (
            sa.select(sa.literal(1))
            .select_from(elements)
            .where(elements.c.value == value)
            .exists()
        )

    def compile_object_containment(
        self,
        document: sa.ColumnElement[Any],
        path: Sequence[str],
        value: sa.ColumnElement[Any],
        key_field: str,
    ) -> sa.ColumnElement[bool]:
        elements = self._elements(document, path)
        key_path = sa.literal('$."') + sa.bindparam(
            "json_key_field", key_field, type_=sa.String, unique=True
        ) + sa.literal('"')
        return (
            sa.select(sa.literal(1))
            .select_from(elements)
            .where(sa.func.json_extract(elements.c.value, key_path) == value)
            .exists()
        )


_GRAMMARS: Final[dict[str, type[JsonGrammar]]] = {
    "postgresql": PostgreSQLGrammar,
    "postgres": PostgreSQLGrammar,
    "mysql": MySQLGrammar,
    "mariadb": MySQLGrammar,
    "sqlite": SQLiteGrammar,
}


@lru_cache(maxsize=32)
def _grammar_for(dialect_name: str) -> JsonGrammar:
    try:
        grammar_cls = _GRAMMARS[dialect_name]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported JSON relation dialect: {dialect_name!r}. "
            f"Supported: {sorted(_GRAMMARS)}"
        ) from None

    grammar = grammar_cls()
    logger.debug("Using %r for dialect %r", grammar, dialect_name)

    return grammar


def get_json_grammar(dialect: str | sa.Engine | AsyncEngine | JsonGrammar) -> JsonGrammar:
    """
    Get the JSON grammar for a dialect.

    Args:
        dialect: Dialect name (``"postgresql"``, ``"mysql"``, ``"mariadb"``,
            ``"sqlite"``), a sync or async engine whose dialect is used, or a
            ready grammar instance which is returned unchanged.

    Returns:
        JsonGrammar: Shared grammar instance for the dialect.

    Raises:
        ConfigurationError: If the dialect has no grammar.
    """
    if isinstance(dialect, JsonGrammar):
        return dialect

    if isinstance(dialect, AsyncEngine):
        dialect = dialect.sync_engine
    if isinstance(dialect, sa.Engine):
        dialect = dialect.dialect.name

    return _grammar_for(dialect.lower())


_default_grammar: JsonGrammar | None = None


def init_json_grammar(dialect: str | sa.Engine | AsyncEngine | JsonGrammar) -> JsonGrammar:
    """Set the grammar for relations declared without an explicit ``dialect``.

    Call it once during application startup, next to engine creation.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> init_json_grammar(engine)
    """
    global _default_grammar  # noqa: PLW0603
    _default_grammar = get_json_grammar(dialect)

    return _default_grammar


def default_json_grammar() -> JsonGrammar:
    """The grammar set by :func:`init_json_grammar`, PostgreSQL otherwise."""
    return _default_grammar if _default_grammar is not None else _grammar_for(DEFAULT_DIALECT)


def reset_json_grammar() -> None:
    """Forget the configured default grammar (primarily for tests)."""
    global _default_grammar  # noqa: PLW0603
    _default_grammar = None
