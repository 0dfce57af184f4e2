from __future__ import annotations

from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy import orm


T = TypeVar("T", bound=orm.DeclarativeBase)
_R = TypeVar("_R")


def unique_scalars(result: sa.Result[tuple[_R]]) -> Sequence[_R]:
    """Shorthand for ``result.unique().scalars().all()``.

    Example (async)::

        posts = unique_scalars(await session.execute(query))

    Example (sync)::

        posts = unique_scalars(session.execute(query))
    """
    return result.unique().scalars().all()


@lru_cache
def _get_primary_key(model: type[T]) -> sa.ColumnElement[Any]:
    """Return the first primary-key column element for *model* (cached)."""
    return next(iter(model.__table__.primary_key))


@lru_cache
def _get_table_name(model: type[T]) -> str:
    """Return the table name for *model*, preferring ``__tablename__`` (cached)."""
    result = getattr(
        model,
        "__tablename__",
        model.__table__.description,
    )
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


def get_table_name(model: type[T]) -> str:
    """Get the table name for a SQLAlchemy model.

    Args:
        model: SQLAlchemy model class.

    Returns:
        The table name as a string.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(model)


def get_primary_key(model: type[T]) -> sa.ColumnElement[Any]:
    """Get the primary key column for a SQLAlchemy model.

    Used as the default owner key of a JSON relation.

    Args:
        model: SQLAlchemy model class.

    Returns:
        The primary key column element.
    """
    return _get_primary_key(model)


def get_table_names(query: sa.Select[Any]) -> Sequence[str]:
    """Extract all table names from a SQLAlchemy select query.

    Traverses the query's FROM clause, including joins and aliases. An alias
    contributes both its own name and the name of the table it wraps, which
    is how same-table (self-referencing) relation queries are detected.

    Args:
        query: SQLAlchemy select query.

    Returns:
        Sequence of table names found in the query.
    """
    seen: set[str] = set()
    out: list[str] = []

    def add(name: str | None) -> None:
        if name and name not in seen:
            seen.add(name)
            out.append(name)

    for root in query.get_final_froms():
        stack: list[Any] = [root]
        while stack:
            node = stack.pop()

            if isinstance(node, sa.Table):
                add(node.name)
                continue

            if isinstance(node, sa.Join):
                stack.extend([node.left, node.right])
                continue

            add(getattr(node, "name", None))
            if hasattr(node, "element"):
                stack.append(node.element)

    return out


def get_root_table_name(query: sa.Select[Any]) -> str | None:
    """Return the name of the leftmost FROM of a select query.

    Joins are followed down their left side; an alias reports its own name,
    so a query over an alias never counts as reading the aliased table.

    Args:
        query: SQLAlchemy select query.

    Returns:
        The table (or alias) name, or ``None`` for a query without FROM.
    """
    froms = query.get_final_froms()
    if not froms:
        return None

    node: Any = froms[0]
    while isinstance(node, sa.Join):
        node = node.left

    return getattr(node, "name", None)


def add_conditions(
    *conditions: sa.ColumnExpressionArgument[bool],
) -> Callable[[sa.Select[tuple[T]]], sa.Select[tuple[T]]]:
    """Create a function that adds WHERE conditions to a select query.

    Use it with the ``conditions`` argument of :func:`json_load` to narrow
    the related rows of one relation.

    Args:
        *conditions: SQLAlchemy column expressions that evaluate to boolean.

    Returns:
        A function that takes a select query and returns it with added conditions.

    Example:
        >>> only_published = add_conditions(Post.published.is_(True))
        >>> json_load(session, posts, loads=("recommendations",),
        ...           conditions={"recommendations": only_published})
    """

    def _add(query: sa.Select[tuple[T]]) -> sa.Select[tuple[T]]:
        return query.where(*conditions)

    return _add
