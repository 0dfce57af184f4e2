from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Required, TypedDict, Unpack
else:
    from typing_extensions import Required, TypedDict, Unpack

import sqlalchemy as sa
from sqlalchemy import orm

from .datastructures import frozendict
from .exceptions import ConfigurationError
from .relations import BelongsToJson
from .tools import unique_scalars


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T", bound=orm.DeclarativeBase)
_Condition = Callable[[sa.Select[Any]], sa.Select[Any]]

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class _LoadParams:
    loads: tuple[str, ...] = ()
    conditions: Mapping[str, _Condition] = field(default_factory=frozendict)


class _LoadParamsType(TypedDict, total=False):
    loads: Required[tuple[str, ...]]
    conditions: Mapping[str, _Condition]


def get_json_relation(model: type[T], name: str) -> BelongsToJson[Any]:
    """Return the :class:`BelongsToJson` declared as *name* on *model*.

    Raises:
        ConfigurationError: If *model* has no JSON relation called *name*.
    """
    relation = getattr(model, name, None)
    if not isinstance(relation, BelongsToJson):
        raise ConfigurationError(f"No JSON relation {name!r} on {model.__name__}")

    return relation


def json_select(
    models: T | Sequence[T],
    relation: str,
    *,
    query: sa.Select[Any] | None = None,
    condition: _Condition | None = None,
) -> sa.Select[Any]:
    """Build the query that loads *relation* for one parent or a batch.

    A single instance is constrained by its own keys in stored order; a
    sequence is constrained by the sorted, deduplicated union of all keys.

    Args:
        models: Parent instance or sequence of parent instances.
        relation: Name of the JSON relation on the parent model.
        query: Optional query over the related model to extend.
        condition: Optional ``Select -> Select`` transformer applied last.

    Returns:
        Select over the related model.
    """
    if isinstance(models, Sequence):
        if not models:
            raise ValueError("json_select() needs at least one parent model")
        json_relation = get_json_relation(type(models[0]), relation)
        stmt = json_relation.eager_query(models, query)
    else:
        json_relation = get_json_relation(type(models), relation)
        stmt = json_relation.add_constraints(models, query)

    return condition(stmt) if condition is not None else stmt


def _plan(
    models: T | Sequence[T],
    params: _LoadParams,
) -> list[tuple[str, BelongsToJson[Any], sa.Select[Any]]]:
    parents: Sequence[T] = models if isinstance(models, Sequence) else (models,)
    model_cls = type(parents[0])

    return [
        (
            name,
            get_json_relation(model_cls, name),
            json_select(models, name, condition=params.conditions.get(name)),
        )
        for name in params.loads
    ]


def json_load(
    session: orm.Session,
    models: T | Sequence[T],
    **params: Unpack[_LoadParamsType],
) -> T | Sequence[T]:
    """Load JSON relations onto parent instances with a synchronous session.

    One query is issued per relation regardless of how many parents are given.
    Afterwards every parent exposes its related records under the relation
    name, ordered like the keys in its JSON array.

    Args:
        session: Session used to execute the relation queries.
        models: Parent instance or sequence of parent instances.
        loads: tuple[str, ...]
            Names of the JSON relations to load.
        conditions: Mapping[str, Callable[[sa.Select], sa.Select]]
            Per-relation query transformers, e.g. built with ``add_conditions``.

    Returns:
        *models*, with the relations set.

    Example::

        posts = unique_scalars(session.execute(sa.select(Post)))
        json_load(session, posts, loads=("recommendations",))
        posts[0].recommendations  # [<Post 5>, <Post 3>]
    """
    load_params = _LoadParams(
        loads=params["loads"], conditions=frozendict(params.get("conditions", {}))
    )
    if isinstance(models, Sequence) and not models:
        return models

    parents = models if isinstance(models, Sequence) else [models]
    for name, relation, query in _plan(models, load_params):
        results = unique_scalars(session.execute(query))
        relation.match(parents, results, name)
        logger.debug("Loaded %d %s record(s) for %r", len(results), relation.related.__name__, name)

    return models


async def json_aload(
    session: AsyncSession,
    models: T | Sequence[T],
    **params: Unpack[_LoadParamsType],
) -> T | Sequence[T]:
    """Async variant of :func:`json_load` for ``AsyncSession``.

    Example::

        posts = unique_scalars(await session.execute(sa.select(Post)))
        await json_aload(session, posts, loads=("recommendations", "scored"))
    """
    load_params = _LoadParams(
        loads=params["loads"], conditions=frozendict(params.get("conditions", {}))
    )
    if isinstance(models, Sequence) and not models:
        return models

    parents = models if isinstance(models, Sequence) else [models]
    for name, relation, query in _plan(models, load_params):
        results = unique_scalars(await session.execute(query))
        relation.match(parents, results, name)
        logger.debug("Loaded %d %s record(s) for %r", len(results), relation.related.__name__, name)

    return models


def json_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    from .grammar import _grammar_for
    from .path import parse_path
    from .tools import _get_primary_key, _get_table_name

    return {
        fn.__name__: fn.cache_info()
        for fn in (
            parse_path,
            _grammar_for,
            _get_primary_key,
            _get_table_name,
        )
    }


def json_cache_clear() -> None:
    """Clear all internal LRU caches.

    Relations keep the path and grammar they were declared with.
    """
    from .grammar import _grammar_for
    from .path import parse_path
    from .tools import _get_primary_key, _get_table_name

    for fn in (
        parse_path,
        _grammar_for,
        _get_primary_key,
        _get_table_name,
    ):
        fn.cache_clear()
