from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Generic, TypeVar, overload

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.sql.util import ClauseAdapter

from .datastructures import Pivot
from .exceptions import ConfigurationError, RelationNotLoadedError
from .grammar import JsonGrammar, default_json_grammar, get_json_grammar
from .path import JsonPath, parse_path
from .tools import get_primary_key, get_root_table_name, get_table_name


R = TypeVar("R", bound=orm.DeclarativeBase)
DEFAULT_PIVOT_ATTRIBUTE: Final[str] = "pivot"

_alias_counter = itertools.count(1)

logger = logging.getLogger(__name__)


def _sort_key(value: Any) -> tuple[bool, str, Any]:
    """Order keys ascending by value and keep mixed types comparable.

    Numbers form one group whatever their type; other values are grouped by
    type name.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return False, "number", value

    return value is None, type(value).__name__, value


def _identity(value: Any) -> Any:
    return value


def _as_clause(column: Any) -> Any:
    clause_element = getattr(column, "__clause_element__", None)
    return clause_element() if clause_element is not None else column


@dataclass(frozen=True, slots=True)
class JsonCapability:
    """The parsed path of a JSON relation bundled with its dialect grammar.

    Holds everything a relation needs to know about the JSON side: how to
    compile the containment predicate and how to derive pivot attributes.
    Without an explicit grammar the one set by ``init_json_grammar`` is used.
    """

    path: JsonPath
    grammar: JsonGrammar | None = None

    def get_grammar(self) -> JsonGrammar:
        return self.grammar if self.grammar is not None else default_json_grammar()

    def containment(
        self, document: sa.ColumnElement[Any], value: sa.ColumnElement[Any]
    ) -> sa.ColumnElement[bool]:
        """Compile "*value* is stored in *document* at the path"."""
        grammar = self.get_grammar()
        if self.path.pivot_key_field is None:
            return grammar.compile_array_containment(document, self.path.array_path, value)

        return grammar.compile_object_containment(
            document, self.path.array_path, value, self.path.pivot_key_field
        )

    def pivot_attributes(
        self,
        elements: Iterable[Any],
        owner_value: Any,
        coerce: Callable[[Any], Any] = _identity,
    ) -> Pivot:
        """Pivot data of the first element whose key field equals *owner_value*.

        The key field is passed through *coerce* before the comparison and is
        left out of the result. Returns an empty pivot when the path holds
        scalar keys or no element matches.
        """
        field = self.path.pivot_key_field
        if field is None:
            return Pivot()

        record = next(
            (
                element
                for element in elements
                if isinstance(element, Mapping)
                and field in element
                and coerce(element[field]) == owner_value
            ),
            None,
        )
        if record is None:
            return Pivot()

        return Pivot({key: value for key, value in record.items() if key != field})


class BelongsToJson(Generic[R]):
    """Belongs-to relation whose foreign keys are stored in a JSON column.

    Declared as a class attribute of the parent model::

        class Post(Base):
            __tablename__ = "posts"

            id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
            options: orm.Mapped[dict[str, Any]] = orm.mapped_column(sa.JSON, default=dict)

            recommendations = BelongsToJson("Post", "options->recommendation_ids")
            scored = BelongsToJson("Post", "options->recommendations[]->post_id")

    On the class the attribute is the relation itself (``Post.recommendations``)
    and builds queries. On an instance it holds the loaded list of related
    records, in the order the parent's JSON array lists their keys; reading it
    before :func:`~sqla_json_relations.json_load` raises
    :class:`RelationNotLoadedError`.

    For object-array paths every matched related record receives a
    :class:`Pivot` under ``pivot_attribute`` with the element's other fields.
    """

    __slots__ = (
        "_owner_key",
        "_related",
        "json",
        "name",
        "parent",
        "pivot_attribute",
    )

    def __init__(
        self,
        related: type[R] | str,
        path: str,
        *,
        owner_key: str | None = None,
        dialect: str | sa.Engine | JsonGrammar | None = None,
        pivot_attribute: str = DEFAULT_PIVOT_ATTRIBUTE,
    ) -> None:
        self.json = JsonCapability(
            path=parse_path(path),
            grammar=get_json_grammar(dialect) if dialect is not None else None,
        )
        self._related = related
        self._owner_key = owner_key
        self.pivot_attribute = pivot_attribute
        self.parent: type[orm.DeclarativeBase] | None = None
        self.name = ""

    def __set_name__(self, owner: type[orm.DeclarativeBase], name: str) -> None:
        self.parent = owner
        self.name = name
        if not isinstance(self._related, str):
            self._check_pivot_attribute(self._related)
        logger.debug("Declared JSON relation %s.%s on %r", owner.__name__, name, str(self.path))

    @overload
    def __get__(self, instance: None, owner: type[Any] | None = None) -> BelongsToJson[R]: ...

    @overload
    def __get__(self, instance: object, owner: type[Any] | None = None) -> list[R]: ...

    def __get__(self, instance: object | None, owner: type[Any] | None = None) -> Any:
        if instance is None:
            return self

        # Loaded values live in the instance __dict__ and shadow this descriptor.
        raise RelationNotLoadedError(
            f"JSON relation {type(instance).__name__}.{self.name} is not loaded; "
            "use json_load() or json_aload() first"
        )

    def __repr__(self) -> str:
        parent = self.parent.__name__ if self.parent is not None else "?"
        return f"<{type(self).__name__} {parent}.{self.name} {str(self.path)!r}>"

    # definition

    @property
    def path(self) -> JsonPath:
        return self.json.path

    @property
    def related(self) -> type[R]:
        """The related model class, resolving a class name on first use."""
        if isinstance(self._related, str):
            self._related = self._resolve_related(self._related)

        return self._related

    @property
    def owner_key(self) -> str:
        """Attribute of the related model that the JSON keys refer to."""
        if self._owner_key is None:
            pk = get_primary_key(self.related).key
            assert pk
            self._owner_key = pk

        return self._owner_key

    @property
    def document(self) -> sa.ColumnElement[Any]:
        """The parent's JSON column as a SQL expression."""
        parent = self._require_parent()
        attr = getattr(parent, self.path.column, None)
        if attr is None or not hasattr(attr, "__clause_element__"):
            raise ConfigurationError(
                f"{parent.__name__} has no mapped JSON column {self.path.column!r} "
                f"(relation {self.name!r})"
            )

        return attr

    def owner_column(self, entity: Any = None) -> sa.ColumnElement[Any]:
        """The owner key column of *entity* (the related model by default)."""
        return getattr(self.related if entity is None else entity, self.owner_key)

    def key_coercer(self) -> Callable[[Any], Any]:
        """Return a function converting JSON keys to the owner column's Python type.

        JSON often stores ids as strings (``["2"]``) while the owner column is an
        integer, or the other way round. Keys that do not convert, and floats
        that would lose their fraction, are returned unchanged and never match.
        """
        try:
            python_type = self.owner_column().type.python_type
        except (AttributeError, NotImplementedError):
            return _identity

        def coerce(value: Any) -> Any:
            if value is None or isinstance(value, python_type):
                return value
            try:
                converted = python_type(value)
            except (TypeError, ValueError):
                return value

            return value if isinstance(value, float) and converted != value else converted

        return coerce

    def _owner_keys(self, model: Any, coerce: Callable[[Any], Any]) -> list[Any]:
        return [coerce(key) for key in self.path.keys(model)]

    def _require_parent(self) -> type[orm.DeclarativeBase]:
        if self.parent is None:
            raise ConfigurationError(
                "BelongsToJson must be declared as a class attribute of a mapped model"
            )

        return self.parent

    def _resolve_related(self, name: str) -> type[R]:
        parent = self._require_parent()
        registry = getattr(parent, "registry", None)
        if registry is None:
            raise ConfigurationError(
                f"Cannot resolve {name!r}: {parent.__name__} is not a declarative model"
            )

        related = next(
            (mapper.class_ for mapper in registry.mappers if mapper.class_.__name__ == name),
            None,
        )
        if related is None:
            raise ConfigurationError(
                f"No mapped class named {name!r} for relation {parent.__name__}.{self.name}"
            )
        self._check_pivot_attribute(related)

        return related

    def _check_pivot_attribute(self, related: type[Any]) -> None:
        if self.path.is_object_array and hasattr(related, self.pivot_attribute):
            raise ConfigurationError(
                f"Pivot attribute {self.pivot_attribute!r} collides with an attribute "
                f"of {related.__name__}"
            )

    # constraints

    def _base_query(self, query: sa.Select[Any] | None) -> sa.Select[Any]:
        return query if query is not None else sa.select(self.related)

    def add_constraints(self, parent: Any, query: sa.Select[Any] | None = None) -> sa.Select[Any]:
        """Constrain *query* to the related records of one loaded *parent*.

        Args:
            parent: Parent instance whose JSON keys are used.
            query: Query over the related model to extend. Defaults to
                ``sa.select(related)``.

        Returns:
            The query with ``owner_key IN (<parent keys>)`` applied.
        """
        keys = self._owner_keys(parent, self.key_coercer())
        return self._base_query(query).where(self.owner_column().in_(keys))

    def get_eager_model_keys(self, models: Iterable[Any]) -> list[Any]:
        """Collect the foreign keys of a batch of parents.

        Keys are deduplicated and sorted ascending so the same multiset of keys
        always yields the same parameter list. An empty batch yields ``[None]``
        so the ``IN`` predicate stays well formed and matches nothing.
        Keys are converted to the owner column's Python type first.
        """
        coerce = self.key_coercer()
        keys: list[Any] = []
        for model in models:
            keys.extend(self._owner_keys(model, coerce))

        if not keys:
            return [None]

        return sorted(dict.fromkeys(keys), key=_sort_key)

    def eager_query(
        self, models: Iterable[Any], query: sa.Select[Any] | None = None
    ) -> sa.Select[Any]:
        """One query for the related records of every parent in *models*."""
        keys = self.get_eager_model_keys(models)
        logger.debug("Eager loading %s with %d key(s)", self, len(keys))

        return self._base_query(query).where(self.owner_column().in_(keys))

    # matching

    def build_dictionary(self, results: Iterable[R]) -> dict[Any, R]:
        """Map owner key values to related records.

        Duplicate owner keys are not rejected: the later record wins.
        """
        owner = self.owner_key
        return {getattr(result, owner): result for result in results}

    def match(
        self,
        models: Sequence[Any],
        results: Iterable[R],
        relation: str | None = None,
    ) -> Sequence[Any]:
        """Attach eagerly loaded *results* to their parents.

        Each parent receives its related records in the order its own JSON
        array lists the keys. Keys without a related record are dropped.

        Args:
            models: Parent instances.
            results: Related records loaded by :meth:`eager_query`.
            relation: Attribute to assign; defaults to the relation's name.

        Returns:
            *models*, for chaining.
        """
        relation = relation or self.name
        dictionary = self.build_dictionary(results)
        coerce = self.key_coercer()

        for model in models:
            elements = self.path.elements(model)
            keys = [coerce(key) for key in self.path.keys_of(elements)]
            matches = [dictionary[key] for key in keys if key in dictionary]
            self.set_relation(model, relation, matches)

            if self.path.is_object_array:
                self._hydrate(matches, elements, coerce)

        logger.debug(
            "Matched %d related record(s) of %s to %d parent(s)", len(dictionary), self, len(models)
        )

        return models

    @staticmethod
    def set_relation(model: Any, relation: str, value: list[Any]) -> None:
        setattr(model, relation, value)

    # pivot

    def pivot_attributes(self, related: Any, parent: Any) -> Pivot:
        """Pivot data for *related* taken from *parent*'s object array."""
        return self.json.pivot_attributes(
            self.path.elements(parent), getattr(related, self.owner_key), self.key_coercer()
        )

    def hydrate_pivot(self, related_models: Iterable[Any], parent: Any) -> None:
        """Attach a freshly computed :class:`Pivot` to every related record."""
        self._hydrate(related_models, self.path.elements(parent), self.key_coercer())

    def _hydrate(
        self,
        related_models: Iterable[Any],
        elements: list[Any],
        coerce: Callable[[Any], Any],
    ) -> None:
        owner = self.owner_key
        for model in related_models:
            setattr(
                model,
                self.pivot_attribute,
                self.json.pivot_attributes(elements, getattr(model, owner), coerce),
            )

    # existence

    def get_relation_existence_query(
        self,
        query: sa.Select[Any] | None = None,
        parent_query: sa.Select[Any] | None = None,
        columns: Sequence[Any] | None = None,
    ) -> sa.Select[Any]:
        """Correlated query over related records stored in the parent's JSON.

        Wrap it with ``.exists()`` to filter parents that have at least one
        related record. When both queries select from the same table (their
        leftmost FROM) the related side is moved to a freshly named alias first.

        Args:
            query: Query over the related model. Defaults to ``sa.select(related)``.
            parent_query: Query over the parent model, used to detect a
                same-table relation. Defaults to ``sa.select(parent)``.
            columns: Columns to select instead of the related entity.

        Returns:
            The related query with the JSON containment predicate applied.
        """
        query = self._base_query(query)
        if parent_query is None:
            parent_query = sa.select(self._require_parent())

        root = get_root_table_name(query)
        if root is not None and root == get_root_table_name(parent_query):
            return self.get_relation_existence_query_for_self_relation(query, columns)

        if columns:
            query = query.with_only_columns(*columns, maintain_column_froms=True)

        return query.where(self.json.containment(self.document, self.owner_column()))

    def get_relation_existence_query_for_self_relation(
        self,
        query: sa.Select[Any],
        columns: Sequence[Any] | None = None,
    ) -> sa.Select[Any]:
        """Existence query for a relation whose parent and related tables are the same.

        The whole of *query* (joins, criteria, ordering, limits) and *columns*
        are rewritten onto an alias named by :meth:`get_relation_count_hash`
        with a ``ClauseAdapter``, while the JSON document keeps pointing at the
        outer parent table.
        """
        related = self.related
        alias = orm.aliased(related, name=self.get_relation_count_hash())
        original_table = sa.inspect(related).local_table
        alias_sel = sa.inspect(alias).selectable
        adapter = ClauseAdapter(
            alias_sel, equivalents={col: {alias_sel.c[col.key]} for col in original_table.c}
        )

        aliased_query: sa.Select[Any] = adapter.traverse(query)
        if columns:
            aliased_query = aliased_query.with_only_columns(
                *(adapter.traverse(_as_clause(column)) for column in columns),
                maintain_column_froms=True,
            )

        return aliased_query.where(
            self.json.containment(self.document, self.owner_column(alias))
        )

    def get_relation_count_hash(self) -> str:
        """A table alias name that is unique for the lifetime of the process."""
        return f"{get_table_name(self.related)}_json_{next(_alias_counter)}"

    def has(self, *criteria: sa.ColumnExpressionArgument[bool]) -> sa.Exists:
        """``EXISTS`` filter for parents with at least one related record.

        Example:
            >>> sa.select(Post).where(Post.recommendations.has(Post.title == "x"))
        """
        query = sa.select(self.related)
        if criteria:
            query = query.where(*criteria)

        return self.get_relation_existence_query(query=query).exists()
