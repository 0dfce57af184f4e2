"""Declarative JSON path parsing.

A JSON relation names where its foreign keys live with a short path string:

* ``"options->recommendation_ids"`` -- ``options`` is a JSON column whose
  ``recommendation_ids`` member is an array of scalar keys.
* ``"options->recommendations[]->post_id"`` -- ``recommendations`` is an array
  of objects, ``post_id`` is the key field of each object and every other field
  becomes pivot data.
* ``"recommendations[]->post_id"`` -- the column itself holds the object array.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Final

from .exceptions import ConfigurationError


SEPARATOR: Final[str] = "->"
ARRAY_MARKER: Final[str] = "[]"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JsonPath:
    """Parsed location of foreign keys (and pivot data) inside a JSON column.

    Attributes:
        declared: The path string the relation was declared with.
        column: Mapped attribute holding the decoded JSON document.
        array_path: Object keys leading from the document to the array.
            Empty when the column itself holds the array.
        pivot_key_field: Key field inside each array element, or ``None`` when
            the array holds scalar keys.
    """

    declared: str
    column: str
    array_path: tuple[str, ...] = ()
    pivot_key_field: str | None = None

    @property
    def is_object_array(self) -> bool:
        return self.pivot_key_field is not None

    def resolve(self, record: Any) -> Any | None:
        """Return the JSON value at :attr:`array_path` on *record*, or ``None``.

        The attribute is read once. ``sa.JSON`` columns arrive decoded; a raw
        ``str`` or ``bytes`` document (e.g. a ``Text`` column) is decoded here.
        """
        value = getattr(record, self.column)
        if isinstance(value, (str, bytes, bytearray)):
            value = json.loads(value)
        for segment in self.array_path:
            if not isinstance(value, Mapping):
                return None
            value = value.get(segment)

        return value

    def elements(self, record: Any) -> list[Any]:
        """Return the array at the path, coercing bare values to a one-item list."""
        return as_array(self.resolve(record))

    def keys_of(self, elements: Iterable[Any]) -> list[Any]:
        """Extract the foreign keys from already resolved array *elements*.

        Values that cannot be keys (nested arrays or objects) are skipped.
        """
        if self.pivot_key_field is None:
            return [element for element in elements if isinstance(element, Hashable)]

        field = self.pivot_key_field
        return [
            element[field]
            for element in elements
            if isinstance(element, Mapping)
            and field in element
            and isinstance(element[field], Hashable)
        ]

    def keys(self, record: Any) -> list[Any]:
        """Return the foreign keys stored on *record*, in stored order."""
        return self.keys_of(self.elements(record))

    def __str__(self) -> str:
        return self.declared


def as_array(value: Any) -> list[Any]:
    """Coerce a decoded JSON value to a list.

    ``None`` becomes ``[]``, arrays are copied, anything else (a bare scalar or
    a single object) is wrapped.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)

    return [value]


def _segment_name(segment: str, declared: str) -> tuple[str, bool]:
    is_array = segment.endswith(ARRAY_MARKER)
    name = segment[: -len(ARRAY_MARKER)] if is_array else segment
    if not name:
        raise ConfigurationError(f"Empty segment in JSON relation path {declared!r}")
    if "[" in name or "]" in name:
        raise ConfigurationError(
            f"Unbalanced array marker in segment {segment!r} of JSON relation path {declared!r}"
        )

    return name, is_array


@lru_cache(maxsize=256)
def parse_path(declared: str) -> JsonPath:
    """Parse a declared JSON relation path into a :class:`JsonPath`.

    Args:
        declared: ``"<column>-><key>"``, ``"<column>-><array>[]-><key>"`` or
            ``"<column>[]-><key>"``.

    Returns:
        The parsed, immutable path. Results are cached per path string.

    Raises:
        ConfigurationError: If the string does not match one of the shapes above.
    """
    if SEPARATOR not in declared:
        raise ConfigurationError(
            f"JSON relation path {declared!r} must contain the {SEPARATOR!r} separator"
        )

    segments: Sequence[str] = [segment.strip() for segment in declared.split(SEPARATOR)]
    parsed = [_segment_name(segment, declared) for segment in segments]
    markers = [index for index, (_, is_array) in enumerate(parsed) if is_array]
    names = [name for name, _ in parsed]

    if not markers:
        if len(names) != 2:
            raise ConfigurationError(
                f"JSON relation path {declared!r} must have the form '<column>-><key>'"
            )
        path = JsonPath(declared=declared, column=names[0], array_path=(names[1],))
    else:
        if len(markers) > 1:
            raise ConfigurationError(
                f"JSON relation path {declared!r} may contain only one {ARRAY_MARKER!r} marker"
            )
        (index,) = markers
        trailing = names[index + 1 :]
        if len(trailing) != 1:
            raise ConfigurationError(
                f"JSON relation path {declared!r} must name exactly one key field "
                f"after '{ARRAY_MARKER}{SEPARATOR}', got {len(trailing)}"
            )
        if index > 1:
            raise ConfigurationError(
                f"JSON relation path {declared!r} must have the form "
                "'<column>-><array>[]-><key>' or '<column>[]-><key>'"
            )
        path = JsonPath(
            declared=declared,
            column=names[0],
            array_path=tuple(names[1 : index + 1]),
            pivot_key_field=trailing[0],
        )

    logger.debug("Parsed JSON relation path %r -> %r", declared, path)

    return path
