"""
PaperDB Converters — The TypedObject wire format and its codecs.

A TypedObject is a plain, JSON-compatible dict:

    {"type": "date", "iso8601": "2020-01-01T00:00:00.000Z"}
    {"type": "acme:invoice", "version": 2, "total": 12}

``type`` is mandatory and unique per application (namespaced as
``ns:name`` for non-common types). ``version`` is the major version, a
whole number >= 1; when omitted it means exactly 1.

Two separate capabilities move data across that boundary:

- Convertible (value level): any object with ``to_typed_object()``.
- Converter (type level): a descriptor registered in a ConverterRegistry
  holding ``type_name``, ``version``, ``decode`` and optional ``encode`` /
  ``is_valid`` callables.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

from paperdb.engine.errors import InvalidConverterError, InvalidPayloadError

TypedObject = Dict[str, Any]

DEFAULT_VERSION = 1


@runtime_checkable
class Convertible(Protocol):
    """Any value that can render itself as a TypedObject."""

    def to_typed_object(self) -> TypedObject:
        ...


def is_typed_object(obj: Any) -> bool:
    """True if *obj* has the TypedObject shape (a type string and a valid version)."""
    if not isinstance(obj, Mapping):
        return False
    type_name = obj.get("type")
    if not isinstance(type_name, str) or not type_name:
        return False
    version = obj.get("version", DEFAULT_VERSION)
    return isinstance(version, int) and not isinstance(version, bool) and version >= 1


def typed_object_version(obj: Mapping[str, Any]) -> int:
    """Return the declared version of a TypedObject (1 when omitted)."""
    version = obj.get("version", DEFAULT_VERSION)
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise InvalidPayloadError(
            f"Invalid TypedObject version: {version!r}",
            type_name=obj.get("type"),
        )
    return version


def expect_typed_object(obj: Any, type_name: str, version: int = DEFAULT_VERSION) -> Mapping[str, Any]:
    """
    Check that *obj* is a TypedObject of exactly ``type_name``/``version``.

    Helper for decode functions; raises InvalidPayloadError otherwise.
    """
    if not is_typed_object(obj) or obj["type"] != type_name:
        raise InvalidPayloadError(
            f"Expected a TypedObject of type '{type_name}'",
            type_name=type_name,
            version=version,
        )
    if typed_object_version(obj) != version:
        raise InvalidPayloadError(
            f"Expected version {version} of type '{type_name}', got {obj.get('version')}",
            type_name=type_name,
            version=version,
        )
    return obj


@dataclass(frozen=True)
class Converter:
    """
    Bidirectional codec between a TypedObject and an application value.

    ``decode(obj, db)`` receives the root PaperDB instance (or None) for
    types that need it (e.g. blob references). It must raise
    InvalidPayloadError for malformed objects.
    """

    type_name: str
    decode: Callable[[Any, Any], Any]
    version: Optional[int] = DEFAULT_VERSION
    encode: Optional[Callable[[Any], TypedObject]] = None
    is_valid: Optional[Callable[[Any, Any], bool]] = None

    @property
    def key_version(self) -> int:
        """The version used as the registry key."""
        return self.version if self.version is not None else DEFAULT_VERSION

    def from_typed_object(self, obj: Any, db: Any = None) -> Any:
        """Decode a TypedObject into its application value."""
        return self.decode(obj, db)

    def to_typed_object(self, value: Any) -> TypedObject:
        """
        Encode an application value.

        Uses the converter's ``encode`` when given, otherwise the value's own
        ``to_typed_object()``. The result must declare this converter's type.
        """
        if self.encode is not None:
            obj = self.encode(value)
        elif isinstance(value, Convertible):
            obj = value.to_typed_object()
        else:
            raise InvalidPayloadError(
                f"Cannot encode {type(value).__name__} as '{self.type_name}'",
                type_name=self.type_name,
                version=self.version,
            )

        if not is_typed_object(obj) or obj["type"] != self.type_name:
            raise InvalidPayloadError(
                f"Encoded object is not of type '{self.type_name}'",
                type_name=self.type_name,
                version=self.version,
            )
        return dict(obj)


def is_valid_converter(converter: Any, type_name: Optional[str] = None) -> bool:
    """Well-formedness check: non-empty type string, int-or-None version, callable decode."""
    if converter is None:
        return False

    declared = getattr(converter, "type_name", None)
    version = getattr(converter, "version", None)
    decode = getattr(converter, "decode", None)

    if not isinstance(declared, str) or not declared:
        return False
    if type_name is not None and declared != type_name:
        return False
    if version is not None and (not isinstance(version, int) or isinstance(version, bool)):
        return False
    return callable(decode)


def assert_valid_converter(converter: Any) -> Converter:
    """Return *converter* unchanged, or raise InvalidConverterError."""
    if not is_valid_converter(converter):
        raise InvalidConverterError(
            f"Not a valid converter: {converter!r}",
            type_name=getattr(converter, "type_name", None),
        )
    return converter
