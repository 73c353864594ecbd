"""
PaperDB Converter Registry — Register and look up converters by type + version.

The registry is an explicitly constructed instance passed to whoever needs
it (PaperDB, Document, access controllers). ``default_registry()`` builds a
fresh instance holding the built-in converters.

Version policy: a lookup without a version resolves to exactly version 1.
A registry built with ``permissive=True`` instead resolves version-less
lookups to the first-registered converter of that type.

Usage:
    registry = ConverterRegistry([DATE_CONVERTER])
    registry.add(my_converter)
    conv = registry.get("date")         # same as registry.get("date", 1)
    conv = registry.resolve("date")     # raises UnknownDoctypeError if absent
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from paperdb.engine.errors import (
    ConverterMismatchError,
    InvalidPayloadError,
    UnknownDoctypeError,
)
from paperdb.types.converter import (
    DEFAULT_VERSION,
    Converter,
    assert_valid_converter,
    is_typed_object,
    typed_object_version,
)

logger = logging.getLogger("paperdb.types.registry")


class ConverterRegistry:
    """
    In-memory map of ``type -> {version -> Converter}``.

    Written during startup, read without locking afterwards.
    """

    def __init__(self, converters: Optional[Iterable[Converter]] = None, permissive: bool = False):
        # type → {version → Converter}, insertion ordered
        self._types: Dict[str, Dict[int, Converter]] = {}
        self._permissive = permissive

        for converter in converters or ():
            self.add(converter)

    @property
    def permissive(self) -> bool:
        return self._permissive

    def add(self, converter: Converter) -> "ConverterRegistry":
        """
        Register a converter under ``(type_name, version or 1)``.

        An existing converter under the same key is overwritten.
        """
        assert_valid_converter(converter)
        version = converter.version if converter.version is not None else DEFAULT_VERSION

        versions = self._types.setdefault(converter.type_name, {})
        if version in versions:
            logger.debug(f"Overwriting converter: {converter.type_name} v{version}")
        versions[version] = converter

        logger.debug(f"Registered converter: {converter.type_name} v{version}")
        return self

    def get(self, type_name: str, version: Optional[int] = None) -> Optional[Converter]:
        """
        Look up a converter.

        Returns None if the type (or that version of it) is unknown.
        Raises ConverterMismatchError if the stored converter declares a
        different type or version than the key it was found under.
        """
        versions = self._types.get(type_name)
        if not versions:
            return None

        if version is None and self._permissive:
            converter = next(iter(versions.values()))
            expected_version = None
        else:
            expected_version = version if version is not None else DEFAULT_VERSION
            converter = versions.get(expected_version)
            if converter is None:
                return None

        declared_version = converter.version if converter.version is not None else DEFAULT_VERSION
        if converter.type_name != type_name or (
            expected_version is not None and declared_version != expected_version
        ):
            raise ConverterMismatchError(
                "The converter from the registry does not match the given type and version",
                type_name=type_name,
                version=version,
            )
        return converter

    def resolve(self, type_or_converter: Union[str, Converter], version: Optional[int] = None) -> Converter:
        """
        Resolve a type name or a converter instance to a usable converter.

        Raises:
            UnknownDoctypeError: no converter registered for the name.
            InvalidConverterError: the converter instance is malformed.
        """
        if isinstance(type_or_converter, str):
            converter = self.get(type_or_converter, version)
            if converter is None:
                raise UnknownDoctypeError(
                    f"Cannot find the doctype '{type_or_converter}' "
                    f"(make sure it is registered in the converter registry)",
                    type_name=type_or_converter,
                    version=version,
                )
            return converter

        return assert_valid_converter(type_or_converter)

    def resolve_for(self, obj: Any) -> Converter:
        """Resolve the converter for a TypedObject from its own type/version."""
        if not is_typed_object(obj):
            raise InvalidPayloadError("The payload is not a TypedObject")
        return self.resolve(obj["type"], typed_object_version(obj))

    def decode(self, obj: Mapping[str, Any], db: Any = None) -> Any:
        """Decode a TypedObject using the converter its type/version names."""
        return self.resolve_for(obj).from_typed_object(obj, db)

    def delete(self, type_name: str, version: Optional[int] = None) -> bool:
        """Remove one converter (version defaults to 1). Returns success."""
        versions = self._types.get(type_name)
        key = version if version is not None else DEFAULT_VERSION
        if not versions or key not in versions:
            return False

        del versions[key]
        if not versions:
            del self._types[type_name]
        return True

    def types(self) -> List[str]:
        """All registered type names."""
        return list(self._types.keys())

    def versions(self, type_name: str) -> List[int]:
        """All registered versions of a type, in registration order."""
        return list(self._types.get(type_name, {}).keys())

    def items(self) -> List[Tuple[str, int, Converter]]:
        return [
            (type_name, version, converter)
            for type_name, versions in self._types.items()
            for version, converter in versions.items()
        ]

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._types

    def __len__(self) -> int:
        return sum(len(v) for v in self._types.values())


def default_converters() -> List[Converter]:
    """The built-in converters: date, timestamp, blob:file, collection-ref."""
    from paperdb.engine.collection import COLLECTION_REF_CONVERTER
    from paperdb.types.blob_file import BLOB_FILE_CONVERTER
    from paperdb.types.date import DATE_CONVERTER, TIMESTAMP_CONVERTER

    return [DATE_CONVERTER, TIMESTAMP_CONVERTER, BLOB_FILE_CONVERTER, COLLECTION_REF_CONVERTER]


def default_registry(permissive: bool = False) -> ConverterRegistry:
    """A fresh registry populated with the built-in converters."""
    return ConverterRegistry(default_converters(), permissive=permissive)
