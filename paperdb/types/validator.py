"""PaperDB payload validator — collapse a converter into a boolean predicate."""

from __future__ import annotations

import logging
from typing import Any, Callable

from paperdb.types.converter import Converter, assert_valid_converter

logger = logging.getLogger("paperdb.types.validator")

Validator = Callable[[Any], bool]


def create_validator(converter: Converter, db: Any = None) -> Validator:
    """
    Build ``valid(payload) -> bool`` for one converter.

    Uses the converter's ``is_valid`` when present; otherwise a payload is
    valid when ``decode`` does not raise. Decode errors are discarded.

    Raises:
        InvalidConverterError: if *converter* is malformed.
    """
    assert_valid_converter(converter)

    def valid(payload: Any) -> bool:
        if payload is None:
            return False

        if callable(converter.is_valid):
            return bool(converter.is_valid(payload, db))

        try:
            converter.decode(payload, db)
            return True
        except Exception as e:
            logger.debug(f"Payload rejected by '{converter.type_name}': {e}")
            return False

    return valid
