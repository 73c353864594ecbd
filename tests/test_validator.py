"""Unit tests for paperdb.types.validator — create_validator."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from paperdb.engine.errors import InvalidConverterError, InvalidPayloadError
from paperdb.types.converter import Converter
from paperdb.types.date import DATE_CONVERTER
from paperdb.types.validator import create_validator


class TestCreateValidator:

    def test_none_payload_never_reaches_converter(self):
        decode = MagicMock()
        valid = create_validator(Converter(type_name="m", decode=decode))
        assert valid(None) is False
        decode.assert_not_called()

    def test_decode_success(self):
        valid = create_validator(DATE_CONVERTER)
        assert valid({"type": "date", "iso8601": "2020-01-01T00:00:00.000Z"}) is True

    def test_decode_failure_is_false(self):
        valid = create_validator(DATE_CONVERTER)
        assert valid({"type": "date", "iso8601": "not a date"}) is False
        assert valid({"type": "timestamp", "ms": 1}) is False
        assert valid("garbage") is False

    def test_any_exception_is_false(self):
        def explode(obj, db):
            raise KeyError("boom")

        valid = create_validator(Converter(type_name="m", decode=explode))
        assert valid({"type": "m"}) is False

    def test_is_valid_takes_precedence(self):
        decode = MagicMock(side_effect=InvalidPayloadError("never"))
        is_valid = MagicMock(return_value=True)
        valid = create_validator(Converter(type_name="m", decode=decode, is_valid=is_valid), db="db")

        assert valid({"type": "m"}) is True
        is_valid.assert_called_once_with({"type": "m"}, "db")
        decode.assert_not_called()

    def test_db_is_passed_to_decode(self):
        decode = MagicMock(return_value=1)
        create_validator(Converter(type_name="m", decode=decode), db="db")({"type": "m"})
        decode.assert_called_once_with({"type": "m"}, "db")

    def test_invalid_converter(self):
        with pytest.raises(InvalidConverterError):
            create_validator(SimpleNamespace(type_name="", version=1, decode=len))
