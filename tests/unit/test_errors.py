"""
Tests for structured planner errors.
"""

import logging

from slice_planner.errors import (
    AmbiguousTable,
    ErrorCode,
    JoinPathNotFound,
    NoMetricsError,
    SliceError,
    TableNotFound,
)


class TestSliceError:
    """Tests for the SliceError base."""

    def test_to_dict(self):
        error = TableNotFound("invoices", available_providers=["shop"])
        payload = error.to_dict()["error"]

        assert payload["code"] == ErrorCode.ERR_TABLE_NOT_FOUND.value
        assert payload["details"] == {"table": "invoices", "available_providers": ["shop"]}
        assert "suggestion" in payload

    def test_to_dict_omits_empty_fields(self):
        payload = SliceError(code=ErrorCode.ERR_INTERNAL, message="boom").to_dict()
        assert payload == {"error": {"code": "ERR_9001", "message": "boom"}}

    def test_str_is_message(self):
        error = NoMetricsError()
        assert str(error) == error.message
        assert isinstance(error, Exception)

    def test_log(self, caplog):
        error = JoinPathNotFound("app:b", ["app:a"])
        with caplog.at_level(logging.WARNING, logger="slice_planner.errors"):
            error.log("warning")
        assert "[ERR_2001]" in caplog.text
        assert "app:b" in caplog.text


class TestAmbiguousTable:
    """Tests for the ambiguity message."""

    def test_lists_every_provider_prefix(self):
        error = AmbiguousTable("orders", ["alpha", "beta"])
        assert error.providers == ["alpha", "beta"]
        assert "alpha:orders.column" in error.message
        assert "beta:orders.column" in error.message
        assert error.suggestion == "Use a provider prefix, e.g. 'alpha:orders.column'"

    def test_codes_are_unique(self):
        values = [code.value for code in ErrorCode]
        assert len(values) == len(set(values))
