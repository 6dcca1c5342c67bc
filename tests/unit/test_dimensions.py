"""
Tests for dimension value types, catalogs and the DimensionResolver.
"""

from enum import Enum

import pytest

from slice_planner.engine import DimensionResolver
from slice_planner.errors import UnsupportedGranularity
from slice_planner.schema import (
    BooleanDimension,
    Dimension,
    DimensionCatalog,
    EnumDimension,
    StringDimension,
    Table,
    TimeDimension,
    TimeGranularity,
    dimension_from_dict,
)


class Plan(Enum):
    FREE = "free"
    PRO = "pro"


class TestDimensionIdentity:
    """Tests for names, keys, aliases and owning tables."""

    def test_bare_reference(self):
        dimension = StringDimension.make("country")
        assert dimension.column() == "country"
        assert dimension.table() is None
        assert dimension.name() == "country"
        assert dimension.key() == "string::country"
        assert dimension.alias() == "country"

    def test_table_reference(self):
        dimension = TimeDimension.make("orders.created_at")
        assert dimension.table() == "orders"
        assert dimension.column() == "created_at"
        assert dimension.key() == "time::created_at"

    def test_provider_prefixed_reference(self):
        assert StringDimension.make("shop:customers.country").table() == "shop:customers"

    def test_with_name(self):
        dimension = Dimension.make("orders.status").with_name("state")
        assert dimension.column() == "status"
        assert dimension.key() == "dimension::state"
        assert dimension.alias() == "state"

    def test_on_table(self):
        assert StringDimension.make("country").on_table("customers").reference == "customers.country"

    def test_kinds(self):
        assert BooleanDimension.make("active").key() == "boolean::active"
        assert EnumDimension.make("plan").key() == "enum::plan"


class TestDimensionBuilders:
    """Tests for immutable builder methods."""

    def test_builders_return_copies(self):
        original = TimeDimension.make("orders.created_at")
        monthly = original.monthly()
        assert original.granularity == "day"
        assert monthly.granularity == "month"

    def test_granularity_shortcuts(self):
        dimension = TimeDimension.make("created_at")
        assert dimension.hourly().granularity == TimeDimension.HOURLY
        assert dimension.weekly().granularity == "week"
        assert dimension.yearly().granularity == "year"
        assert dimension.set_granularity(TimeGranularity.QUARTER).granularity == "quarter"
        assert dimension.set_granularity("MONTH").granularity == "month"

    def test_precision(self):
        dimension = TimeDimension.make("created_at").as_date()
        assert dimension.precision == "date"
        assert dimension.as_timestamp().precision == "timestamp"

    def test_filters_accumulate(self):
        dimension = StringDimension.make("status").only(["paid"]).except_(["void"]).where("!=", "x")
        assert dimension.filters == {
            "only": ["paid"],
            "except": ["void"],
            "where": {"operator": "!=", "value": "x"},
        }
        assert dimension.has_filters()
        assert not StringDimension.make("status").has_filters()

    def test_string_values(self):
        dimension = StringDimension.make("status").with_values(["paid"]).add_value("refunded")
        assert dimension.values == ("paid", "refunded")

    def test_enum_from_class(self):
        dimension = EnumDimension.from_enum("accounts.plan", Plan)
        assert dimension.cases == ("free", "pro")
        assert dimension.enum_class.endswith("Plan")


class TestDimensionSerialization:
    """Tests for to_dict() / dimension_from_dict()."""

    @pytest.mark.parametrize("dimension", [
        Dimension.make("orders.status").with_label("Order status"),
        TimeDimension.make("orders.created_at").monthly().as_date(),
        StringDimension.make("country").with_name("nation").with_values(["US"]),
        BooleanDimension.make("active").only([True]),
        EnumDimension.from_enum("plan", Plan),
    ])
    def test_round_trip(self, dimension):
        assert dimension_from_dict(dimension.to_dict()) == dimension

    def test_label_defaults_to_name(self):
        assert StringDimension.make("country").to_dict()["label"] == "country"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            dimension_from_dict({"kind": "geo", "name": "x"})


class TestDimensionCatalog:
    """Tests for DimensionCatalog."""

    def test_lookup_and_types(self):
        catalog = DimensionCatalog.from_dimensions([
            TimeDimension.make("created_at"),
            StringDimension.make("status"),
        ])
        assert catalog.keys() == ["time::created_at", "string::status"]
        assert catalog.has("string::status")
        assert list(catalog.of_type(TimeDimension)) == ["time::created_at"]
        assert len(catalog) == 2

    def test_merge_is_right_biased(self):
        left = DimensionCatalog.from_dimensions([StringDimension.make("status")])
        right = DimensionCatalog({"string::status": StringDimension.make("state").with_name("status")})
        merged = left.merge(right)
        assert merged.get("string::status").column() == "state"
        assert left.get("string::status").column() == "status"

    def test_add_returns_new_catalog(self):
        catalog = DimensionCatalog()
        added = catalog.add("string::x", StringDimension.make("x"))
        assert catalog.is_empty()
        assert added.count() == 1


def _table(name, *dimensions, provider="app"):
    return Table(name=name, provider=provider, dimensions=DimensionCatalog.from_dimensions(dimensions))


class TestDimensionResolver:
    """Tests for matching requested dimensions to table catalogs."""

    def test_matches_by_class_and_name(self):
        orders = _table("orders", TimeDimension.make("created_at"), StringDimension.make("status"))
        customers = _table("customers", StringDimension.make("status"))
        resolver = DimensionResolver()

        resolved = resolver.resolve_dimension(StringDimension.make("status"), [orders, customers])
        assert list(resolved) == ["orders", "customers"]

        assert resolver.resolve_dimension(TimeDimension.make("status"), [orders, customers]) == {}

    def test_generic_request_matches_any_variant(self):
        orders = _table("orders", TimeDimension.make("created_at"))
        resolved = DimensionResolver().resolve_dimension(Dimension.make("created_at"), [orders])
        assert isinstance(resolved["orders"], TimeDimension)

    def test_column_for_renamed_dimension(self):
        sales = _table("sales", StringDimension.make("region_code").with_name("region"))
        resolver = DimensionResolver()
        resolved = resolver.resolve_dimension(StringDimension.make("region"), [sales])
        assert resolver.get_column_for_table(resolved["sales"]) == "region_code"

    def test_granularity_validation(self):
        resolver = DimensionResolver()
        daily_only = {"events": TimeDimension.make("ts").with_meta({"minGranularity": "day"})}

        resolver.validate_granularity(daily_only, TimeDimension.make("ts").monthly())
        resolver.validate_granularity(daily_only, StringDimension.make("ts"))

        with pytest.raises(UnsupportedGranularity):
            resolver.validate_granularity(daily_only, TimeDimension.make("ts").hourly())
        with pytest.raises(UnsupportedGranularity):
            resolver.validate_granularity({}, TimeDimension.make("ts").set_granularity("decade"))
