"""
Tests for the Slice facade.
"""

import pytest

from slice_planner import Count, DriverManager, Slice, StringDimension, Sum
from slice_planner.core import Settings
from slice_planner.errors import NoMetricsError


@pytest.fixture
def slice_(registry, recording_driver):
    recording_driver.rows = {"orders": [{"status": "paid", "sum_orders_total": "170.5"}]}
    return Slice(registry, DriverManager(default=recording_driver))


class TestSlice:
    """Tests for plan(), query() and explain()."""

    def test_plan(self, slice_):
        plan = slice_.plan([Sum.make("orders.total")], [StringDimension.make("orders.status")])
        assert plan.primary_table == "orders"
        assert plan.dimension_order == ("status",)
        assert plan.metric_aliases() == ["sum_orders_total"]

    def test_query_returns_adapter_rows(self, slice_, recording_driver):
        rows = slice_.query([Sum.make("orders.total")], [StringDimension.make("orders.status")])
        assert rows == [{"status": "paid", "sum_orders_total": "170.5"}]
        assert recording_driver.executed == ["orders"]

    def test_explain(self, slice_):
        explained = slice_.explain([Sum.make("orders.total")])
        assert explained["primaryTable"] == "orders"
        assert explained["metrics"] == {"sum_orders_total": "shop:orders.total"}
        assert explained["joinPlan"] == {"type": "empty"}
        assert explained["sql"].startswith("-- recording")

    def test_normalize_metrics(self, slice_):
        normalized = slice_.normalize_metrics([Count.make("orders.id")])
        assert [source.key() for source, _ in normalized] == ["shop:orders.id"]

    def test_no_metrics(self, slice_):
        with pytest.raises(NoMetricsError):
            slice_.plan([])


class TestSliceFromSettings:
    """Tests for Slice.from_settings()."""

    def test_catalog_paths_register_a_provider(self, tmp_path, recording_driver):
        catalog = tmp_path / "warehouse.yaml"
        catalog.write_text(
            "tables:\n  orders:\n    primaryKey: id\n    columns: [id, total]\n",
            encoding="utf-8",
        )
        settings = Settings(
            _env_file=None,
            catalog_name="warehouse",
            catalog_paths=[str(catalog)],
            default_join_type="inner",
        )

        slice_ = Slice.from_settings(settings, drivers=DriverManager(default=recording_driver))

        assert list(slice_.registry.providers()) == ["warehouse"]
        assert slice_.builder.default_join_type == "inner"
        assert slice_.explain([Sum.make("orders.total")])["metrics"] == {
            "sum_orders_total": "warehouse:orders.total",
        }

    def test_without_catalog(self):
        slice_ = Slice.from_settings(Settings(_env_file=None))
        assert list(slice_.registry.providers()) == []
