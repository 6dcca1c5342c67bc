"""
Tests for the schema registry, providers and compiled schema.
"""

import pytest

from slice_planner.errors import AmbiguousTable, ReferenceNotFound, TableNotFound
from slice_planner.schema import (
    ManualSchemaProvider,
    PrimaryKeyDescriptor,
    RelationType,
    SchemaRegistry,
    StringDimension,
    Table,
    TableDefinition,
)


def _provider(name, *table_names, connection=None):
    return ManualSchemaProvider(name, [TableDefinition(t) for t in table_names], connection=connection)


class TestResolveTable:
    """Tests for SchemaRegistry.resolve_table()."""

    def test_single_owner_resolves(self, multi_registry):
        table = multi_registry.resolve_table("tickets")
        assert table.identifier == "crm:tickets"
        assert table.provider == "crm"

    def test_prefixed_identifier_routes_to_provider(self, multi_registry):
        assert multi_registry.resolve_table("shop:orders").identifier == "shop:orders"

    def test_unknown_provider_prefix(self, multi_registry):
        with pytest.raises(TableNotFound) as exc:
            multi_registry.resolve_table("billing:orders")
        assert exc.value.details["available_providers"] == ["shop", "crm"]

    def test_unknown_table_on_known_provider(self, multi_registry):
        with pytest.raises(TableNotFound):
            multi_registry.resolve_table("crm:orders")

    def test_unknown_bare_table_lists_providers(self, multi_registry):
        with pytest.raises(TableNotFound) as exc:
            multi_registry.resolve_table("invoices")
        assert "shop" in str(exc.value)
        assert "crm" in str(exc.value)

    def test_shared_name_is_ambiguous(self):
        registry = SchemaRegistry()
        for name in ("alpha", "beta", "gamma"):
            registry.register(_provider(name, "orders"))

        with pytest.raises(AmbiguousTable) as exc:
            registry.resolve_table("orders")

        error = exc.value
        assert error.providers == ["alpha", "beta", "gamma"]
        for name in ("alpha", "beta", "gamma"):
            assert f"{name}:orders.column" in error.message

    def test_shared_name_resolves_with_prefix(self):
        registry = SchemaRegistry().register(_provider("a", "orders")).register(_provider("b", "orders"))
        assert registry.resolve_table("b:orders").provider == "b"

    def test_can_resolve(self):
        registry = SchemaRegistry().register(_provider("a", "orders")).register(_provider("b", "orders"))
        assert registry.can_resolve("a:orders")
        assert not registry.can_resolve("orders")
        assert not registry.can_resolve("missing")


class TestResolveMetricSource:
    """Tests for metric reference resolution."""

    def test_bare_reference(self, registry):
        source = registry.resolve_metric_source("orders.total")
        assert source.table.identifier == "shop:orders"
        assert source.column == "total"
        assert source.key() == "shop:orders.total"
        assert source.table_name() == "orders"
        assert source.get_connection() == "main"

    def test_prefixed_reference(self, multi_registry):
        source = multi_registry.resolve_metric_source("crm:tickets.id")
        assert source.key() == "crm:tickets.id"

    def test_malformed_reference(self, registry):
        with pytest.raises(ReferenceNotFound):
            registry.resolve_metric_source("orders")

    def test_unknown_declared_column(self, registry):
        with pytest.raises(ReferenceNotFound):
            registry.resolve_metric_source("orders.discount")

    def test_undeclared_columns_accept_anything(self):
        registry = SchemaRegistry().register(_provider("raw", "events"))
        assert registry.resolve_metric_source("events.anything").column == "anything"

    def test_normalize_metrics(self, registry):
        from slice_planner.metrics import Sum

        aggregation = Sum.make("orders.total")
        [(source, normalized)] = registry.normalize_metrics([aggregation])
        assert normalized is aggregation
        assert source.key() == "shop:orders.total"


class TestListing:
    """Tests for table listings."""

    def test_all_tables_uses_shortest_unambiguous_reference(self):
        registry = (
            SchemaRegistry()
            .register(_provider("a", "orders", "customers"))
            .register(_provider("b", "orders"))
        )
        assert sorted(registry.available_tables()) == ["a:orders", "b:orders", "customers"]

    def test_register_replaces_same_name(self):
        registry = SchemaRegistry().register(_provider("a", "orders")).register(_provider("a", "users"))
        assert list(registry.providers()) == ["a"]
        assert registry.can_resolve("users")
        assert registry.get_provider("a") is not None
        assert registry.get_provider("missing") is None


class TestCompiledSchema:
    """Tests for CompiledSchema snapshots."""

    def test_bare_names_only_when_unambiguous(self):
        schema = (
            SchemaRegistry()
            .register(_provider("a", "orders", "customers"))
            .register(_provider("b", "orders"))
            .compile()
        )
        assert schema.resolve_table("customers").identifier == "a:customers"
        assert schema.resolve_table("orders") is None
        assert schema.resolve_table("orders", prefer_provider="b").identifier == "b:orders"
        assert schema.resolve_table("b:orders").identifier == "b:orders"

    def test_connection_index(self, multi_registry):
        schema = multi_registry.compile()
        assert schema.get_tables_on_connection("shop:main") == ["shop:orders", "shop:customers"]
        assert schema.get_tables_on_connection("crm:support") == ["crm:tickets"]
        assert set(schema.connections()) == {"shop:main", "crm:support"}

    def test_table_metadata(self, multi_registry):
        schema = multi_registry.compile()
        assert schema.has_table("shop:orders")
        assert schema.get_table_provider("crm:tickets") == "crm"
        assert schema.get_relations("shop:orders").has("customer")
        assert schema.get_dimensions("shop:customers").has("string::country")

        with pytest.raises(TableNotFound):
            schema.get_relations("shop:missing")

    def test_connections_for_metrics(self, multi_registry):
        schema = multi_registry.compile()
        sources = [
            multi_registry.resolve_metric_source("orders.total"),
            multi_registry.resolve_metric_source("customers.id"),
            multi_registry.resolve_metric_source("tickets.id"),
        ]
        assert schema.get_connections_for_metrics(sources) == ["shop:main", "crm:support"]


class TestTables:
    """Tests for Table values and manual declarations."""

    def test_identifier_and_connection_key(self):
        table = Table(name="orders", provider="shop")
        assert table.identifier == "shop:orders"
        assert table.connection_key == "shop:null"

    def test_definition_builds_relations(self, shop_provider):
        orders = shop_provider.get_table("orders")
        relation = orders.relations.get("customer")
        assert relation.type == RelationType.BELONGS_TO
        assert relation.key("foreign") == "customer_id"
        assert relation.key("owner") == "id"
        assert relation.is_one()
        assert orders.primary_key.column() == "id"

    def test_dict_round_trip(self, shop_provider):
        orders = shop_provider.get_table("orders")
        restored = Table.from_dict(orders.to_dict(), provider="shop", connection="main")
        assert restored.to_dict() == orders.to_dict()
        assert restored.relations == orders.relations

    def test_foreign_table_rejected(self):
        provider = ManualSchemaProvider("a")
        with pytest.raises(ValueError):
            provider.add_table(Table(name="orders", provider="b"))

    def test_get_table_missing(self, shop_provider):
        with pytest.raises(TableNotFound):
            shop_provider.get_table("invoices")

    def test_tables_generator_restarts(self, shop_provider):
        assert [t.name for t in shop_provider.tables()] == ["orders", "customers"]
        assert [t.name for t in shop_provider.tables()] == ["orders", "customers"]

    def test_provider_metadata_lookups(self, shop_provider):
        assert shop_provider.relations("orders").names() == ["customer"]
        assert shop_provider.dimensions("customers").keys() == ["string::country"]
        assert shop_provider.relations("missing").is_empty()


class TestPrimaryKey:
    """Tests for PrimaryKeyDescriptor."""

    def test_single(self):
        key = PrimaryKeyDescriptor(columns=["id"])
        assert key.is_single()
        assert not key.is_composite()
        assert key.column() == "id"

    def test_composite(self):
        key = PrimaryKeyDescriptor(columns=("order_id", "line"))
        assert key.is_composite()
        assert key.column() is None
        assert PrimaryKeyDescriptor.from_dict(key.to_dict()) == key


class TestDimensionDeclarations:
    """Dimensions declared on manual tables."""

    def test_catalog_keys(self, shop_provider):
        orders = shop_provider.get_table("orders")
        assert orders.dimensions.keys() == ["time::created_at", "string::status"]
        assert isinstance(orders.dimensions.get("string::status"), StringDimension)
