"""
Tests for QueryPlanBuilder: native vs software planning and the adapter
calls each plan shape issues.
"""

import pytest

from slice_planner.drivers import DriverManager
from slice_planner.engine import (
    DatabaseJoinPlan,
    EmptyJoinPlan,
    QueryPlanBuilder,
    SoftwareJoinPlan,
)
from slice_planner.errors import (
    CircularDependency,
    JoinPathNotFound,
    NoMetricsError,
    UnhandledRelationType,
    UnknownMetricDependency,
    UnsupportedGranularity,
    UnsupportedSoftwareAggregation,
)
from slice_planner.metrics import Avg, Computed, Count, Max, Percentile, Sum
from slice_planner.schema import (
    ManualSchemaProvider,
    SchemaRegistry,
    StringDimension,
    TableDefinition,
    TimeDimension,
)


@pytest.fixture
def builder(registry, recording_driver, compiler):
    return QueryPlanBuilder(registry, DriverManager(default=recording_driver), compiler)


@pytest.fixture
def split_drivers(make_driver):
    """Two recording drivers, one per connection of the multi registry."""
    shop = make_driver("shop-db")
    crm = make_driver("crm-db")
    manager = DriverManager().register("main", shop, provider="shop").register("support", crm, provider="crm")
    return shop, crm, manager


class TestSingleTablePlans:
    """Tests for plans that touch one table."""

    def test_empty_join_plan(self, builder):
        plan = builder.build([Sum.make("orders.total")])

        assert isinstance(plan.join_plan, EmptyJoinPlan)
        assert plan.primary_table == "orders"
        assert plan.metric_aliases() == ["sum_orders_total"]
        assert plan.adapter.called("from") == [("orders",)]
        assert plan.adapter.called("select_raw") == [('SUM("orders"."total") AS "sum_orders_total"',)]
        assert plan.adapter.called("join") == []

    def test_time_dimension_is_bucketed(self, builder):
        plan = builder.build(
            [Sum.make("orders.total")],
            [TimeDimension.make("orders.created_at")],
        )
        bucket = "DATE_TRUNC('day', orders.created_at)"

        assert plan.dimension_order == ("created_at",)
        assert plan.adapter.called("select_raw") == [
            (f'{bucket} AS "created_at"',),
            ('SUM("orders"."total") AS "sum_orders_total"',),
        ]
        assert plan.adapter.called("group_by_raw") == [(bucket,)]
        assert plan.adapter.called("order_by_raw") == [(bucket,)]

    def test_granularity_follows_request(self, builder):
        plan = builder.build(
            [Sum.make("orders.total")],
            [TimeDimension.make("orders.created_at").monthly()],
        )
        assert plan.adapter.called("group_by_raw") == [("DATE_TRUNC('month', orders.created_at)",)]

    def test_bare_dimension_resolves_against_metric_tables(self, builder):
        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("status")])

        assert plan.adapter.called("select")[0] == ("orders.status as status",)
        assert plan.adapter.called("group_by") == [("orders.status",)]
        assert plan.adapter.called("order_by") == [("orders.status", "asc")]

    def test_undeclared_bare_dimension_falls_back_to_primary(self, builder):
        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("channel")])
        assert plan.adapter.called("select") == [("orders.channel as channel",)]

    def test_renamed_dimension_uses_its_alias(self, builder):
        plan = builder.build(
            [Sum.make("orders.total")],
            [StringDimension.make("orders.status").with_name("state")],
        )
        assert plan.adapter.called("select") == [("orders.status as state",)]
        assert plan.dimension_order == ("state",)

    def test_dimension_filters(self, builder):
        plan = builder.build(
            [Sum.make("orders.total")],
            [
                StringDimension.make("orders.status").only(["paid"]),
                StringDimension.make("customer_id").except_([2]).where(">", 0),
            ],
        )
        adapter = plan.adapter
        assert adapter.called("where_in") == [("orders.status", ["paid"])]
        assert adapter.called("where_not_in") == [("orders.customer_id", [2])]
        assert adapter.called("where") == [("orders.customer_id", ">", 0)]

    def test_explicit_metric_source_pairs(self, builder, registry):
        source = registry.resolve_metric_source("orders.total")
        aggregation = Max.make("orders.total").set_alias("largest")
        plan = builder.build([(source, aggregation)])

        assert plan.metrics["largest"] is source
        assert plan.adapter.called("select_raw") == [('MAX("orders"."total") AS "largest"',)]

    def test_virtual_table_reads_from_subquery(self, recording_driver, compiler):
        sql = "SELECT * FROM orders WHERE total > 10"
        registry = SchemaRegistry().register(ManualSchemaProvider("shop", [
            TableDefinition("big_orders").sql(sql),
        ]))
        builder = QueryPlanBuilder(registry, DriverManager(default=recording_driver), compiler)

        plan = builder.build([Count.make("big_orders.id")])
        assert plan.adapter.called("from_raw") == [(sql, "big_orders")]
        assert plan.adapter.called("from") == []

    def test_no_metrics(self, builder):
        with pytest.raises(NoMetricsError):
            builder.build([], [StringDimension.make("status")])

    def test_plans_get_fresh_ids(self, builder):
        first = builder.build([Sum.make("orders.total")])
        second = builder.build([Sum.make("orders.total")])
        assert first.plan_id != second.plan_id


class TestGranularityValidation:
    """Tests for time granularity checks during planning."""

    def test_unknown_granularity(self, builder):
        with pytest.raises(UnsupportedGranularity):
            builder.build(
                [Sum.make("orders.total")],
                [TimeDimension.make("orders.created_at").set_granularity("fortnight")],
            )

    def test_grammar_without_bucket(self, registry, make_driver, compiler):
        builder = QueryPlanBuilder(registry, DriverManager(default=make_driver(dialect="sqlite")), compiler)
        with pytest.raises(UnsupportedGranularity) as exc:
            builder.build(
                [Sum.make("orders.total")],
                [TimeDimension.make("orders.created_at").set_granularity("minute")],
            )
        assert exc.value.details["grammar"] == "sqlite"

    def test_min_granularity(self, recording_driver, compiler):
        registry = SchemaRegistry().register(ManualSchemaProvider("events", [
            TableDefinition("pageviews").dimension(
                TimeDimension.make("viewed_at").with_meta({"minGranularity": "day"})
            ),
        ]))
        builder = QueryPlanBuilder(registry, DriverManager(default=recording_driver), compiler)

        with pytest.raises(UnsupportedGranularity):
            builder.build([Count.make("pageviews.id")], [TimeDimension.make("pageviews.viewed_at").hourly()])

        plan = builder.build([Count.make("pageviews.id")], [TimeDimension.make("pageviews.viewed_at").monthly()])
        assert plan.adapter.called("group_by_raw") == [("DATE_TRUNC('month', pageviews.viewed_at)",)]


class TestDatabaseJoinPlans:
    """Tests for native multi-table plans."""

    def test_relation_join(self, builder):
        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("customers.country")])

        assert isinstance(plan.join_plan, DatabaseJoinPlan)
        assert [join.key() for join in plan.join_plan] == ["orders->customers"]
        assert list(plan.tables) == ["shop:orders", "shop:customers"]

        adapter = plan.adapter
        assert adapter.called("join") == [("customers", "orders.customer_id", "=", "customers.id", "left")]
        assert adapter.called("select") == [("customers.country as country",)]
        assert adapter.called("group_by") == [("customers.country",)]

    def test_default_join_type(self, registry, recording_driver, compiler):
        builder = QueryPlanBuilder(
            registry, DriverManager(default=recording_driver), compiler, default_join_type="inner",
        )
        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("customers.country")])
        assert plan.adapter.called("join")[0][-1] == "inner"

    def test_dimension_fallback_join(self, recording_driver, compiler):
        registry = SchemaRegistry().register(ManualSchemaProvider("app", [
            TableDefinition("sales").dimension(StringDimension.make("region_code").with_name("region")),
            TableDefinition("visits").dimension(StringDimension.make("region")),
        ]))
        builder = QueryPlanBuilder(registry, DriverManager(default=recording_driver), compiler)

        plan = builder.build(
            [Sum.make("sales.amount"), Count.make("visits.id")],
            [StringDimension.make("region")],
        )
        adapter = plan.adapter
        assert adapter.called("join") == [("visits", "sales.region_code", "=", "visits.region", "inner")]
        assert adapter.called("select") == [("sales.region_code as region",)]
        assert adapter.called("select_raw") == [
            ('SUM("sales"."amount") AS "sum_sales_amount"',),
            ('COUNT("visits"."id") AS "count_visits_id"',),
        ]

    def test_unconnected_tables(self, recording_driver, compiler):
        registry = SchemaRegistry().register(ManualSchemaProvider("app", [
            TableDefinition("sales"),
            TableDefinition("visits"),
        ]))
        builder = QueryPlanBuilder(registry, DriverManager(default=recording_driver), compiler)
        with pytest.raises(JoinPathNotFound):
            builder.build([Sum.make("sales.amount"), Count.make("visits.id")])

    def test_to_dict(self, builder):
        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("customers.country")])
        data = plan.to_dict()

        assert data["planId"] == plan.plan_id
        assert data["metrics"] == {"sum_orders_total": "shop:orders.total"}
        assert data["dimensions"] == ["country"]
        assert data["joinPlan"]["type"] == "database"
        assert data["sql"].startswith("-- recording")


class TestSoftwareJoinPlans:
    """Tests for plans merged in process."""

    def test_cross_connection_plan(self, multi_registry, split_drivers, compiler):
        shop, crm, manager = split_drivers
        builder = QueryPlanBuilder(multi_registry, manager, compiler)

        plan = builder.build(
            [Sum.make("orders.total"), Count.make("tickets.id")],
            [StringDimension.make("customers.country")],
        )

        assert plan.is_software_join()
        assert plan.adapter is None
        software = plan.join_plan
        assert isinstance(software, SoftwareJoinPlan)
        assert software.primary_table == "orders"
        assert list(software.table_plans) == ["orders", "tickets", "customers"]
        assert software.primary_plan().is_primary
        assert not software.table_plan("tickets").is_primary
        assert [(r.key, r.from_alias, r.to_alias) for r in software.relations] == [
            ("orders->customers", "orders__customer_id", "customers__id"),
            ("customers->tickets", "customers__id", "tickets__customer_id"),
        ]
        assert software.join_aliases == ("orders__customer_id", "customers__id", "tickets__customer_id")
        assert software.metric_rollups == {"sum_orders_total": "sum", "count_tickets_id": "sum"}

    def test_same_table_name_on_two_providers(self, make_driver, compiler):
        registry = SchemaRegistry().register(ManualSchemaProvider("shop", [
            TableDefinition("orders")
                .primary_key("id")
                .columns("id", "total")
                .cross_join("archive:orders", "id", "id"),
        ], connection="main")).register(ManualSchemaProvider("archive", [
            TableDefinition("orders").primary_key("id").columns("id", "total"),
        ], connection="cold"))
        shop, archive = make_driver("shop-db"), make_driver("archive-db")
        manager = DriverManager().register("main", shop, provider="shop").register("cold", archive, provider="archive")

        plan = QueryPlanBuilder(registry, manager, compiler).build(
            [Sum.make("shop:orders.total"), Sum.make("archive:orders.total")],
        )
        software = plan.join_plan

        assert list(software.table_plans) == ["shop:orders", "archive:orders"]
        assert software.primary_table == "shop:orders"
        assert [p.is_primary for p in software.table_plans.values()] == [True, False]
        assert [(r.key, r.from_table, r.to_table, r.from_alias, r.to_alias) for r in software.relations] == [
            ("shop:orders->archive:orders", "shop:orders", "archive:orders", "shop_orders__id", "archive_orders__id"),
        ]

        shop_query = software.table_plan("shop:orders").adapter
        archive_query = software.table_plan("archive:orders").adapter
        assert shop_query.driver is shop
        assert archive_query.driver is archive
        assert shop_query.called("select_raw") == [('SUM("orders"."total") AS "sum_shop_orders_total"',)]
        assert archive_query.called("select_raw") == [('SUM("orders"."total") AS "sum_archive_orders_total"',)]

    def test_each_table_uses_its_own_driver(self, multi_registry, split_drivers, compiler):
        shop, crm, manager = split_drivers
        plan = QueryPlanBuilder(multi_registry, manager, compiler).build(
            [Sum.make("orders.total"), Count.make("tickets.id")],
            [StringDimension.make("customers.country")],
        )
        software = plan.join_plan

        orders = software.table_plan("orders").adapter
        customers = software.table_plan("customers").adapter
        tickets = software.table_plan("tickets").adapter

        assert orders.driver is shop
        assert customers.driver is shop
        assert tickets.driver is crm

        assert orders.called("select") == [("orders.customer_id as orders__customer_id",)]
        assert orders.called("group_by") == [("orders.customer_id",)]
        assert orders.called("select_raw") == [('SUM("orders"."total") AS "sum_orders_total"',)]

        assert customers.called("select") == [
            ("customers.country as country",),
            ("customers.id as customers__id",),
        ]
        assert customers.called("select_raw") == []

        assert tickets.called("select") == [("tickets.customer_id as tickets__customer_id",)]
        assert tickets.called("select_raw") == [('COUNT("tickets"."id") AS "count_tickets_id"',)]

        # Per-table queries are never joined or ordered
        for adapter in (orders, customers, tickets):
            assert adapter.called("join") == []
            assert adapter.called("order_by") == []

    def test_avg_is_split_into_partials(self, multi_registry, split_drivers, compiler):
        _, _, manager = split_drivers
        plan = QueryPlanBuilder(multi_registry, manager, compiler).build(
            [Avg.make("orders.total"), Count.make("tickets.id")],
        )
        orders = plan.join_plan.table_plan("orders").adapter

        assert orders.called("select_raw") == [
            ('SUM("orders"."total") AS "avg_orders_total__sum"',),
            ('COUNT("orders"."total") AS "avg_orders_total__count"',),
        ]
        assert plan.join_plan.metric_rollups["avg_orders_total"] == "avg"

    def test_filters_travel_with_the_plan(self, multi_registry, split_drivers, compiler):
        _, _, manager = split_drivers
        plan = QueryPlanBuilder(multi_registry, manager, compiler).build(
            [Sum.make("orders.total"), Count.make("tickets.id")],
            [StringDimension.make("customers.country").except_(["FR"]), StringDimension.make("status")],
        )
        software = plan.join_plan

        assert software.dimension_filters == {"country": {"except": ["FR"]}}
        assert software.dimension_order == ("country", "status")
        assert software.table_plan("customers").adapter.called("where_not_in") == []

    def test_percentile_cannot_be_merged(self, multi_registry, split_drivers, compiler):
        _, _, manager = split_drivers
        with pytest.raises(UnsupportedSoftwareAggregation) as exc:
            QueryPlanBuilder(multi_registry, manager, compiler).build(
                [Percentile.make("orders.total", 0.9), Count.make("tickets.id")],
            )
        assert exc.value.details == {"kind": "percentile", "alias": "percentile_orders_total"}

    def test_driver_without_join_support(self, registry, make_driver, compiler):
        driver = make_driver("flat", supports_joins=False)
        builder = QueryPlanBuilder(registry, DriverManager(default=driver), compiler)

        single = builder.build([Sum.make("orders.total")])
        assert isinstance(single.join_plan, EmptyJoinPlan)

        plan = builder.build([Sum.make("orders.total")], [StringDimension.make("customers.country")])
        assert plan.is_software_join()
        assert list(plan.join_plan.table_plans) == ["orders", "customers"]

    def test_shared_dimension_keys(self, make_driver, compiler):
        registry = (
            SchemaRegistry()
            .register(ManualSchemaProvider("sales", [
                TableDefinition("orders").dimension(StringDimension.make("region_code").with_name("region")),
            ], connection="pg"))
            .register(ManualSchemaProvider("web", [
                TableDefinition("visits").dimension(StringDimension.make("region")),
            ], connection="ch"))
        )
        builder = QueryPlanBuilder(registry, DriverManager(default=make_driver()), compiler)
        plan = builder.build(
            [Sum.make("orders.total"), Count.make("visits.id")],
            [StringDimension.make("region")],
        )
        software = plan.join_plan

        [relation] = software.relations
        assert (relation.from_alias, relation.to_alias, relation.type) == ("region", "region", "inner")
        assert software.join_aliases == ()
        assert software.table_plan("orders").adapter.called("select") == [("orders.region_code as region",)]
        assert software.table_plan("visits").adapter.called("select") == [("visits.region as region",)]

    def test_unkeyed_cross_join(self, make_driver, compiler):
        registry = (
            SchemaRegistry()
            .register(ManualSchemaProvider("a", [TableDefinition("orders").cross_join("b:rates")], connection="one"))
            .register(ManualSchemaProvider("b", [TableDefinition("rates")], connection="two"))
        )
        plan = QueryPlanBuilder(registry, DriverManager(default=make_driver()), compiler).build(
            [Sum.make("orders.total"), Max.make("rates.rate")],
        )
        [relation] = plan.join_plan.relations
        assert (relation.from_alias, relation.to_alias) == ("", "")

    def test_pivot_relation_across_backends(self, make_driver, compiler):
        registry = (
            SchemaRegistry()
            .register(ManualSchemaProvider("shop", [
                TableDefinition("products").belongs_to_many(
                    "tags", "tagging:tags", pivot="product_tag",
                    foreign_pivot_key="product_id", related_pivot_key="tag_id",
                ),
            ], connection="one"))
            .register(ManualSchemaProvider("tagging", [TableDefinition("tags")], connection="two"))
        )
        builder = QueryPlanBuilder(registry, DriverManager(default=make_driver()), compiler)
        with pytest.raises(UnhandledRelationType):
            builder.build([Sum.make("products.price"), Count.make("tags.id")])

    def test_to_dict(self, multi_registry, split_drivers, compiler):
        _, _, manager = split_drivers
        plan = QueryPlanBuilder(multi_registry, manager, compiler).build(
            [Sum.make("orders.total"), Count.make("tickets.id")],
        )
        data = plan.to_dict()

        assert data["sql"] is None
        assert data["joinPlan"]["type"] == "software"
        assert data["joinPlan"]["tablePlans"]["tickets"]["driver"] == "crm-db"
        assert data["joinPlan"]["tablePlans"]["orders"]["isPrimary"] is True


class TestComputedMetricPlans:
    """Tests for computed metrics attached to plans."""

    def test_native_plan_carries_computed_metrics(self, builder):
        aov = Computed.make("sum_orders_total / NULLIF(count_orders_id, 0)").set_alias("aov")
        doubled = Computed.make("aov * 2").set_alias("aov_doubled")

        plan = builder.build([Sum.make("orders.total"), doubled, aov, Count.make("orders.id")])

        assert plan.metric_aliases() == ["sum_orders_total", "count_orders_id"]
        assert plan.computed_aliases() == ["aov", "aov_doubled"]
        assert [(c.level, c.strategy) for c in plan.computed] == [(1, "database"), (2, "database")]
        assert plan.adapter.called("select_raw") == [
            ('SUM("orders"."total") AS "sum_orders_total"',),
            ('COUNT("orders"."id") AS "count_orders_id"',),
        ]
        assert plan.to_dict()["computed"][0] == {
            "alias": "aov",
            "expression": "sum_orders_total / NULLIF(count_orders_id, 0)",
            "dependencies": ["sum_orders_total", "count_orders_id"],
            "level": 1,
            "strategy": "database",
        }

    def test_cross_table_computed_is_software(self, multi_registry, split_drivers, compiler):
        _, _, manager = split_drivers
        per_ticket = Computed.make("sum_orders_total / count_tickets_id").set_alias("per_ticket")

        plan = QueryPlanBuilder(multi_registry, manager, compiler).build(
            [Sum.make("orders.total"), Count.make("tickets.id"), per_ticket],
        )

        assert plan.is_software_join()
        assert plan.join_plan.metric_aliases == ("sum_orders_total", "count_tickets_id")
        [computed] = plan.computed
        assert (computed.alias, computed.level, computed.strategy) == ("per_ticket", 1, "software")

    def test_declared_table_is_resolved(self, builder):
        scaled = Computed.make("sum_orders_total * 2").for_table("customers").set_alias("scaled")
        plan = builder.build([Sum.make("orders.total"), scaled])
        assert plan.computed[0].strategy == "software"

    def test_unknown_dependency(self, builder):
        with pytest.raises(UnknownMetricDependency) as exc:
            builder.build([Sum.make("orders.total"), Computed.make("sum_orders_total / refunds").set_alias("r")])
        assert exc.value.details == {
            "metric": "r",
            "dependency": "refunds",
            "available": ["sum_orders_total", "r"],
        }

    def test_cycle(self, builder):
        a = Computed.make("b + sum_orders_total").set_alias("a")
        b = Computed.make("a + 1").set_alias("b")
        with pytest.raises(CircularDependency):
            builder.build([Sum.make("orders.total"), a, b])

    def test_computed_alone_is_not_a_query(self, builder):
        with pytest.raises(NoMetricsError):
            builder.build([Computed.make("1 + 1")])
