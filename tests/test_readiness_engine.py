"""
Tests for the readiness engine (on hand vs on order vs required).
"""
import pytest
from farmcalc.services.farm_models import (
    Application,
    ApplicationTiming,
    Crop,
    InventoryItem,
    Order,
    OrderLineItem,
    Product,
    Season,
    SimplePurchase,
    SimplePurchaseLine,
)
from farmcalc.services.readiness_engine import (
    OpenOrder,
    PlannedRequirement,
    ReadinessStatus,
    RemainingLine,
    calculate_readiness_summary,
    compute_readiness,
    is_order_open,
    open_order_from_order,
    open_order_from_purchase,
    requirements_from_usage,
)
from farmcalc.services.usage_aggregator import aggregate_usage


def req(product_id, qty, unit="gal", req_id=None):
    return PlannedRequirement(
        id=req_id or product_id, label=product_id.upper(), product_id=product_id,
        required_qty=qty, planned_unit=unit,
    )


class TestClassification:
    """READY / ON_ORDER / BLOCKING thresholds."""

    def test_ready_when_on_hand_covers(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=60, unit="gal"),
                     InventoryItem(id="i2", product_id="p1", quantity=40, unit="gal")]
        result = compute_readiness([req("p1", 100)], inventory, [])
        item = result.items[0]
        assert item.status == ReadinessStatus.READY
        assert item.on_hand_qty == pytest.approx(100)
        assert item.short_qty == 0
        assert len(item.explain.inventory_rows) == 2

    def test_on_order_when_combined_covers(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=30, unit="gal")]
        orders = [OpenOrder(order_id="o1", status="ordered",
                            lines=[RemainingLine(product_id="p1", remaining_qty=70, unit="gal")])]
        item = compute_readiness([req("p1", 100)], inventory, orders).items[0]
        assert item.status == ReadinessStatus.ON_ORDER
        assert item.on_order_qty == pytest.approx(70)
        assert item.short_qty == 0

    def test_blocking_with_nothing_available(self):
        item = compute_readiness([req("p1", 100)], [], []).items[0]
        assert item.status == ReadinessStatus.BLOCKING
        assert item.short_qty == pytest.approx(100)

    def test_no_blocking_when_everything_on_hand(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=100, unit="gal"),
                     InventoryItem(id="i2", product_id="p2", quantity=5, unit="gal")]
        result = compute_readiness([req("p1", 100), req("p2", 5)], inventory, [])
        assert result.blocking_count == 0
        assert result.ready_count == 2
        assert result.ready_pct == pytest.approx(100)

    def test_counts_and_empty_pct(self):
        empty = compute_readiness([], [], [])
        assert empty.total_count == 0
        assert empty.ready_pct == 0


class TestOrdersAndUnits:
    """Order status handling and unit matching."""

    @pytest.mark.parametrize("order_status", ["closed", "Cancelled", "CANCELED", "received", "complete", "delivered"])
    def test_closed_orders_ignored(self, order_status):
        orders = [OpenOrder(order_id="o1", status=order_status,
                            lines=[RemainingLine(product_id="p1", remaining_qty=100, unit="gal")])]
        item = compute_readiness([req("p1", 100)], [], orders).items[0]
        assert item.on_order_qty == 0
        assert item.status == ReadinessStatus.BLOCKING

    def test_missing_status_is_open(self):
        assert is_order_open(None)
        assert is_order_open("partial")

    def test_container_count_fallback(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=None, unit="gal", container_count=4)]
        item = compute_readiness([req("p1", 4)], inventory, []).items[0]
        assert item.status == ReadinessStatus.READY

    def test_ton_converted_to_lbs(self):
        inventory = [InventoryItem(id="i1", product_id="urea", quantity=1, unit="ton")]
        item = compute_readiness([req("urea", 1500, unit="lbs")], inventory, []).items[0]
        assert item.on_hand_qty == pytest.approx(2000)
        assert item.status == ReadinessStatus.READY

    def test_incomparable_unit_skipped_and_explained(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=500, unit="lbs")]
        orders = [OpenOrder(order_id="o1", lines=[RemainingLine(product_id="p1", remaining_qty=50, unit="oz")])]
        item = compute_readiness([req("p1", 100)], inventory, orders).items[0]
        assert item.on_hand_qty == 0
        assert item.on_order_qty == 0
        assert [r.id for r in item.explain.skipped_inventory_rows] == ["i1"]
        assert [line.order_id for line in item.explain.skipped_order_lines] == ["o1"]

    def test_unitless_rows_count(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=100)]
        item = compute_readiness([req("p1", 100)], inventory, []).items[0]
        assert item.status == ReadinessStatus.READY


class TestAdapters:

    def test_order_remaining_falls_back_to_ordered_minus_received(self):
        order = Order(id="o1", status="partial", vendor_name="Co-op", line_items=[
            OrderLineItem(id="l1", product_id="p1", ordered_quantity=100, received_quantity=40, unit="gal"),
            OrderLineItem(id="l2", product_id="p2", ordered_quantity=10, remaining_quantity=3, unit="gal"),
        ])
        open_order = open_order_from_order(order)
        assert [line.remaining_qty for line in open_order.lines] == [60, 3]
        assert open_order.vendor_name == "Co-op"

    def test_purchase_quantity_times_package(self):
        purchase = SimplePurchase(id="sp1", season_id="s", status="ordered", lines=[
            SimplePurchaseLine(id="l1", product_id="p1", quantity=4, package_size=2.5, package_unit="gal"),
            SimplePurchaseLine(id="l2", product_id="p2", quantity=1, total_quantity=30, normalized_unit="lbs"),
        ])
        open_order = open_order_from_purchase(purchase)
        assert open_order.lines[0].remaining_qty == pytest.approx(10)
        assert open_order.lines[1].unit == "lbs"
        assert is_order_open(open_order.status)

    def test_received_purchase_is_closed(self):
        purchase = SimplePurchase(id="sp1", season_id="s", status="received", lines=[
            SimplePurchaseLine(id="l1", product_id="p1", quantity=4, package_size=2.5, package_unit="gal"),
        ])
        item = compute_readiness([req("p1", 10)], [], [open_order_from_purchase(purchase)]).items[0]
        assert item.status == ReadinessStatus.BLOCKING


def make_season():
    crop = Crop(
        id="c1", name="Corn", total_acres=100,
        application_timings=[ApplicationTiming(id="t1", name="Planting")],
        applications=[
            Application(id="a1", timing_id="t1", product_id="p1", rate=2, rate_unit="gal/ac"),
            Application(id="a2", timing_id="t1", product_id="p2", rate=1, rate_unit="gal/ac"),
        ],
    )
    return Season(id="s1", year=2025, crops=[crop])


PRODUCTS = [Product(id="p1", name="Starter", price=5.0), Product(id="p2", name="Micro", price=10.0)]


class TestSummary:
    """Dashboard roll-up via calculate_readiness_summary()."""

    def test_requirements_from_usage_labels(self):
        requirements = requirements_from_usage(aggregate_usage(make_season(), PRODUCTS), PRODUCTS)
        assert [r.label for r in requirements] == ["Starter", "Micro"]
        assert requirements[0].crop == "Corn"
        assert requirements[0].pass_name == "Planting"
        assert requirements[0].required_qty == pytest.approx(200)

    def test_value_metrics(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=200, unit="gal")]
        purchases = [
            SimplePurchase(id="sp1", season_id="s1", status="ordered", lines=[
                SimplePurchaseLine(id="l1", product_id="p2", quantity=50, package_size=1,
                                   package_unit="gal", total_price=450.0),
            ]),
            SimplePurchase(id="sp2", season_id="other", status="ordered", lines=[
                SimplePurchaseLine(id="l2", product_id="p2", quantity=50, package_size=1,
                                   package_unit="gal", total_price=999.0),
            ]),
        ]
        summary = calculate_readiness_summary(make_season(), PRODUCTS, inventory, purchases)
        assert summary.total_products == 2
        assert summary.ready_count == 1
        assert summary.blocking_count == 1
        assert summary.on_hand_value == pytest.approx(1000)
        assert summary.on_order_value == pytest.approx(450)
        assert summary.planned_value == pytest.approx(2000)
        assert summary.short_value == pytest.approx(550)
        assert summary.coverage_pct == pytest.approx(72.5)
        assert summary.on_order_qty_total == pytest.approx(50)

    def test_on_order_value_counted_once_per_product(self):
        season = make_season()
        season.crops[0].applications[1] = Application(
            id="a2", timing_id="t1", product_id="p1", rate=32, rate_unit="oz/ac")
        purchases = [
            SimplePurchase(id="sp1", season_id="s1", status="ordered", lines=[
                SimplePurchaseLine(id="l1", product_id="p1", quantity=10, package_size=1,
                                   package_unit="gal", total_price=500.0),
            ]),
        ]
        summary = calculate_readiness_summary(season, PRODUCTS, [], purchases)
        assert summary.total_products == 2
        assert summary.on_order_value == pytest.approx(500)

    def test_idempotent(self):
        inventory = [InventoryItem(id="i1", product_id="p1", quantity=10, unit="gal")]
        requirements = [req("p1", 100)]
        assert compute_readiness(requirements, inventory, []) == compute_readiness(requirements, inventory, [])
