"""
Tests for product-level plan vs invoiced variance.
"""
import copy
import pytest
from farmcalc.services.farm_models import (
    Application,
    ApplicationTiming,
    Crop,
    Invoice,
    InvoiceLineItem,
    PriceBookEntry,
    Product,
    Season,
)
from farmcalc.services.product_variance import compute_product_variance

PRODUCTS = [
    Product(id="uan", name="UAN 32"),
    Product(id="urea", name="Urea", form="dry"),
    Product(id="zn", name="Zinc"),
]


def make_season():
    corn = Crop(
        id="c1", name="Corn", total_acres=100,
        application_timings=[ApplicationTiming(id="t1", name="Pre")],
        applications=[
            Application(id="a1", timing_id="t1", product_id="uan", rate=10, rate_unit="gal/ac"),
            Application(id="a2", timing_id="t1", product_id="urea", rate=100, rate_unit="lbs/ac"),
        ],
    )
    return Season(id="s1", year=2025, crops=[corn])


PRICE_BOOK = [
    PriceBookEntry(id="e1", product_id="uan", season_year=2025, price=2.0, price_uom="gal", source="manual"),
    PriceBookEntry(id="e2", product_id="urea", season_year=2025, price=600.0, price_uom="ton", source="awarded"),
]


def line(product_id, qty, unit, total, line_id="l1"):
    return InvoiceLineItem(id=line_id, product_id=product_id, quantity=qty, unit=unit, landed_total=total)


def row_for(summary, product_id):
    return next(r for r in summary.rows if r.product_id == product_id)


class TestProductVariance:
    """Tests for compute_product_variance()."""

    def test_same_unit_variance(self):
        invoices = [Invoice(id="i1", season_year=2025, line_items=[line("uan", 1000, "gal", 2200)])]
        row = row_for(compute_product_variance(make_season(), PRODUCTS, invoices, PRICE_BOOK), "uan")
        assert row.planned_qty == pytest.approx(1000)
        assert row.planned_cost == pytest.approx(2000)
        assert row.actual_unit_cost == pytest.approx(2.2)
        assert row.variance == pytest.approx(200)
        assert row.variance_pct == pytest.approx(10)
        assert row.planned_price_source == "manual"

    def test_tons_invoiced_against_lbs_plan(self):
        invoices = [Invoice(id="i1", season_year=2025, line_items=[line("urea", 5, "ton", 3100)])]
        row = row_for(compute_product_variance(make_season(), PRODUCTS, invoices, PRICE_BOOK), "urea")
        # plan 10,000 lbs at $0.30/lb
        assert row.planned_unit == "lbs"
        assert row.planned_cost == pytest.approx(3000)
        assert row.actual_qty == pytest.approx(10000)
        assert row.actual_unit_cost == pytest.approx(0.31)
        assert row.variance == pytest.approx(100)

    def test_unit_mismatch_flagged_not_compared(self):
        invoices = [Invoice(id="i1", season_year=2025, line_items=[line("uan", 900, "lbs", 2000)])]
        summary = compute_product_variance(make_season(), PRODUCTS, invoices, PRICE_BOOK)
        row = row_for(summary, "uan")
        assert row.flags.unit_mismatch
        assert row.variance is None
        assert row.actual_cost == pytest.approx(2000)
        assert summary.coverage.unit_mismatch == 1

    def test_no_invoices(self):
        summary = compute_product_variance(make_season(), PRODUCTS, [], PRICE_BOOK)
        assert all(r.flags.no_invoices for r in summary.rows)
        assert all(r.variance is None for r in summary.rows)
        assert summary.coverage.with_invoices == 0
        assert summary.planned_total == pytest.approx(5000)

    def test_missing_price(self):
        season = make_season()
        season.crops[0].applications.append(
            Application(id="a3", timing_id="t1", product_id="zn", rate=1, rate_unit="qt/ac"))
        summary = compute_product_variance(season, PRODUCTS, [], PRICE_BOOK)
        row = row_for(summary, "zn")
        assert row.flags.missing_planned_price
        assert row.planned_cost is None
        assert summary.coverage.with_planned_price == 2
        assert summary.coverage.total_products_in_plan == 3

    def test_plan_lines_merged_into_first_unit(self):
        season = make_season()
        season.crops[0].applications.append(
            Application(id="a3", timing_id="t1", product_id="urea", rate=0.01, rate_unit="ton/ac"))
        row = row_for(compute_product_variance(season, PRODUCTS, [], PRICE_BOOK), "urea")
        assert row.planned_unit == "lbs"
        assert row.planned_qty == pytest.approx(10000 + 2000)

    def test_coverage_and_totals(self):
        invoices = [Invoice(id="i1", season_year=2025, line_items=[
            line("uan", 1000, "gal", 2200, "l1"),
            line("urea", 5, "ton", 3100, "l2"),
        ])]
        summary = compute_product_variance(make_season(), PRODUCTS, invoices, PRICE_BOOK)
        assert summary.coverage.computed == 2
        assert summary.actual_total == pytest.approx(5300)
        assert summary.variance_total == pytest.approx(300)
        assert [r.product_id for r in summary.rows] == ["uan", "urea"]

    def test_none_season(self):
        assert compute_product_variance(None, PRODUCTS, [], PRICE_BOOK).rows == []


class TestPlanUnits:
    """Plans and prices that cannot be expressed in one unit."""

    def test_unmergeable_plan_line_flagged(self):
        season = make_season()
        season.crops[0].applications = [
            Application(id="a1", timing_id="t1", product_id="uan", rate=2, rate_unit="gal/ac"),
            Application(id="a2", timing_id="t1", product_id="uan", rate=32, rate_unit="oz/ac"),
        ]
        summary = compute_product_variance(season, PRODUCTS, [], PRICE_BOOK)
        row = row_for(summary, "uan")
        assert row.flags.unit_mismatch
        assert row.planned_cost is None
        assert row.planned_qty == pytest.approx(200)
        assert summary.coverage.unit_mismatch == 1
        assert summary.planned_total == 0

    def test_price_unit_not_convertible(self):
        season = make_season()
        season.crops[0].applications[1].rate_unit = "gal/ac"
        row = row_for(compute_product_variance(season, PRODUCTS, [], PRICE_BOOK), "urea")
        assert row.flags.price_unit_mismatch
        assert not row.flags.missing_planned_price
        assert row.planned_unit_price is None
        assert row.planned_cost is None
        assert row.planned_price_source == "awarded"

    def test_price_without_unit_not_used(self):
        book = [PriceBookEntry(id="e1", product_id="uan", season_year=2025, price=10.0, price_uom="", source="manual")]
        row = row_for(compute_product_variance(make_season(), PRODUCTS, [], book), "uan")
        assert row.planned_cost is None
        assert row.flags.price_unit_mismatch


class TestPurity:

    def test_idempotent_and_inputs_untouched(self):
        season = make_season()
        invoices = [Invoice(id="i1", season_year=2025, line_items=[
            line("uan", 1000, "gal", 2200, "l1"),
            line("urea", 5, "ton", 3100, "l2"),
        ])]
        book = list(PRICE_BOOK)
        before = copy.deepcopy((season, invoices, book))

        first = compute_product_variance(season, PRODUCTS, invoices, book)
        second = compute_product_variance(season, PRODUCTS, invoices, book)

        assert first == second
        assert (season, invoices, book) == before
