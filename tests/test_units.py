"""
Tests for unit normalization, conversion and planned-price resolution.
"""
import math
import pytest
from farmcalc.services.units import (
    to_num,
    to_non_negative,
    normalize_uom,
    quantity_unit,
    convert_qty,
    convert_price_to_unit,
    normalize_rate_unit,
    rate_units_match,
)
from farmcalc.services.farm_models import PriceBookEntry
from farmcalc.services.price_book import get_planned_price_entry, resolve_planned_unit_price


class TestToNum:
    """Non-finite and non-numeric inputs coerce to 0."""

    @pytest.mark.parametrize("value", [None, "abc", float("nan"), float("inf"), -math.inf, True, [1]])
    def test_bad_values_become_zero(self, value):
        assert to_num(value) == 0.0

    def test_numeric_strings_parse(self):
        assert to_num("2.5") == 2.5

    def test_negatives_clamped_only_by_non_negative(self):
        assert to_num(-3) == -3.0
        assert to_non_negative(-3) == 0.0


class TestNormalizeUom:

    @pytest.mark.parametrize("raw,expected", [
        ("lb", "lbs"), ("Pounds", "lbs"), ("TONS", "ton"),
        ("gallon", "gal"), (" gal ", "gal"), ("oz", "oz"), (None, ""),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_uom(raw) == expected

    def test_quantity_unit_from_rate_unit(self):
        assert quantity_unit("gal/ac") == "gal"
        assert quantity_unit("lbs/ac") == "lbs"
        assert quantity_unit("oz") == "oz"
        assert quantity_unit("") == ""


class TestConversions:
    """Only identical units and ton <-> lbs are comparable."""

    def test_ton_to_lbs(self):
        assert convert_qty(2, "ton", "lbs") == pytest.approx(4000)
        assert convert_qty(1000, "lb", "tons") == pytest.approx(0.5)

    def test_same_unit_after_aliasing(self):
        assert convert_qty(5, "gallons", "gal") == 5

    def test_gal_to_lbs_not_comparable(self):
        assert convert_qty(5, "gal", "lbs") is None

    def test_price_per_ton_to_per_lb(self):
        assert convert_price_to_unit(600, "ton", "lbs") == pytest.approx(0.3)
        assert convert_price_to_unit(0.3, "lbs", "ton") == pytest.approx(600)

    def test_price_conversion_gives_up(self):
        assert convert_price_to_unit(0, "gal", "gal") is None
        assert convert_price_to_unit(10, None, "gal") is None
        assert convert_price_to_unit(10, "gal", "lbs") is None


class TestRateUnits:

    @pytest.mark.parametrize("raw,expected", [
        ("fl oz/acre", "oz/ac"),
        ("oz/ac", "oz/ac"),
        ("pt/A", "pt/a"),
        ("Pt/Ac", "pt/ac"),
        ("qt/acre", "qt/ac"),
        ("gal/ac", "gal/ac"),
        ("lbs/acre", "lb/ac"),
        ("lb ai/ac", "lb ai/ac"),
        ("lb ai/A", "lb ai/ac"),
    ])
    def test_normalize_rate_unit(self, raw, expected):
        assert normalize_rate_unit(raw) == expected

    def test_match(self):
        assert rate_units_match("fl oz/acre", "oz/ac")
        assert not rate_units_match("oz/ac", "pt/ac")


PRICE_BOOK = [
    PriceBookEntry(id="e1", product_id="p1", season_year=2025, price=12.0, price_uom="gal", source="estimated"),
    PriceBookEntry(id="e2", product_id="p1", season_year=2025, price=10.0, price_uom="gal", source="awarded"),
    PriceBookEntry(id="e3", product_id="p1", season_year=2025, price=9.0, price_uom="gal", source="invoice"),
    PriceBookEntry(id="e4", product_id="p1", season_year=2024, price=8.0, price_uom="gal", source="manual"),
    PriceBookEntry(id="e5", product_id="p2", season_year=2025, price=7.5, price_uom="gal", source="invoice"),
    PriceBookEntry(id="e6", product_id="p3", season_year=2025, price=500.0, price_uom="ton", source="manual"),
]


class TestPlannedPrice:
    """Planned-price ranking never uses invoice-sourced entries."""

    def test_best_rank_wins(self):
        entry = get_planned_price_entry("p1", 2025, PRICE_BOOK)
        assert entry.id == "e2"

    def test_manual_override_beats_all(self):
        book = PRICE_BOOK + [
            PriceBookEntry(id="e7", product_id="p1", season_year=2025, price=11.0, price_uom="gal", source="manual_override"),
        ]
        assert get_planned_price_entry("p1", 2025, book).id == "e7"

    def test_invoice_only_entry_is_never_selected(self):
        assert get_planned_price_entry("p2", 2025, PRICE_BOOK) is None
        assert resolve_planned_unit_price("p2", 2025, "gal", PRICE_BOOK).unit_price is None

    def test_other_season_ignored(self):
        assert get_planned_price_entry("p1", 2023, PRICE_BOOK) is None

    def test_price_converted_to_planned_unit(self):
        resolved = resolve_planned_unit_price("p3", 2025, "lbs", PRICE_BOOK)
        assert resolved.entry.id == "e6"
        assert resolved.unit_price == pytest.approx(0.25)

    def test_unconvertible_price_is_none(self):
        resolved = resolve_planned_unit_price("p3", 2025, "gal", PRICE_BOOK)
        assert resolved.entry is not None
        assert resolved.unit_price is None

    def test_entry_without_price_unit_is_not_usable(self):
        book = [PriceBookEntry(id="e9", product_id="p9", season_year=2025, price=10.0, price_uom="", source="manual")]
        resolved = resolve_planned_unit_price("p9", 2025, "gal", book)
        assert resolved.entry.id == "e9"
        assert resolved.unit_price is None
