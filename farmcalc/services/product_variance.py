"""
Product Variance Service.

Plan vs invoiced actual per product for a season. Invoiced quantities are
converted into the planned unit (ton <-> lbs only); anything else is flagged
as a unit mismatch instead of being compared. The same goes for a product
planned in units that cannot be merged, and a price-book entry whose unit
cannot be expressed per the planned unit is flagged as a price unit mismatch.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from farmcalc.services.farm_models import Invoice, PriceBookEntry, Product, Season
from farmcalc.services.price_book import resolve_planned_unit_price
from farmcalc.services.units import convert_qty, to_num
from farmcalc.services.usage_aggregator import aggregate_usage

logger = logging.getLogger(__name__)


@dataclass
class ProductVarianceFlags:
    missing_planned_price: bool = False
    price_unit_mismatch: bool = False
    unit_mismatch: bool = False
    no_invoices: bool = False


@dataclass
class ProductVarianceRow:
    product_id: str
    product_name: str
    planned_qty: float
    planned_unit: str
    planned_unit_price: Optional[float]
    planned_cost: Optional[float]
    planned_price_source: Optional[str]
    actual_qty: float
    actual_unit_cost: Optional[float]
    actual_cost: float
    variance: Optional[float]
    variance_pct: Optional[float]
    flags: ProductVarianceFlags = field(default_factory=ProductVarianceFlags)


@dataclass
class ProductVarianceCoverage:
    total_products_in_plan: int = 0
    with_invoices: int = 0
    with_planned_price: int = 0
    computed: int = 0
    unit_mismatch: int = 0


@dataclass
class ProductVarianceSummary:
    planned_total: float = 0.0
    actual_total: float = 0.0
    variance_total: float = 0.0
    rows: List[ProductVarianceRow] = field(default_factory=list)
    coverage: ProductVarianceCoverage = field(default_factory=ProductVarianceCoverage)


@dataclass
class _InvoicedProduct:
    cost: float = 0.0
    qty: float = 0.0
    lines: List[Tuple[float, Optional[str]]] = field(default_factory=list)

    def qty_in(self, unit: str) -> Optional[float]:
        """Invoiced quantity in `unit`; None if any line is not convertible."""
        total = 0.0
        for qty, line_unit in self.lines:
            converted = convert_qty(qty, line_unit, unit)
            if converted is None:
                return None
            total += converted
        return total


def compute_product_variance(
    season: Optional[Season],
    products: List[Product],
    invoices: List[Invoice],
    price_book: List[PriceBookEntry],
) -> ProductVarianceSummary:
    if season is None:
        return ProductVarianceSummary()

    names = {p.id: p.name for p in products or []}

    # merge usage lines per product into the first line's unit; a line that
    # cannot be merged leaves the product without a comparable plan
    planned: Dict[str, Dict] = {}
    for pu in aggregate_usage(season, products):
        entry = planned.get(pu.product_id)
        if entry is None:
            planned[pu.product_id] = {"qty": to_num(pu.total_needed), "unit": pu.unit, "unmerged": []}
            continue
        converted = convert_qty(pu.total_needed, pu.unit, entry["unit"])
        if converted is None:
            logger.debug(f"Planned {pu.product_id} in {pu.unit} cannot be merged into {entry['unit']}")
            entry["unmerged"].append(pu.unit)
            continue
        entry["qty"] += converted

    invoiced: Dict[str, _InvoicedProduct] = {}
    for invoice in invoices or []:
        if invoice.season_year != season.year:
            continue
        for li in invoice.line_items:
            if not li.product_id:
                continue
            qty = to_num(li.quantity)
            acc = invoiced.setdefault(li.product_id, _InvoicedProduct())
            acc.cost += to_num(li.landed_total) or to_num(li.landed_unit_cost) * qty
            acc.qty += qty
            acc.lines.append((qty, li.unit))

    summary = ProductVarianceSummary()
    coverage = summary.coverage
    coverage.total_products_in_plan = len(planned)

    for product_id, p in planned.items():
        resolved = resolve_planned_unit_price(product_id, season.year, p["unit"], price_book)
        unit_price = resolved.unit_price
        flags = ProductVarianceFlags(
            missing_planned_price=resolved.entry is None,
            price_unit_mismatch=resolved.entry is not None and unit_price is None,
            unit_mismatch=bool(p["unmerged"]),
        )
        if resolved.entry is not None:
            coverage.with_planned_price += 1

        planned_cost = None
        if unit_price is not None and not p["unmerged"]:
            planned_cost = p["qty"] * unit_price

        actual = invoiced.get(product_id)
        has_invoices = actual is not None and actual.cost > 0 and actual.qty > 0
        actual_qty = 0.0
        actual_unit_cost = None

        if has_invoices:
            coverage.with_invoices += 1
            converted = actual.qty_in(p["unit"])
            if converted is None:
                flags.unit_mismatch = True
            else:
                actual_qty = converted
                actual_unit_cost = actual.cost / converted if converted > 0 else None
        else:
            flags.no_invoices = True
        if flags.unit_mismatch:
            coverage.unit_mismatch += 1

        actual_cost = actual.cost if has_invoices else 0.0

        variance = variance_pct = None
        if planned_cost is not None and has_invoices and actual_unit_cost is not None:
            variance = actual_cost - planned_cost
            variance_pct = variance / planned_cost * 100 if planned_cost > 0 else None
            coverage.computed += 1
        if planned_cost is not None:
            summary.planned_total += planned_cost
        summary.actual_total += actual_cost

        summary.rows.append(ProductVarianceRow(
            product_id=product_id,
            product_name=names.get(product_id) or "Unknown product",
            planned_qty=p["qty"],
            planned_unit=p["unit"],
            planned_unit_price=unit_price,
            planned_cost=planned_cost,
            planned_price_source=resolved.entry.source if resolved.entry else None,
            actual_qty=actual_qty,
            actual_unit_cost=actual_unit_cost,
            actual_cost=actual_cost,
            variance=variance,
            variance_pct=variance_pct,
            flags=flags,
        ))

    summary.rows.sort(key=lambda r: abs(r.variance or 0), reverse=True)
    summary.variance_total = summary.actual_total - summary.planned_total
    return summary
