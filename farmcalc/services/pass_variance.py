"""
Pass Variance Service (cost allocation by crop pass).

Invoiced cost is recorded per product, not per pass. Each product's planned
and actual cost is spread over the (crop, timing) passes that use it, in
proportion to that pass's share of the product's planned quantity:

    share = pass quantity / product planned quantity
    planned_cost(pass) += planned unit price x product quantity x share
    actual_cost_allocated(pass) += invoiced landed cost x share

A pass touched by a product with no usable planned price has no planned
cost baseline at all (None), so its variance is None too.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from farmcalc.services.farm_models import Invoice, PriceBookEntry, Product, Season
from farmcalc.services.price_book import resolve_planned_unit_price
from farmcalc.services.units import to_num
from farmcalc.services.usage_aggregator import aggregate_usage

logger = logging.getLogger(__name__)


@dataclass
class PassVarianceFlags:
    missing_planned_price: bool = False
    no_invoices: bool = False


@dataclass
class PassVarianceRow:
    crop_name: str
    timing_name: str
    planned_cost: Optional[float] = 0.0
    actual_cost_allocated: float = 0.0
    variance: Optional[float] = None
    variance_pct: Optional[float] = None
    flags: PassVarianceFlags = field(default_factory=PassVarianceFlags)


@dataclass
class PassVarianceSummary:
    planned_total: float = 0.0
    actual_total_allocated: float = 0.0
    variance_total: float = 0.0
    rows: List[PassVarianceRow] = field(default_factory=list)


def invoiced_cost_by_product(invoices: List[Invoice], season_year: int) -> Dict[str, float]:
    """Landed cost per product for the season (landed_total, else unit cost x qty)."""
    costs: Dict[str, float] = {}
    for invoice in invoices or []:
        if invoice.season_year != season_year:
            continue
        for li in invoice.line_items:
            if not li.product_id:
                continue
            landed = to_num(li.landed_total) or to_num(li.landed_unit_cost) * to_num(li.quantity)
            costs[li.product_id] = costs.get(li.product_id, 0.0) + landed
    return costs


def compute_pass_variance(
    season: Optional[Season],
    products: List[Product],
    invoices: List[Invoice],
    price_book: List[PriceBookEntry],
) -> PassVarianceSummary:
    if season is None:
        return PassVarianceSummary()

    usage = aggregate_usage(season, products)
    actual_by_product = invoiced_cost_by_product(invoices, season.year)

    # a product planned in two units has two usage lines; its invoiced cost
    # is split evenly between them
    lines_per_product: Dict[str, int] = {}
    for pu in usage:
        lines_per_product[pu.product_id] = lines_per_product.get(pu.product_id, 0) + 1

    pass_map: Dict[Tuple[str, str], PassVarianceRow] = {}
    planned_total = 0.0
    actual_total_allocated = 0.0

    for pu in usage:
        total_qty = to_num(pu.total_needed)
        unit_price = resolve_planned_unit_price(pu.product_id, season.year, pu.unit, price_book).unit_price
        planned_cost_product = total_qty * unit_price if unit_price is not None else None
        if planned_cost_product is None:
            logger.debug(f"No usable planned price for {pu.product_id} per {pu.unit}")

        actual_cost_product = actual_by_product.get(pu.product_id, 0.0) / lines_per_product[pu.product_id]
        has_invoices = actual_cost_product > 0

        for u in pu.usages:
            key = (u.crop_name, u.timing_name)
            row = pass_map.get(key)
            if row is None:
                row = PassVarianceRow(crop_name=u.crop_name, timing_name=u.timing_name)
                pass_map[key] = row

            share = to_num(u.quantity_needed) / total_qty if total_qty > 0 else 0.0

            if planned_cost_product is not None:
                planned_this_pass = planned_cost_product * share
                planned_total += planned_this_pass
                if row.planned_cost is not None:
                    row.planned_cost += planned_this_pass
            else:
                row.flags.missing_planned_price = True
                row.planned_cost = None

            if has_invoices:
                actual_this_pass = actual_cost_product * share
                row.actual_cost_allocated += actual_this_pass
                actual_total_allocated += actual_this_pass
            else:
                row.flags.no_invoices = True

    rows = list(pass_map.values())
    for row in rows:
        if row.planned_cost is None:
            row.variance = None
            row.variance_pct = None
            continue
        row.variance = row.actual_cost_allocated - row.planned_cost
        row.variance_pct = row.variance / row.planned_cost * 100 if row.planned_cost > 0 else None

    rows.sort(key=lambda r: abs(r.variance or 0), reverse=True)

    return PassVarianceSummary(
        planned_total=planned_total,
        actual_total_allocated=actual_total_allocated,
        variance_total=actual_total_allocated - planned_total,
        rows=rows,
    )
