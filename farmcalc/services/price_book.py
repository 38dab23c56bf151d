"""
Planned-price resolution from the price book.

Planned prices rank manual_override > manual > awarded > estimated > other.
Invoice-sourced entries are never used for the planned baseline, even when
they are the only entry for a product and season.
"""
from dataclasses import dataclass
from typing import List, Optional
import logging

from farmcalc.services.farm_models import PriceBookEntry
from farmcalc.services.planning_rules import (
    INVOICE_PRICE_SOURCE,
    PLANNED_PRICE_SOURCE_RANK,
    UNRANKED_SOURCE,
)
from farmcalc.services.units import convert_price_to_unit

logger = logging.getLogger(__name__)


@dataclass
class PlannedPrice:
    entry: Optional[PriceBookEntry]
    unit_price: Optional[float]


def source_rank(source: Optional[str]) -> int:
    return PLANNED_PRICE_SOURCE_RANK.get(source or "", UNRANKED_SOURCE)


def get_planned_price_entry(
    product_id: str,
    season_year: Optional[int],
    price_book: List[PriceBookEntry],
) -> Optional[PriceBookEntry]:
    candidates = [
        e for e in price_book or []
        if e.season_year == season_year
        and e.product_id == product_id
        and e.source != INVOICE_PRICE_SOURCE
    ]
    if not candidates:
        return None
    # sorted() is stable: equal ranks keep price-book order
    return sorted(candidates, key=lambda e: source_rank(e.source))[0]


def resolve_planned_unit_price(
    product_id: str,
    season_year: Optional[int],
    target_unit: Optional[str],
    price_book: List[PriceBookEntry],
) -> PlannedPrice:
    """
    Planned price per `target_unit`.

    `unit_price` is None when there is no entry, the entry has no price
    unit, or the units are not convertible.
    """
    entry = get_planned_price_entry(product_id, season_year, price_book)
    if entry is None:
        return PlannedPrice(entry=None, unit_price=None)

    unit_price = convert_price_to_unit(entry.price, entry.price_uom, target_unit)
    if unit_price is None:
        logger.debug(
            f"Planned price for {product_id} in {entry.price_uom} cannot be expressed per {target_unit}"
        )
    return PlannedPrice(entry=entry, unit_price=unit_price)
