"""
Unit normalization and conversion shared by every planning engine.

Only exact matches and the ton <-> lbs pair are considered comparable.
Anything else (gal <-> lbs without a density, containers, oz vs gal) is
reported as "not comparable" (None) so callers can flag the row instead of
producing a quietly wrong number.
"""
import math
import re
from typing import Any, Optional

from farmcalc.services.planning_rules import LBS_PER_TON

UOM_ALIASES = {
    "lb": "lbs",
    "lbs": "lbs",
    "pound": "lbs",
    "pounds": "lbs",
    "ton": "ton",
    "tons": "ton",
    "gal": "gal",
    "gallon": "gal",
    "gallons": "gal",
}

# factor: 1 <from> == factor <to>
KNOWN_CONVERSIONS = {
    ("ton", "lbs"): LBS_PER_TON,
    ("lbs", "ton"): 1.0 / LBS_PER_TON,
}

RATE_UNIT_TOKENS = [
    ("oz", "oz/ac"),
    ("pt", "pt/ac"),
    ("qt", "qt/ac"),
    ("gal", "gal/ac"),
]


def to_num(value: Any) -> float:
    """Coerce anything to a finite float; non-numeric, NaN and inf become 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def to_non_negative(value: Any) -> float:
    """to_num, with negatives clamped to 0 (rates, acres, quantities)."""
    return max(0.0, to_num(value))


def normalize_uom(unit: Optional[str]) -> str:
    if not unit:
        return ""
    key = str(unit).strip().lower()
    return UOM_ALIASES.get(key, key)


def quantity_unit(rate_unit: Optional[str]) -> str:
    """
    Quantity unit of a per-acre rate unit.

    "gal/ac" -> "gal", "lbs/ac" -> "lbs", "oz" -> "oz".
    """
    if not rate_unit:
        return ""
    head = re.split(r"[/ ]", str(rate_unit).strip(), maxsplit=1)[0]
    return normalize_uom(head)


def convert_qty(qty: float, from_unit: Optional[str], to_unit: Optional[str]) -> Optional[float]:
    """Convert a quantity between units; None when the pair is not comparable."""
    source = normalize_uom(from_unit)
    target = normalize_uom(to_unit)
    if source == target:
        return to_num(qty)
    factor = KNOWN_CONVERSIONS.get((source, target))
    if factor is None:
        return None
    return to_num(qty) * factor


def convert_price_to_unit(price: Any, price_uom: Optional[str], target_uom: Optional[str]) -> Optional[float]:
    """
    Express a price per `price_uom` as a price per `target_uom`.

    Returns None for a zero/missing price, a missing unit on either side, or
    a pair outside the known conversion table.
    """
    amount = to_num(price)
    source = normalize_uom(price_uom)
    target = normalize_uom(target_uom)
    if not amount or not source or not target:
        return None
    if source == target:
        return amount
    # 1 <source> == factor <target>, so price per target = price / factor
    factor = KNOWN_CONVERSIONS.get((source, target))
    if not factor:
        return None
    return amount / factor


def normalize_rate_unit(unit: Optional[str]) -> str:
    """
    Coarse key for per-acre rate units used by label rate caps.

    "fl oz/acre" and "oz/ac" both become "oz/ac"; "lb ai/A" style units with
    an "ai" token become "lb ai/ac". Units without an acre token are only
    lowercased.
    """
    lowered = (unit or "").strip().lower()
    if not lowered:
        return ""
    if "lb" in lowered and re.search(r"\bai\b", lowered):
        return "lb ai/ac"
    if "ac" in lowered:
        for token, key in RATE_UNIT_TOKENS:
            if token in lowered:
                return key
        if "lb" in lowered:
            return "lb/ac"
    return lowered


def rate_units_match(left: Optional[str], right: Optional[str]) -> bool:
    return normalize_rate_unit(left) == normalize_rate_unit(right)
