"""
Alerts Engine.

Operational alerts for a season built from readiness, orders, invoices and the
price book. Alerts are evaluated against an explicit `as_of` timestamp so the
same inputs always produce the same alerts.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from farmcalc.services.farm_models import (
    InventoryItem,
    Invoice,
    Order,
    PriceBookEntry,
    Product,
    Season,
    parse_datetime,
)
from farmcalc.services.planning_rules import (
    DEFAULT_OVERDUE_DAYS,
    DEFAULT_PRICE_SPIKE_PCT,
    MISSING_PRICE_WARNING_COUNT,
    OPEN_ORDER_STATUSES,
    RECEIVED_ORDER_STATUSES,
)
from farmcalc.services.price_book import get_planned_price_entry
from farmcalc.services.readiness_engine import (
    ReadinessStatus,
    compute_readiness,
    open_order_from_order,
    requirements_from_usage,
)
from farmcalc.services.units import normalize_uom, to_num
from farmcalc.services.usage_aggregator import aggregate_usage

logger = logging.getLogger(__name__)

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

ALERT_SHORTFALL_BLOCKING = "SHORTFALL_BLOCKING"
ALERT_MISSING_PLANNED_PRICE = "MISSING_PLANNED_PRICE"
ALERT_ORDER_OVERDUE = "ORDER_OVERDUE"
ALERT_PRICE_SPIKE = "PRICE_SPIKE"
ALERT_INVOICE_MISSING_FOR_RECEIPT = "INVOICE_MISSING_FOR_RECEIPT"


@dataclass
class AlertAction:
    label: str
    view: str


@dataclass
class PlanningAlert:
    id: str
    severity: str
    type: str
    title: str
    ts: datetime
    detail: Optional[str] = None
    action: Optional[AlertAction] = None
    meta: Dict[str, Any] = field(default_factory=dict)


def _remaining_qty(order: Order) -> float:
    return sum(line.remaining_qty for line in open_order_from_order(order).lines)


def _shortfall_alert(season, products, inventory, orders, as_of, season_key) -> Optional[PlanningAlert]:
    usage = aggregate_usage(season, products)
    readiness = compute_readiness(
        requirements_from_usage(usage, products),
        inventory,
        [open_order_from_order(o) for o in orders or []],
    )
    blocking = [i for i in readiness.items if i.status == ReadinessStatus.BLOCKING and i.short_qty > 0]
    if not blocking:
        return None
    top = ", ".join(f"{b.label} ({round(b.short_qty)} {b.planned_unit})" for b in blocking[:3])
    return PlanningAlert(
        id=f"{ALERT_SHORTFALL_BLOCKING}-{season_key}",
        severity=SEVERITY_CRITICAL,
        type=ALERT_SHORTFALL_BLOCKING,
        title=f"Blocking shortfalls: {len(blocking)} item(s)",
        detail=f"Top: {top}",
        ts=as_of,
        action=AlertAction("Open Plan Readiness", "plan-readiness"),
        meta={"count": len(blocking)},
    )


def build_alerts(
    season: Optional[Season],
    products: List[Product],
    inventory: List[InventoryItem],
    orders: List[Order],
    invoices: List[Invoice],
    price_book: List[PriceBookEntry],
    as_of: datetime,
    overdue_days: int = DEFAULT_OVERDUE_DAYS,
    price_spike_pct: float = DEFAULT_PRICE_SPIKE_PCT,
) -> List[PlanningAlert]:
    as_of = parse_datetime(as_of) or as_of
    season_year = season.year if season else as_of.year
    season_key = season.id if season else "none"
    alerts: List[PlanningAlert] = []

    shortfall = _shortfall_alert(season, products, inventory, orders, as_of, season_key)
    if shortfall:
        alerts.append(shortfall)

    # Missing planned prices
    planned_ids = list(dict.fromkeys(u.product_id for u in aggregate_usage(season, products)))
    missing = [pid for pid in planned_ids if get_planned_price_entry(pid, season_year, price_book) is None]
    if missing:
        alerts.append(PlanningAlert(
            id=f"{ALERT_MISSING_PLANNED_PRICE}-{season_key}",
            severity=SEVERITY_WARNING if len(missing) > MISSING_PRICE_WARNING_COUNT else SEVERITY_INFO,
            type=ALERT_MISSING_PLANNED_PRICE,
            title=f"Missing planned price: {len(missing)} product(s)",
            detail="Planned cost/variance will be incomplete until price book entries exist.",
            ts=as_of,
            action=AlertAction("Open Price Book", "price-book"),
            meta={"count": len(missing), "product_ids": missing},
        ))

    # Overdue open orders
    overdue = []
    for order in orders or []:
        if (order.status or "draft") not in OPEN_ORDER_STATUSES or _remaining_qty(order) <= 0:
            continue
        ordered_at = parse_datetime(order.order_date)
        if ordered_at is None:
            continue
        if (as_of - ordered_at).days >= overdue_days:
            overdue.append((ordered_at, order))
    if overdue:
        overdue.sort(key=lambda pair: pair[0])
        oldest = overdue[0][1]
        alerts.append(PlanningAlert(
            id=f"{ALERT_ORDER_OVERDUE}-{season_key}",
            severity=SEVERITY_WARNING,
            type=ALERT_ORDER_OVERDUE,
            title=f"Overdue orders: {len(overdue)}",
            detail=f"Oldest: {oldest.order_number or oldest.id}",
            ts=as_of,
            action=AlertAction("Open Orders", "orders"),
            meta={"count": len(overdue), "overdue_days": overdue_days},
        ))

    # Landed cost spikes, same unit only
    spike_count = 0
    for invoice in invoices or []:
        if invoice.season_year != season_year:
            continue
        for li in invoice.line_items:
            landed = to_num(li.landed_unit_cost)
            if not li.product_id or landed <= 0:
                continue
            planned = get_planned_price_entry(li.product_id, season_year, price_book)
            if planned is None:
                continue
            planned_uom = normalize_uom(planned.price_uom)
            if not planned_uom or planned_uom != normalize_uom(li.unit):
                continue
            planned_price = to_num(planned.price)
            if planned_price <= 0:
                continue
            if (landed - planned_price) / planned_price * 100 >= price_spike_pct:
                spike_count += 1
    if spike_count:
        alerts.append(PlanningAlert(
            id=f"{ALERT_PRICE_SPIKE}-{season_key}",
            severity=SEVERITY_WARNING,
            type=ALERT_PRICE_SPIKE,
            title=f"Landed cost spike detected ({spike_count} line item(s))",
            detail=f"Invoice landed cost is at least {price_spike_pct:g}% above planned price (same unit only).",
            ts=as_of,
            action=AlertAction("Open Variance", "variance"),
            meta={"count": spike_count, "price_spike_pct": price_spike_pct},
        ))

    # Received orders without an invoice
    uninvoiced = [
        o for o in orders or []
        if (o.status or "") in RECEIVED_ORDER_STATUSES and not o.invoice_ids
    ]
    if uninvoiced:
        alerts.append(PlanningAlert(
            id=f"{ALERT_INVOICE_MISSING_FOR_RECEIPT}-{season_key}",
            severity=SEVERITY_INFO,
            type=ALERT_INVOICE_MISSING_FOR_RECEIPT,
            title=f"Received orders missing invoice: {len(uninvoiced)}",
            detail="Recording invoices updates landed cost and the price book.",
            ts=as_of,
            action=AlertAction("Open Orders", "orders"),
            meta={"count": len(uninvoiced)},
        ))

    logger.debug(f"Built {len(alerts)} alert(s) for season {season_key}")
    return alerts
