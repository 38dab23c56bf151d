"""
Readiness Engine (canonical readiness math).

Reconciles planned requirements against on-hand inventory and the
remaining-to-receive quantity on open orders, and classifies each
requirement:

- READY:     on hand covers the requirement
- ON_ORDER:  on hand + on order covers it
- BLOCKING:  neither; short_qty = required - (on hand + on order)

Inventory often has several rows per product (lots, bins, partial
deliveries); every row is summed, not just the first. Orders reach the
engine through the minimal `OpenOrder` / `RemainingLine` shape, so purchase
orders and simplified purchases share the same math via the adapters below.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging
import math

from farmcalc.services.farm_models import (
    InventoryItem,
    Order,
    Product,
    Season,
    SimplePurchase,
)
from farmcalc.services.planning_rules import CLOSED_ORDER_STATUSES, OPEN_PURCHASE_STATUS
from farmcalc.services.units import convert_qty, normalize_uom, to_non_negative, to_num
from farmcalc.services.usage_aggregator import PlannedUsageItem, aggregate_usage

logger = logging.getLogger(__name__)


class ReadinessStatus(str, Enum):
    READY = "READY"
    ON_ORDER = "ON_ORDER"
    BLOCKING = "BLOCKING"


@dataclass
class PlannedRequirement:
    id: str
    label: str
    product_id: str
    required_qty: float
    planned_unit: str
    crop: Optional[str] = None
    pass_name: Optional[str] = None


@dataclass
class RemainingLine:
    """Minimal order-line capability: what is still to be received."""
    product_id: str
    remaining_qty: float
    unit: Optional[str] = None


@dataclass
class OpenOrder:
    order_id: str
    lines: List[RemainingLine] = field(default_factory=list)
    status: Optional[str] = None
    vendor_name: Optional[str] = None


@dataclass
class OrderLineExplain:
    order_id: str
    remaining_qty: float
    unit: Optional[str] = None
    vendor_name: Optional[str] = None
    status: Optional[str] = None


@dataclass
class ReadinessExplain:
    product_id: str
    planned_unit: str
    required_qty: float
    on_hand_qty: float
    on_order_qty: float
    short_qty: float
    inventory_rows: List[InventoryItem] = field(default_factory=list)
    order_lines: List[OrderLineExplain] = field(default_factory=list)
    skipped_inventory_rows: List[InventoryItem] = field(default_factory=list)
    skipped_order_lines: List[OrderLineExplain] = field(default_factory=list)


@dataclass
class ReadinessItem:
    id: str
    label: str
    product_id: str
    required_qty: float
    planned_unit: str
    status: ReadinessStatus
    on_hand_qty: float
    on_order_qty: float
    short_qty: float
    explain: ReadinessExplain
    crop: Optional[str] = None
    pass_name: Optional[str] = None


@dataclass
class ReadinessResult:
    items: List[ReadinessItem]
    ready_count: int
    on_order_count: int
    blocking_count: int
    total_count: int

    @property
    def ready_pct(self) -> float:
        if not self.total_count:
            return 0.0
        return self.ready_count / self.total_count * 100


@dataclass
class ReadinessSummary:
    """Dashboard roll-up of season readiness, by count, value and volume."""
    total_products: int
    ready_count: int
    on_order_count: int
    blocking_count: int
    ready_pct: float
    on_order_pct: float
    blocking_pct: float
    on_hand_value: float
    on_order_value: float
    planned_value: float
    short_value: float
    coverage_pct: float
    on_hand_qty_total: float
    on_order_qty_total: float
    planned_qty_total: float


# ==================== ADAPTERS ====================

def is_order_open(status: Optional[str]) -> bool:
    return (status or "").upper() not in CLOSED_ORDER_STATUSES


def open_order_from_order(order: Order) -> OpenOrder:
    """Purchase order -> OpenOrder; remaining = remaining_quantity or ordered - received."""
    lines = []
    for li in order.line_items:
        if li.remaining_quantity is not None:
            remaining = to_num(li.remaining_quantity)
        else:
            remaining = to_num(li.ordered_quantity) - to_num(li.received_quantity)
        lines.append(RemainingLine(product_id=li.product_id, remaining_qty=remaining, unit=li.unit))
    return OpenOrder(order_id=order.id, lines=lines, status=order.status, vendor_name=order.vendor_name)


def open_order_from_purchase(purchase: SimplePurchase) -> OpenOrder:
    """
    Simplified purchase -> OpenOrder.

    Only 'ordered' purchases carry quantity still to arrive; received ones
    are already in inventory, so they are reported as closed.
    """
    lines = []
    for line in purchase.lines:
        remaining = to_num(line.total_quantity) or to_num(line.quantity) * (to_num(line.package_size) or 1)
        lines.append(RemainingLine(
            product_id=line.product_id,
            remaining_qty=remaining,
            unit=line.package_unit or line.normalized_unit,
        ))
    status = purchase.status if purchase.status == OPEN_PURCHASE_STATUS else "received"
    return OpenOrder(order_id=purchase.id, lines=lines, status=status)


def requirements_from_usage(usage: List[PlannedUsageItem], products: List[Product]) -> List[PlannedRequirement]:
    names = {p.id: p.name for p in products or []}
    requirements = []
    for u in usage:
        first = u.usages[0] if u.usages else None
        requirements.append(PlannedRequirement(
            id=f"{u.product_id}:{u.unit}",
            label=names.get(u.product_id) or "Unknown product",
            product_id=u.product_id,
            required_qty=u.total_needed,
            planned_unit=u.unit,
            crop=first.crop_name if first else None,
            pass_name=first.timing_name if first else None,
        ))
    return requirements


# ==================== ENGINE ====================

def _inventory_qty(row: InventoryItem) -> float:
    if row.quantity is not None and isinstance(row.quantity, (int, float)) and math.isfinite(row.quantity):
        return to_non_negative(row.quantity)
    return to_non_negative(row.container_count)


def _in_planned_unit(qty: float, unit: Optional[str], planned_unit: str) -> Optional[float]:
    """Quantity expressed in the planned unit; unitless rows count as-is."""
    if not normalize_uom(unit) or not normalize_uom(planned_unit):
        return qty
    return convert_qty(qty, unit, planned_unit)


def _index_inventory(inventory: List[InventoryItem]) -> Dict[str, List[InventoryItem]]:
    index: Dict[str, List[InventoryItem]] = {}
    for row in inventory or []:
        if not row.product_id:
            continue
        index.setdefault(row.product_id, []).append(row)
    return index


def _index_open_lines(orders: List[OpenOrder]) -> Dict[str, List[OrderLineExplain]]:
    index: Dict[str, List[OrderLineExplain]] = {}
    for order in orders or []:
        if not is_order_open(order.status):
            continue
        for line in order.lines:
            remaining = to_num(line.remaining_qty)
            if not line.product_id or remaining <= 0:
                continue
            index.setdefault(line.product_id, []).append(OrderLineExplain(
                order_id=order.order_id,
                remaining_qty=remaining,
                unit=line.unit,
                vendor_name=order.vendor_name,
                status=order.status,
            ))
    return index


def _sum_on_hand(rows: List[InventoryItem], planned_unit: str) -> Tuple[float, List[InventoryItem], List[InventoryItem]]:
    total, used, skipped = 0.0, [], []
    for row in rows:
        converted = _in_planned_unit(_inventory_qty(row), row.unit, planned_unit)
        if converted is None:
            skipped.append(row)
            continue
        total += converted
        used.append(row)
    return total, used, skipped


def _sum_on_order(lines: List[OrderLineExplain], planned_unit: str) -> Tuple[float, List[OrderLineExplain], List[OrderLineExplain]]:
    total, used, skipped = 0.0, [], []
    for line in lines:
        converted = _in_planned_unit(line.remaining_qty, line.unit, planned_unit)
        if converted is None:
            skipped.append(line)
            continue
        total += converted
        used.append(line)
    return total, used, skipped


def compute_readiness(
    requirements: List[PlannedRequirement],
    inventory: List[InventoryItem],
    orders: Optional[List[OpenOrder]] = None,
) -> ReadinessResult:
    on_hand_index = _index_inventory(inventory)
    on_order_index = _index_open_lines(orders or [])

    items: List[ReadinessItem] = []
    for req in requirements or []:
        required = to_non_negative(req.required_qty)

        on_hand, inv_rows, skipped_rows = _sum_on_hand(on_hand_index.get(req.product_id, []), req.planned_unit)
        on_order, order_lines, skipped_lines = _sum_on_order(on_order_index.get(req.product_id, []), req.planned_unit)
        if skipped_rows or skipped_lines:
            logger.debug(
                f"Readiness {req.product_id}: {len(skipped_rows)} inventory row(s) and "
                f"{len(skipped_lines)} order line(s) not in {req.planned_unit}, not counted"
            )

        if on_hand >= required:
            status = ReadinessStatus.READY
        elif on_hand + on_order >= required:
            status = ReadinessStatus.ON_ORDER
        else:
            status = ReadinessStatus.BLOCKING

        short_qty = max(0.0, required - (on_hand + on_order))

        items.append(ReadinessItem(
            id=req.id,
            label=req.label,
            product_id=req.product_id,
            required_qty=required,
            planned_unit=req.planned_unit,
            crop=req.crop,
            pass_name=req.pass_name,
            status=status,
            on_hand_qty=on_hand,
            on_order_qty=on_order,
            short_qty=short_qty,
            explain=ReadinessExplain(
                product_id=req.product_id,
                planned_unit=req.planned_unit,
                required_qty=required,
                on_hand_qty=on_hand,
                on_order_qty=on_order,
                short_qty=short_qty,
                inventory_rows=inv_rows,
                order_lines=order_lines,
                skipped_inventory_rows=skipped_rows,
                skipped_order_lines=skipped_lines,
            ),
        ))

    return ReadinessResult(
        items=items,
        ready_count=sum(1 for i in items if i.status == ReadinessStatus.READY),
        on_order_count=sum(1 for i in items if i.status == ReadinessStatus.ON_ORDER),
        blocking_count=sum(1 for i in items if i.status == ReadinessStatus.BLOCKING),
        total_count=len(items),
    )


def calculate_readiness_summary(
    season: Optional[Season],
    products: List[Product],
    inventory: List[InventoryItem],
    purchases: Optional[List[SimplePurchase]] = None,
) -> ReadinessSummary:
    """
    Season readiness for the dashboard widget.

    Uses purchases still 'ordered' for this season as the on-order source.
    On-hand and planned value use the catalog price; on-order value uses the
    actual purchase line totals.
    """
    scoped = [
        p for p in purchases or []
        if (season is None or p.season_id == season.id) and p.status == OPEN_PURCHASE_STATUS
    ]

    usage = aggregate_usage(season, products)
    readiness = compute_readiness(
        requirements_from_usage(usage, products),
        inventory,
        [open_order_from_purchase(p) for p in scoped],
    )

    on_order_value_by_product: Dict[str, float] = {}
    for purchase in scoped:
        for line in purchase.lines:
            if line.product_id and to_num(line.total_price):
                on_order_value_by_product[line.product_id] = (
                    on_order_value_by_product.get(line.product_id, 0.0) + to_num(line.total_price)
                )

    prices = {p.id: to_num(p.price) for p in products or []}
    on_hand_value = on_order_value = planned_value = 0.0
    on_hand_qty_total = on_order_qty_total = planned_qty_total = 0.0

    # purchase totals are per product; count each product once across its unit lines
    valued_products = set()
    for item in readiness.items:
        unit_price = prices.get(item.product_id, 0.0)
        on_hand_value += item.on_hand_qty * unit_price
        if item.product_id not in valued_products:
            valued_products.add(item.product_id)
            on_order_value += on_order_value_by_product.get(item.product_id, 0.0)
        planned_value += item.required_qty * unit_price
        on_hand_qty_total += item.on_hand_qty
        on_order_qty_total += item.on_order_qty
        planned_qty_total += item.required_qty

    total = readiness.total_count or 1
    short_value = max(0.0, planned_value - on_hand_value - on_order_value)
    if planned_value > 0:
        coverage_pct = min(100.0, (on_hand_value + on_order_value) / planned_value * 100)
    else:
        coverage_pct = 100.0

    return ReadinessSummary(
        total_products=readiness.total_count,
        ready_count=readiness.ready_count,
        on_order_count=readiness.on_order_count,
        blocking_count=readiness.blocking_count,
        ready_pct=readiness.ready_count / total * 100,
        on_order_pct=readiness.on_order_count / total * 100,
        blocking_pct=readiness.blocking_count / total * 100,
        on_hand_value=on_hand_value,
        on_order_value=on_order_value,
        planned_value=planned_value,
        short_value=short_value,
        coverage_pct=coverage_pct,
        on_hand_qty_total=on_hand_qty_total,
        on_order_qty_total=on_order_qty_total,
        planned_qty_total=planned_qty_total,
    )
