"""
Farm planning snapshots consumed by the calculation engines.

These are plain in-memory records. The engines only read them; persistence
and editing belong to the caller. The `*_from_dict` builders accept the
snake_case JSON shapes used by the HTTP layer.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Union

DateLike = Union[str, date, datetime]


# ==================== CROP PLAN ====================

@dataclass
class Tier:
    """Percentage-of-acres treatment zone inside a crop."""
    id: str
    name: str = ""
    percentage: float = 100.0


@dataclass
class ApplicationTiming:
    """A named pass (e.g. "V4 Foliar") within a crop plan."""
    id: str
    name: str = ""
    order: int = 0
    timing_bucket: Optional[str] = None


@dataclass
class Application:
    """Planned product application at one timing."""
    id: str
    timing_id: str
    product_id: str
    rate: float = 0.0
    rate_unit: str = "gal/ac"
    tier_ids: List[str] = field(default_factory=list)
    tier_id: Optional[str] = None  # legacy single-tier plans
    acres_percentage: Optional[float] = None

    def targeted_tier_ids(self) -> List[str]:
        if self.tier_ids:
            return list(self.tier_ids)
        if self.tier_id:
            return [self.tier_id]
        return []


@dataclass
class SeedTreatment:
    """Seed treatment applied at planting, rated per hundredweight of seed."""
    id: str
    product_id: str
    rate_per_cwt: float = 0.0
    rate_unit: str = "oz"  # "oz" or "g" per cwt
    planting_rate_lbs_per_acre: float = 0.0


@dataclass
class Crop:
    id: str
    name: str
    total_acres: float = 0.0
    tiers: List[Tier] = field(default_factory=list)
    application_timings: List[ApplicationTiming] = field(default_factory=list)
    applications: List[Application] = field(default_factory=list)
    seed_treatments: List[SeedTreatment] = field(default_factory=list)

    def find_tier(self, tier_id: str) -> Optional[Tier]:
        return next((t for t in self.tiers if t.id == tier_id), None)

    def find_timing(self, timing_id: str) -> Optional[ApplicationTiming]:
        return next((t for t in self.application_timings if t.id == timing_id), None)


@dataclass
class Season:
    id: str
    year: int
    name: str = ""
    crops: List[Crop] = field(default_factory=list)
    created_at: Optional[DateLike] = None

    def find_crop(self, crop_id: str) -> Optional[Crop]:
        return next((c for c in self.crops if c.id == crop_id), None)


# ==================== PRODUCT CATALOG ====================

@dataclass
class RotationRestriction:
    crop: str
    days: Optional[float] = None
    months: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class MaxRate:
    value: float
    unit: str


@dataclass
class PhiByCrop:
    crop: str
    days: float


@dataclass
class Restrictions:
    """Label restrictions. Absent values mean no constraint of that kind."""
    phi_days: Optional[float] = None
    phi_by_crop: List[PhiByCrop] = field(default_factory=list)
    rei_hours: Optional[float] = None
    rotation_restrictions: List[RotationRestriction] = field(default_factory=list)
    max_rate_per_application: Optional[MaxRate] = None
    max_rate_per_season: Optional[MaxRate] = None
    max_applications_per_season: Optional[int] = None


@dataclass
class ChemicalData:
    restrictions: Optional[Restrictions] = None
    epa_reg_number: Optional[str] = None
    signal_word: Optional[str] = None


@dataclass
class Product:
    id: str
    name: str = ""
    form: str = "liquid"
    price: float = 0.0
    price_unit: Optional[str] = None
    chemical_data: Optional[ChemicalData] = None


# ==================== INVENTORY, ORDERS, PRICING ====================

@dataclass
class InventoryItem:
    id: str
    product_id: str
    quantity: Optional[float] = 0.0
    unit: Optional[str] = None
    container_count: Optional[float] = None


@dataclass
class OrderLineItem:
    id: str
    product_id: str
    ordered_quantity: float = 0.0
    unit: Optional[str] = None
    received_quantity: float = 0.0
    remaining_quantity: Optional[float] = None
    unit_price: float = 0.0
    total_price: float = 0.0


@dataclass
class Order:
    """Vendor purchase order (draft/ordered/confirmed/partial/complete/cancelled)."""
    id: str
    order_number: str = ""
    vendor_id: str = ""
    season_year: Optional[int] = None
    status: str = "draft"
    line_items: List[OrderLineItem] = field(default_factory=list)
    order_date: Optional[DateLike] = None
    vendor_name: Optional[str] = None
    invoice_ids: List[str] = field(default_factory=list)


@dataclass
class SimplePurchaseLine:
    id: str
    product_id: str
    quantity: float = 0.0
    package_size: Optional[float] = None
    package_unit: Optional[str] = None
    total_quantity: Optional[float] = None
    normalized_unit: Optional[str] = None
    total_price: float = 0.0


@dataclass
class SimplePurchase:
    """Simplified purchase record, either 'ordered' or 'received'."""
    id: str
    season_id: str
    vendor_id: str = ""
    status: str = "ordered"
    lines: List[SimplePurchaseLine] = field(default_factory=list)
    order_date: Optional[DateLike] = None


@dataclass
class PriceBookEntry:
    id: str
    product_id: str
    season_year: int
    price: float
    price_uom: Optional[str] = None
    source: Optional[str] = None


@dataclass
class InvoiceLineItem:
    id: str
    product_id: str
    quantity: float = 0.0
    unit: Optional[str] = None
    landed_unit_cost: Optional[float] = None
    landed_total: Optional[float] = None


@dataclass
class Invoice:
    id: str
    season_year: int
    line_items: List[InvoiceLineItem] = field(default_factory=list)
    invoice_date: Optional[DateLike] = None


# ==================== FIELDS & APPLICATIONS ====================

@dataclass
class Field:
    id: str
    name: str = ""
    acres: float = 0.0


@dataclass
class FieldAssignment:
    id: str
    season_id: str
    field_id: str
    crop_id: str
    acres: float = 0.0
    previous_crop_name: Optional[str] = None


@dataclass
class ApplicationProductRecord:
    product_id: str
    actual_rate: float = 0.0
    rate_unit: str = ""
    total_applied: float = 0.0
    product_name: str = ""
    planned_rate: Optional[float] = None


@dataclass
class ApplicationRecord:
    """A recorded field application event."""
    id: str
    season_id: str
    crop_id: str
    field_id: str
    timing_id: str
    date_applied: DateLike
    acres_treated: float = 0.0
    products: List[ApplicationProductRecord] = field(default_factory=list)
    applicator: str = "self"

    def find_product(self, product_id: str) -> Optional[ApplicationProductRecord]:
        return next((p for p in self.products if p.product_id == product_id), None)


# ==================== HELPERS ====================

def parse_datetime(value: Optional[DateLike]) -> Optional[datetime]:
    """Accept datetime, date or ISO string; return a naive datetime or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        offset = parsed.utcoffset()
        parsed = parsed.replace(tzinfo=None)
        if offset:
            parsed = parsed - offset
    return parsed


def _items(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    return list(data.get(key) or [])


def _opt(data: Optional[Dict[str, Any]], builder):
    return builder(data) if data else None


def season_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Season]:
    if not data:
        return None
    return Season(
        id=data["id"],
        year=int(data.get("year") or 0),
        name=data.get("name", ""),
        crops=[crop_from_dict(c) for c in _items(data, "crops")],
        created_at=data.get("created_at"),
    )


def crop_from_dict(data: Dict[str, Any]) -> Crop:
    return Crop(
        id=data["id"],
        name=data.get("name", ""),
        total_acres=data.get("total_acres", 0.0),
        tiers=[Tier(id=t["id"], name=t.get("name", ""), percentage=t.get("percentage", 100.0))
               for t in _items(data, "tiers")],
        application_timings=[
            ApplicationTiming(
                id=t["id"],
                name=t.get("name", ""),
                order=t.get("order", 0),
                timing_bucket=t.get("timing_bucket"),
            )
            for t in _items(data, "application_timings")
        ],
        applications=[
            Application(
                id=a["id"],
                timing_id=a["timing_id"],
                product_id=a["product_id"],
                rate=a.get("rate", 0.0),
                rate_unit=a.get("rate_unit") or "gal/ac",
                tier_ids=list(a.get("tier_ids") or []),
                tier_id=a.get("tier_id"),
                acres_percentage=a.get("acres_percentage"),
            )
            for a in _items(data, "applications")
        ],
        seed_treatments=[
            SeedTreatment(
                id=s["id"],
                product_id=s["product_id"],
                rate_per_cwt=s.get("rate_per_cwt", 0.0),
                rate_unit=s.get("rate_unit") or "oz",
                planting_rate_lbs_per_acre=s.get("planting_rate_lbs_per_acre", 0.0),
            )
            for s in _items(data, "seed_treatments")
        ],
    )


def restrictions_from_dict(data: Dict[str, Any]) -> Restrictions:
    return Restrictions(
        phi_days=data.get("phi_days"),
        phi_by_crop=[PhiByCrop(crop=p["crop"], days=p.get("days", 0)) for p in _items(data, "phi_by_crop")],
        rei_hours=data.get("rei_hours"),
        rotation_restrictions=[
            RotationRestriction(crop=r["crop"], days=r.get("days"), months=r.get("months"), notes=r.get("notes"))
            for r in _items(data, "rotation_restrictions")
        ],
        max_rate_per_application=_opt(data.get("max_rate_per_application"), lambda m: MaxRate(**m)),
        max_rate_per_season=_opt(data.get("max_rate_per_season"), lambda m: MaxRate(**m)),
        max_applications_per_season=data.get("max_applications_per_season"),
    )


def product_from_dict(data: Dict[str, Any]) -> Product:
    chem = data.get("chemical_data")
    chemical_data = None
    if chem:
        chemical_data = ChemicalData(
            restrictions=_opt(chem.get("restrictions"), restrictions_from_dict),
            epa_reg_number=chem.get("epa_reg_number"),
            signal_word=chem.get("signal_word"),
        )
    return Product(
        id=data["id"],
        name=data.get("name", ""),
        form=data.get("form", "liquid"),
        price=data.get("price", 0.0),
        price_unit=data.get("price_unit"),
        chemical_data=chemical_data,
    )


def inventory_item_from_dict(data: Dict[str, Any]) -> InventoryItem:
    return InventoryItem(**data)


def order_from_dict(data: Dict[str, Any]) -> Order:
    payload = dict(data)
    payload["line_items"] = [OrderLineItem(**li) for li in _items(data, "line_items")]
    payload["invoice_ids"] = list(data.get("invoice_ids") or [])
    return Order(**payload)


def purchase_from_dict(data: Dict[str, Any]) -> SimplePurchase:
    payload = dict(data)
    payload["lines"] = [SimplePurchaseLine(**line) for line in _items(data, "lines")]
    return SimplePurchase(**payload)


def price_book_entry_from_dict(data: Dict[str, Any]) -> PriceBookEntry:
    return PriceBookEntry(**data)


def invoice_from_dict(data: Dict[str, Any]) -> Invoice:
    payload = dict(data)
    payload["line_items"] = [InvoiceLineItem(**li) for li in _items(data, "line_items")]
    return Invoice(**payload)


def application_record_from_dict(data: Dict[str, Any]) -> ApplicationRecord:
    payload = dict(data)
    payload["products"] = [ApplicationProductRecord(**p) for p in _items(data, "products")]
    return ApplicationRecord(**payload)


def field_from_dict(data: Dict[str, Any]) -> Field:
    return Field(**data)


def field_assignment_from_dict(data: Dict[str, Any]) -> FieldAssignment:
    return FieldAssignment(**data)
