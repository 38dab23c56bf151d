"""
Pydantic schemas for the planning engines.
Request bodies mirror the farm snapshots field for field (snake_case);
response schemas mirror the engine results.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from farmcalc.services.readiness_engine import ReadinessStatus


# ==================== CROP PLAN ====================

class TierSchema(BaseModel):
    id: str
    name: str = ""
    percentage: float = Field(default=100.0, description="Share of crop acres, 0-100")


class ApplicationTimingSchema(BaseModel):
    id: str
    name: str = ""
    order: int = 0
    timing_bucket: Optional[str] = None


class ApplicationSchema(BaseModel):
    id: str
    timing_id: str
    product_id: str
    rate: float = 0.0
    rate_unit: str = "gal/ac"
    tier_ids: List[str] = []
    tier_id: Optional[str] = None
    acres_percentage: Optional[float] = None


class SeedTreatmentSchema(BaseModel):
    id: str
    product_id: str
    rate_per_cwt: float = 0.0
    rate_unit: str = Field(default="oz", description="oz or g per cwt of seed")
    planting_rate_lbs_per_acre: float = 0.0


class CropSchema(BaseModel):
    id: str
    name: str
    total_acres: float = 0.0
    tiers: List[TierSchema] = []
    application_timings: List[ApplicationTimingSchema] = []
    applications: List[ApplicationSchema] = []
    seed_treatments: List[SeedTreatmentSchema] = []


class SeasonSchema(BaseModel):
    id: str
    year: int
    name: str = ""
    crops: List[CropSchema] = []
    created_at: Optional[str] = Field(None, description="ISO timestamp")


# ==================== PRODUCT CATALOG ====================

class RotationRestrictionSchema(BaseModel):
    crop: str
    days: Optional[float] = None
    months: Optional[float] = None
    notes: Optional[str] = None


class MaxRateSchema(BaseModel):
    value: float
    unit: str


class PhiByCropSchema(BaseModel):
    crop: str
    days: float


class RestrictionsSchema(BaseModel):
    phi_days: Optional[float] = None
    phi_by_crop: List[PhiByCropSchema] = []
    rei_hours: Optional[float] = None
    rotation_restrictions: List[RotationRestrictionSchema] = []
    max_rate_per_application: Optional[MaxRateSchema] = None
    max_rate_per_season: Optional[MaxRateSchema] = None
    max_applications_per_season: Optional[int] = None


class ChemicalDataSchema(BaseModel):
    restrictions: Optional[RestrictionsSchema] = None
    epa_reg_number: Optional[str] = None
    signal_word: Optional[str] = None


class ProductSchema(BaseModel):
    id: str
    name: str = ""
    form: str = "liquid"
    price: float = 0.0
    price_unit: Optional[str] = None
    chemical_data: Optional[ChemicalDataSchema] = None


# ==================== INVENTORY, ORDERS, PRICING ====================

class InventoryItemSchema(BaseModel):
    id: str
    product_id: str
    quantity: Optional[float] = 0.0
    unit: Optional[str] = None
    container_count: Optional[float] = None

    class Config:
        from_attributes = True


class OrderLineItemSchema(BaseModel):
    id: str
    product_id: str
    ordered_quantity: float = 0.0
    unit: Optional[str] = None
    received_quantity: float = 0.0
    remaining_quantity: Optional[float] = None
    unit_price: float = 0.0
    total_price: float = 0.0


class OrderSchema(BaseModel):
    id: str
    order_number: str = ""
    vendor_id: str = ""
    season_year: Optional[int] = None
    status: str = "draft"
    line_items: List[OrderLineItemSchema] = []
    order_date: Optional[str] = Field(None, description="ISO date")
    vendor_name: Optional[str] = None
    invoice_ids: List[str] = []


class SimplePurchaseLineSchema(BaseModel):
    id: str
    product_id: str
    quantity: float = 0.0
    package_size: Optional[float] = None
    package_unit: Optional[str] = None
    total_quantity: Optional[float] = None
    normalized_unit: Optional[str] = None
    total_price: float = 0.0


class SimplePurchaseSchema(BaseModel):
    id: str
    season_id: str
    vendor_id: str = ""
    status: str = "ordered"
    lines: List[SimplePurchaseLineSchema] = []
    order_date: Optional[str] = None


class PriceBookEntrySchema(BaseModel):
    id: str
    product_id: str
    season_year: int
    price: float
    price_uom: Optional[str] = None
    source: Optional[str] = Field(None, description="manual_override, manual, awarded, estimated or invoice")


class InvoiceLineItemSchema(BaseModel):
    id: str
    product_id: str
    quantity: float = 0.0
    unit: Optional[str] = None
    landed_unit_cost: Optional[float] = None
    landed_total: Optional[float] = None


class InvoiceSchema(BaseModel):
    id: str
    season_year: int
    line_items: List[InvoiceLineItemSchema] = []
    invoice_date: Optional[str] = None


# ==================== FIELDS & APPLICATIONS ====================

class FieldSchema(BaseModel):
    id: str
    name: str = ""
    acres: float = 0.0


class FieldAssignmentSchema(BaseModel):
    id: str
    season_id: str
    field_id: str
    crop_id: str
    acres: float = 0.0
    previous_crop_name: Optional[str] = None


class ApplicationProductRecordSchema(BaseModel):
    product_id: str
    actual_rate: float = 0.0
    rate_unit: str = ""
    total_applied: float = 0.0
    product_name: str = ""
    planned_rate: Optional[float] = None


class ApplicationRecordSchema(BaseModel):
    id: str
    season_id: str
    crop_id: str
    field_id: str
    timing_id: str
    date_applied: str = Field(..., description="ISO date")
    acres_treated: float = 0.0
    products: List[ApplicationProductRecordSchema] = []
    applicator: str = "self"


# ==================== REQUESTS ====================

class PlanRequest(BaseModel):
    """Season plan plus product catalog."""
    season: Optional[SeasonSchema] = None
    products: List[ProductSchema] = []


class PlannedRequirementSchema(BaseModel):
    id: str
    label: str
    product_id: str
    required_qty: float
    planned_unit: str
    crop: Optional[str] = None
    pass_name: Optional[str] = None


class ReadinessRequest(PlanRequest):
    """Explicit requirements, or season + products to derive them."""
    requirements: Optional[List[PlannedRequirementSchema]] = None
    inventory: List[InventoryItemSchema] = []
    orders: List[OrderSchema] = []
    purchases: List[SimplePurchaseSchema] = []


class ReadinessSummaryRequest(PlanRequest):
    inventory: List[InventoryItemSchema] = []
    purchases: List[SimplePurchaseSchema] = []


class ApplicationVarianceRequest(PlanRequest):
    application_records: List[ApplicationRecordSchema] = []


class CostVarianceRequest(PlanRequest):
    invoices: List[InvoiceSchema] = []
    price_book: List[PriceBookEntrySchema] = []


class VarianceExportRequest(CostVarianceRequest):
    application_records: List[ApplicationRecordSchema] = []


class CandidateProductSchema(BaseModel):
    product_id: str
    rate: float
    rate_unit: str
    acres: float = 0.0


class RestrictionCheckRequest(BaseModel):
    season: SeasonSchema
    fields: List[FieldSchema] = []
    field_assignments: List[FieldAssignmentSchema] = []
    application_records: List[ApplicationRecordSchema] = []
    products: List[ProductSchema] = []
    historical_seasons: List[SeasonSchema] = []

    field_id: str
    crop_id: str
    timing_id: str
    date_applied: str = Field(..., description="ISO date of the application")
    candidates: List[CandidateProductSchema] = []
    harvest_date: Optional[str] = Field(None, description="ISO date; PHI is only checked when given")


class AlertsRequest(PlanRequest):
    inventory: List[InventoryItemSchema] = []
    orders: List[OrderSchema] = []
    invoices: List[InvoiceSchema] = []
    price_book: List[PriceBookEntrySchema] = []
    as_of: Optional[datetime] = Field(None, description="Evaluation time, defaults to now")
    overdue_days: int = Field(default=21, ge=0)
    price_spike_pct: float = Field(default=15.0, ge=0)


class LabelExtractRequest(BaseModel):
    label_text: Optional[str] = None
    label_base64: Optional[str] = None
    file_name: Optional[str] = None


class SuggestRolesRequest(BaseModel):
    product_name: Optional[str] = None
    category: Optional[str] = None
    analysis: Optional[Dict[str, float]] = Field(None, description="n, p, k, s percentages")
    active_ingredients: Optional[str] = None


# ==================== RESPONSES ====================

class UsageContributionResponse(BaseModel):
    crop_id: str
    crop_name: str
    timing_id: str
    timing_name: str
    tier_id: Optional[str] = None
    acres_treated: float
    quantity_needed: float


class PlannedUsageItemResponse(BaseModel):
    product_id: str
    unit: str
    total_needed: float
    usages: List[UsageContributionResponse]

    class Config:
        from_attributes = True


class OrderLineExplainResponse(BaseModel):
    order_id: str
    remaining_qty: float
    unit: Optional[str] = None
    vendor_name: Optional[str] = None
    status: Optional[str] = None


class ReadinessExplainResponse(BaseModel):
    product_id: str
    planned_unit: str
    required_qty: float
    on_hand_qty: float
    on_order_qty: float
    short_qty: float
    inventory_rows: List[InventoryItemSchema]
    order_lines: List[OrderLineExplainResponse]
    skipped_inventory_rows: List[InventoryItemSchema]
    skipped_order_lines: List[OrderLineExplainResponse]


class ReadinessItemResponse(BaseModel):
    id: str
    label: str
    product_id: str
    required_qty: float
    planned_unit: str
    crop: Optional[str] = None
    pass_name: Optional[str] = None
    status: ReadinessStatus
    on_hand_qty: float
    on_order_qty: float
    short_qty: float
    explain: ReadinessExplainResponse


class ReadinessResponse(BaseModel):
    items: List[ReadinessItemResponse]
    ready_count: int
    on_order_count: int
    blocking_count: int
    total_count: int
    ready_pct: float


class ReadinessSummaryResponse(BaseModel):
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

    class Config:
        from_attributes = True


class ApplicationVarianceRowResponse(BaseModel):
    crop_id: str
    crop_name: str
    timing_id: str
    timing_name: str
    product_id: str
    product_name: str
    rate_unit: str
    planned_rate: float
    planned_acres: float
    planned_total: float
    actual_rate: Optional[float] = None
    actual_acres: float
    actual_total: float
    rate_variance: Optional[float] = None
    rate_variance_pct: Optional[float] = None
    total_variance: Optional[float] = None
    total_variance_pct: Optional[float] = None
    status: str = Field(..., description="not-applied, partial, complete or over-applied")
    application_count: int


class ApplicationVarianceTotalsResponse(BaseModel):
    planned_acres: float
    applied_acres: float
    passes_planned: int
    passes_started: int
    passes_complete: int


class ApplicationVarianceResponse(BaseModel):
    rows: List[ApplicationVarianceRowResponse]
    totals: ApplicationVarianceTotalsResponse

    class Config:
        from_attributes = True


class PassVarianceFlagsResponse(BaseModel):
    missing_planned_price: bool = False
    no_invoices: bool = False


class PassVarianceRowResponse(BaseModel):
    crop_name: str
    timing_name: str
    planned_cost: Optional[float] = None
    actual_cost_allocated: float
    variance: Optional[float] = None
    variance_pct: Optional[float] = None
    flags: PassVarianceFlagsResponse


class PassVarianceResponse(BaseModel):
    planned_total: float
    actual_total_allocated: float
    variance_total: float
    rows: List[PassVarianceRowResponse]

    class Config:
        from_attributes = True


class ProductVarianceFlagsResponse(BaseModel):
    missing_planned_price: bool = False
    price_unit_mismatch: bool = False
    unit_mismatch: bool = False
    no_invoices: bool = False


class ProductVarianceRowResponse(BaseModel):
    product_id: str
    product_name: str
    planned_qty: float
    planned_unit: str
    planned_unit_price: Optional[float] = None
    planned_cost: Optional[float] = None
    planned_price_source: Optional[str] = None
    actual_qty: float
    actual_unit_cost: Optional[float] = None
    actual_cost: float
    variance: Optional[float] = None
    variance_pct: Optional[float] = None
    flags: ProductVarianceFlagsResponse


class ProductVarianceCoverageResponse(BaseModel):
    total_products_in_plan: int
    with_invoices: int
    with_planned_price: int
    computed: int
    unit_mismatch: int


class ProductVarianceResponse(BaseModel):
    planned_total: float
    actual_total: float
    variance_total: float
    rows: List[ProductVarianceRowResponse]
    coverage: ProductVarianceCoverageResponse

    class Config:
        from_attributes = True


class RestrictionViolationResponse(BaseModel):
    id: str
    type: str
    severity: str
    product_id: str
    product_name: str
    field_id: Optional[str] = None
    field_name: Optional[str] = None
    message: str
    details: str
    can_override: bool
    reentry_at: Optional[datetime] = None


class RestrictionCheckResponse(BaseModel):
    violations: List[RestrictionViolationResponse]
    has_blocking_violations: bool
    by_product: Dict[str, List[RestrictionViolationResponse]]


class AlertActionResponse(BaseModel):
    label: str
    view: str


class PlanningAlertResponse(BaseModel):
    id: str
    severity: str
    type: str
    title: str
    detail: Optional[str] = None
    ts: datetime
    action: Optional[AlertActionResponse] = None
    meta: Dict[str, Any] = {}


class AlertsResponse(BaseModel):
    alerts: List[PlanningAlertResponse]


class LabelExtractionResponse(BaseModel):
    product_name: Optional[str] = None
    form: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    density_lbs_per_gal: Optional[float] = None
    active_ingredients: Optional[str] = None
    application_rates: Optional[str] = None
    mixing_instructions: Optional[str] = None
    storage_handling: Optional[str] = None
    cautions: Optional[str] = None
    analysis: Dict[str, Any] = {}
    suggested_roles: List[str] = []
    chemical_data: Optional[Dict[str, Any]] = None
    extraction_confidence: str = "medium"
    source_file_name: Optional[str] = None

    class Config:
        from_attributes = True


class RoleSuggestionResponse(BaseModel):
    role: str
    confidence: str
    explanation: str
    evidence: List[str] = []


class RoleSuggestionsResponse(BaseModel):
    suggestions: List[RoleSuggestionResponse]
    source_info: str

    class Config:
        from_attributes = True
