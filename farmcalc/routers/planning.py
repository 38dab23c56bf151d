"""
Planning Router.
Exposes the usage, readiness, variance, restriction and alert engines plus
the advisory label services over HTTP.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse
import logging
import re

from farmcalc.schemas.planning_schemas import (
    AlertsRequest,
    AlertsResponse,
    ApplicationVarianceRequest,
    ApplicationVarianceResponse,
    CostVarianceRequest,
    LabelExtractRequest,
    LabelExtractionResponse,
    PassVarianceResponse,
    PlannedUsageItemResponse,
    PlanRequest,
    ProductVarianceResponse,
    ReadinessRequest,
    ReadinessResponse,
    ReadinessSummaryRequest,
    ReadinessSummaryResponse,
    RestrictionCheckRequest,
    RestrictionCheckResponse,
    RoleSuggestionsResponse,
    SeasonSchema,
    SuggestRolesRequest,
    VarianceExportRequest,
)
from farmcalc.services.farm_models import (
    Product,
    Season,
    application_record_from_dict,
    field_assignment_from_dict,
    field_from_dict,
    inventory_item_from_dict,
    invoice_from_dict,
    order_from_dict,
    price_book_entry_from_dict,
    product_from_dict,
    purchase_from_dict,
    season_from_dict,
)
from farmcalc.services.usage_aggregator import aggregate_usage
from farmcalc.services.readiness_engine import (
    PlannedRequirement,
    calculate_readiness_summary,
    compute_readiness,
    open_order_from_order,
    open_order_from_purchase,
    requirements_from_usage,
)
from farmcalc.services.application_variance import compute_application_variance
from farmcalc.services.pass_variance import compute_pass_variance
from farmcalc.services.product_variance import compute_product_variance
from farmcalc.services.restriction_engine import (
    CandidateProduct,
    RestrictionCheckContext,
    check_restrictions,
    group_violations_by_product,
    has_blocking_violations,
)
from farmcalc.services.alerts_engine import build_alerts
from farmcalc.services.variance_excel_service import variance_excel_service
from farmcalc.services.label_intelligence_service import (
    AdvisoryServiceError,
    CreditsExhausted,
    ExtractionFailed,
    ProductInfo,
    RateLimitExceeded,
    Unauthorized,
    get_label_intelligence_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/planning", tags=["planning"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _season(schema: Optional[SeasonSchema]) -> Optional[Season]:
    return season_from_dict(schema.model_dump()) if schema else None


def _products(request: PlanRequest) -> List[Product]:
    return [product_from_dict(p.model_dump()) for p in request.products]


def _advisory_http_error(error: AdvisoryServiceError) -> HTTPException:
    if isinstance(error, Unauthorized):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(error))
    if isinstance(error, RateLimitExceeded):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(error))
    if isinstance(error, CreditsExhausted):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(error))
    if isinstance(error, ExtractionFailed):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))


# ==================== USAGE & READINESS ====================

@router.post("/usage", response_model=List[PlannedUsageItemResponse])
def planned_usage(request: PlanRequest):
    """Total required quantity per product, with per-pass provenance."""
    usage = aggregate_usage(_season(request.season), _products(request))
    return [PlannedUsageItemResponse.model_validate(u, from_attributes=True) for u in usage]


@router.post("/readiness", response_model=ReadinessResponse)
def readiness(request: ReadinessRequest):
    """
    Classify each requirement as READY, ON_ORDER or BLOCKING.

    Uses `requirements` when given, otherwise derives them from the season
    plan. Purchase orders and simplified purchases both count as on-order.
    """
    products = _products(request)
    if request.requirements is not None:
        requirements = [PlannedRequirement(**r.model_dump()) for r in request.requirements]
    else:
        requirements = requirements_from_usage(aggregate_usage(_season(request.season), products), products)

    orders = [open_order_from_order(order_from_dict(o.model_dump())) for o in request.orders]
    orders += [open_order_from_purchase(purchase_from_dict(p.model_dump())) for p in request.purchases]
    inventory = [inventory_item_from_dict(i.model_dump()) for i in request.inventory]

    result = compute_readiness(requirements, inventory, orders)
    logger.info(
        f"Readiness: {result.ready_count} ready, {result.on_order_count} on order, "
        f"{result.blocking_count} blocking"
    )
    return ReadinessResponse.model_validate(result, from_attributes=True)


@router.post("/readiness/summary", response_model=ReadinessSummaryResponse)
def readiness_summary(request: ReadinessSummaryRequest):
    summary = calculate_readiness_summary(
        _season(request.season),
        _products(request),
        [inventory_item_from_dict(i.model_dump()) for i in request.inventory],
        [purchase_from_dict(p.model_dump()) for p in request.purchases],
    )
    return ReadinessSummaryResponse.model_validate(summary, from_attributes=True)


# ==================== VARIANCE ====================

@router.post("/variance/applications", response_model=ApplicationVarianceResponse)
def application_variance(request: ApplicationVarianceRequest):
    summary = compute_application_variance(
        _season(request.season),
        _products(request),
        [application_record_from_dict(r.model_dump()) for r in request.application_records],
    )
    return ApplicationVarianceResponse.model_validate(summary, from_attributes=True)


def _cost_inputs(request: CostVarianceRequest):
    return (
        _season(request.season),
        _products(request),
        [invoice_from_dict(i.model_dump()) for i in request.invoices],
        [price_book_entry_from_dict(e.model_dump()) for e in request.price_book],
    )


@router.post("/variance/passes", response_model=PassVarianceResponse)
def pass_variance(request: CostVarianceRequest):
    summary = compute_pass_variance(*_cost_inputs(request))
    return PassVarianceResponse.model_validate(summary, from_attributes=True)


@router.post("/variance/products", response_model=ProductVarianceResponse)
def product_variance(request: CostVarianceRequest):
    summary = compute_product_variance(*_cost_inputs(request))
    return ProductVarianceResponse.model_validate(summary, from_attributes=True)


@router.post("/export/variance")
def export_variance(request: VarianceExportRequest):
    """Download the application and pass variance workbook."""
    season, products, invoices, price_book = _cost_inputs(request)
    records = [application_record_from_dict(r.model_dump()) for r in request.application_records]

    season_name = season.name if season and season.name else (str(season.year) if season else "Season")
    excel_buffer = variance_excel_service.generate_variance_excel(
        application_variance=compute_application_variance(season, products, records),
        pass_variance=compute_pass_variance(season, products, invoices, price_book),
        season_name=season_name,
    )

    filename = f"variance_{re.sub(r'[^A-Za-z0-9_-]+', '_', season_name)}.xlsx"
    return StreamingResponse(
        excel_buffer,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"'
        }
    )


# ==================== RESTRICTIONS & ALERTS ====================

@router.post("/restrictions/check", response_model=RestrictionCheckResponse)
def restrictions_check(request: RestrictionCheckRequest):
    context = RestrictionCheckContext(
        season=_season(request.season),
        fields=[field_from_dict(f.model_dump()) for f in request.fields],
        field_assignments=[field_assignment_from_dict(a.model_dump()) for a in request.field_assignments],
        application_records=[application_record_from_dict(r.model_dump()) for r in request.application_records],
        products=[product_from_dict(p.model_dump()) for p in request.products],
        historical_seasons=[_season(s) for s in request.historical_seasons],
    )
    violations = check_restrictions(
        context,
        field_id=request.field_id,
        crop_id=request.crop_id,
        timing_id=request.timing_id,
        date_applied=request.date_applied,
        products=[CandidateProduct(**c.model_dump()) for c in request.candidates],
        harvest_date=request.harvest_date,
    )
    return RestrictionCheckResponse.model_validate({
        "violations": violations,
        "has_blocking_violations": has_blocking_violations(violations),
        "by_product": group_violations_by_product(violations),
    }, from_attributes=True)


@router.post("/alerts", response_model=AlertsResponse)
def alerts(request: AlertsRequest):
    result = build_alerts(
        _season(request.season),
        _products(request),
        [inventory_item_from_dict(i.model_dump()) for i in request.inventory],
        [order_from_dict(o.model_dump()) for o in request.orders],
        [invoice_from_dict(i.model_dump()) for i in request.invoices],
        [price_book_entry_from_dict(e.model_dump()) for e in request.price_book],
        as_of=request.as_of or datetime.now(),
        overdue_days=request.overdue_days,
        price_spike_pct=request.price_spike_pct,
    )
    return AlertsResponse.model_validate({"alerts": result}, from_attributes=True)


# ==================== ADVISORY LABEL SERVICES ====================

@router.post("/labels/extract", response_model=LabelExtractionResponse)
def extract_label(request: LabelExtractRequest):
    """Advisory label/SDS extraction. The result is a suggestion to review, not catalog data."""
    service = get_label_intelligence_service()
    try:
        extraction = service.extract_label(
            label_text=request.label_text,
            label_base64=request.label_base64,
            file_name=request.file_name,
        )
    except AdvisoryServiceError as e:
        raise _advisory_http_error(e)
    return LabelExtractionResponse.model_validate(extraction, from_attributes=True)


@router.post("/labels/suggest-roles", response_model=RoleSuggestionsResponse)
def suggest_roles(request: SuggestRolesRequest):
    service = get_label_intelligence_service()
    try:
        result = service.suggest_roles(ProductInfo(**request.model_dump()))
    except AdvisoryServiceError as e:
        raise _advisory_http_error(e)
    return RoleSuggestionsResponse.model_validate(result, from_attributes=True)
