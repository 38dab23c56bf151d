"""
Restriction Engine.

Validates a planned or recorded application against label restrictions:

1. Rotation       - restricted crop grown on the field within the window (warning)
2. PHI            - pre-harvest interval, only when a harvest date is given (error)
3. REI            - restricted entry interval, informational (warning, not overridable)
4. Seasonal max   - prior recorded rate + candidate rate over the season cap (error)
5. Max per app    - candidate rate over the per-application cap (error)
6. Max apps       - prior applications of the product already at the cap (error)

The engine is advisory. It returns violations and never blocks, persists or
mutates anything; the caller decides what to do with them. Rate checks only
run when the candidate unit and the cap unit normalize to the same key.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

from farmcalc.services.farm_models import (
    ApplicationRecord,
    DateLike,
    Field,
    FieldAssignment,
    MaxRate,
    Product,
    Restrictions,
    RotationRestriction,
    Season,
    parse_datetime,
)
from farmcalc.services.planning_rules import DAYS_PER_MONTH
from farmcalc.services.units import rate_units_match, to_num

logger = logging.getLogger(__name__)

SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"

TYPE_ROTATION = "rotation"
TYPE_PHI = "phi"
TYPE_REI = "rei"
TYPE_MAX_PER_SEASON = "max-per-season"
TYPE_MAX_PER_APPLICATION = "max-per-application"
TYPE_MAX_APPLICATIONS = "max-applications"

UNKNOWN_FIELD_NAME = "Unknown Field"


@dataclass
class RestrictionViolation:
    id: str
    type: str
    severity: str
    product_id: str
    product_name: str
    message: str
    details: str
    can_override: bool
    field_id: Optional[str] = None
    field_name: Optional[str] = None
    reentry_at: Optional[datetime] = None


@dataclass
class RestrictionCheckContext:
    season: Season
    fields: List[Field] = field(default_factory=list)
    field_assignments: List[FieldAssignment] = field(default_factory=list)
    application_records: List[ApplicationRecord] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    historical_seasons: List[Season] = field(default_factory=list)


@dataclass
class CandidateProduct:
    """A product in the application being validated."""
    product_id: str
    rate: float
    rate_unit: str
    acres: float = 0.0


@dataclass
class CropHistoryItem:
    crop_name: str
    date: datetime
    season_year: int


# ==================== HISTORY ====================

def _season_start(season: Season) -> datetime:
    created = parse_datetime(season.created_at)
    return created if created is not None else datetime(season.year, 1, 1)


def get_field_crop_history(context: RestrictionCheckContext, field_id: str) -> List[CropHistoryItem]:
    """
    Crops known to have been on a field.

    Current-season crops are dated at the season's creation (or Jan 1 of its
    year), an assignment's recorded previous crop at Jan 1 of the prior year,
    and historical-season crops the same way as the current season.
    """
    season = context.season
    history: List[CropHistoryItem] = []

    for assignment in context.field_assignments:
        if assignment.field_id != field_id or assignment.season_id != season.id:
            continue
        crop = season.find_crop(assignment.crop_id)
        if crop is not None:
            history.append(CropHistoryItem(crop.name, _season_start(season), season.year))
        if assignment.previous_crop_name:
            history.append(CropHistoryItem(
                assignment.previous_crop_name, datetime(season.year - 1, 1, 1), season.year - 1
            ))

    for past in context.historical_seasons or []:
        for assignment in context.field_assignments:
            if assignment.field_id != field_id or assignment.season_id != past.id:
                continue
            crop = past.find_crop(assignment.crop_id)
            if crop is not None:
                history.append(CropHistoryItem(crop.name, _season_start(past), past.year))

    return history


# ==================== CHECKS ====================

def _rotation_window_days(restriction: RotationRestriction) -> float:
    if restriction.days:
        return to_num(restriction.days)
    if restriction.months:
        return to_num(restriction.months) * DAYS_PER_MONTH
    return 0.0


def check_rotation(
    history: List[CropHistoryItem],
    product: Product,
    field_id: str,
    field_name: str,
    restrictions: List[RotationRestriction],
    applied_at: datetime,
) -> List[RestrictionViolation]:
    violations = []
    for restriction in restrictions or []:
        restricted = (restriction.crop or "").lower()
        window = _rotation_window_days(restriction)
        if not restricted or window <= 0:
            continue

        matches = [h for h in history if restricted in h.crop_name.lower()]
        if not matches:
            continue
        days_since = min(max(0, (applied_at - h.date).days) for h in matches)
        if days_since >= window:
            continue

        details = (
            f"{product.name} has a {window:g}-day rotation restriction for {restriction.crop}. "
            f"{restriction.crop} was grown on this field {days_since} days ago."
        )
        if restriction.notes:
            details += f" Note: {restriction.notes}"
        violations.append(RestrictionViolation(
            id=f"{TYPE_ROTATION}-{product.id}-{field_id}-{restriction.crop}",
            type=TYPE_ROTATION,
            severity=SEVERITY_WARNING,
            product_id=product.id,
            product_name=product.name,
            field_id=field_id,
            field_name=field_name,
            message=f"Rotation restriction: {restriction.crop}",
            details=details,
            can_override=True,
        ))
    return violations


def phi_days_for_crop(restrictions: Restrictions, crop_name: Optional[str]) -> float:
    if crop_name:
        lowered = crop_name.lower()
        for entry in restrictions.phi_by_crop:
            if entry.crop and entry.crop.lower() == lowered:
                return to_num(entry.days)
    return to_num(restrictions.phi_days)


def check_phi(
    product: Product,
    field_id: str,
    field_name: str,
    phi_days: float,
    applied_at: datetime,
    harvest_at: datetime,
) -> Optional[RestrictionViolation]:
    days_to_harvest = (harvest_at - applied_at).days
    if days_to_harvest >= phi_days:
        return None
    return RestrictionViolation(
        id=f"{TYPE_PHI}-{product.id}-{field_id}",
        type=TYPE_PHI,
        severity=SEVERITY_ERROR,
        product_id=product.id,
        product_name=product.name,
        field_id=field_id,
        field_name=field_name,
        message=f"PHI violation: {phi_days:g} days required",
        details=(
            f"{product.name} requires a {phi_days:g}-day pre-harvest interval. "
            f"Application on {applied_at.date().isoformat()} allows only {days_to_harvest} days "
            f"before harvest on {harvest_at.date().isoformat()}."
        ),
        can_override=True,
    )


def rei_warning(
    product: Product,
    field_id: str,
    field_name: str,
    rei_hours: float,
    applied_at: datetime,
) -> RestrictionViolation:
    reentry_at = applied_at + timedelta(hours=rei_hours)
    return RestrictionViolation(
        id=f"{TYPE_REI}-{product.id}-{field_id}",
        type=TYPE_REI,
        severity=SEVERITY_WARNING,
        product_id=product.id,
        product_name=product.name,
        field_id=field_id,
        field_name=field_name,
        message=f"REI: {rei_hours:g} hours",
        details=(
            f"{product.name} has a {rei_hours:g}-hour restricted entry interval. "
            f"Do not enter field until {reentry_at.isoformat(sep=' ', timespec='minutes')}."
        ),
        can_override=False,
        reentry_at=reentry_at,
    )


def _prior_records(context: RestrictionCheckContext, field_id: str, crop_id: str) -> List[ApplicationRecord]:
    return [
        r for r in context.application_records
        if r.field_id == field_id and r.crop_id == crop_id and r.season_id == context.season.id
    ]


def check_seasonal_max_rate(
    prior: List[ApplicationRecord],
    product: Product,
    field_id: str,
    field_name: str,
    candidate: CandidateProduct,
    max_rate: MaxRate,
) -> Optional[RestrictionViolation]:
    if not rate_units_match(candidate.rate_unit, max_rate.unit):
        logger.debug(
            f"Seasonal max for {product.id} skipped: {candidate.rate_unit} vs {max_rate.unit}"
        )
        return None

    applied = 0.0
    for record in prior:
        prod = record.find_product(product.id)
        if prod is None:
            continue
        if prod.rate_unit and not rate_units_match(prod.rate_unit, candidate.rate_unit):
            continue
        applied += to_num(prod.actual_rate)

    rate = to_num(candidate.rate)
    total = applied + rate
    if total <= to_num(max_rate.value):
        return None
    return RestrictionViolation(
        id=f"{TYPE_MAX_PER_SEASON}-{product.id}-{field_id}",
        type=TYPE_MAX_PER_SEASON,
        severity=SEVERITY_ERROR,
        product_id=product.id,
        product_name=product.name,
        field_id=field_id,
        field_name=field_name,
        message=f"Exceeds seasonal max: {max_rate.value:g} {max_rate.unit}",
        details=(
            f"{product.name} has a seasonal maximum of {max_rate.value:g} {max_rate.unit}. "
            f"Already applied: {applied:.2f} {candidate.rate_unit}. "
            f"This application ({rate:g} {candidate.rate_unit}) would bring total to "
            f"{total:.2f} {candidate.rate_unit}."
        ),
        can_override=True,
    )


def check_max_rate_per_application(
    product: Product,
    field_id: str,
    field_name: str,
    candidate: CandidateProduct,
    max_rate: MaxRate,
) -> Optional[RestrictionViolation]:
    if not rate_units_match(candidate.rate_unit, max_rate.unit):
        logger.debug(
            f"Per-application max for {product.id} skipped: {candidate.rate_unit} vs {max_rate.unit}"
        )
        return None
    rate = to_num(candidate.rate)
    if rate <= to_num(max_rate.value):
        return None
    return RestrictionViolation(
        id=f"{TYPE_MAX_PER_APPLICATION}-{product.id}-{field_id}",
        type=TYPE_MAX_PER_APPLICATION,
        severity=SEVERITY_ERROR,
        product_id=product.id,
        product_name=product.name,
        field_id=field_id,
        field_name=field_name,
        message=f"Rate exceeds max per application: {max_rate.value:g} {max_rate.unit}",
        details=(
            f"{product.name} has a maximum rate of {max_rate.value:g} {max_rate.unit} per application. "
            f"Planned rate: {rate:g} {candidate.rate_unit}."
        ),
        can_override=True,
    )


def check_max_applications(
    prior: List[ApplicationRecord],
    product: Product,
    field_id: str,
    field_name: str,
    max_applications: int,
) -> Optional[RestrictionViolation]:
    count = sum(1 for r in prior if r.find_product(product.id) is not None)
    if count < max_applications:
        return None
    return RestrictionViolation(
        id=f"{TYPE_MAX_APPLICATIONS}-{product.id}-{field_id}",
        type=TYPE_MAX_APPLICATIONS,
        severity=SEVERITY_ERROR,
        product_id=product.id,
        product_name=product.name,
        field_id=field_id,
        field_name=field_name,
        message=f"Max applications reached: {max_applications} per season",
        details=(
            f"{product.name} allows a maximum of {max_applications} applications per season. "
            f"Already applied {count} times on this field."
        ),
        can_override=True,
    )


# ==================== ENTRY POINT ====================

def check_restrictions(
    context: RestrictionCheckContext,
    field_id: str,
    crop_id: str,
    timing_id: str,
    date_applied: DateLike,
    products: List[CandidateProduct],
    harvest_date: Optional[DateLike] = None,
) -> List[RestrictionViolation]:
    """
    Check every candidate product against its label restrictions.

    Products missing from the catalog or without restriction data are
    skipped. `timing_id` identifies the pass being validated; the checks
    themselves are per field, crop and season.
    """
    violations: List[RestrictionViolation] = []

    fld = next((f for f in context.fields if f.id == field_id), None)
    field_name = fld.name if fld and fld.name else UNKNOWN_FIELD_NAME
    crop = context.season.find_crop(crop_id)
    catalog = {p.id: p for p in context.products}

    applied_at = parse_datetime(date_applied)
    harvest_at = parse_datetime(harvest_date)
    if applied_at is None:
        logger.debug(f"Unparseable application date {date_applied!r}; date-based checks skipped")

    history = get_field_crop_history(context, field_id)
    prior = _prior_records(context, field_id, crop_id)

    for candidate in products or []:
        product = catalog.get(candidate.product_id)
        if product is None or product.chemical_data is None:
            continue
        restrictions = product.chemical_data.restrictions
        if restrictions is None:
            continue

        if applied_at is not None:
            violations.extend(check_rotation(
                history, product, field_id, field_name, restrictions.rotation_restrictions, applied_at
            ))

            phi_days = phi_days_for_crop(restrictions, crop.name if crop else None)
            if phi_days > 0 and harvest_at is not None:
                phi = check_phi(product, field_id, field_name, phi_days, applied_at, harvest_at)
                if phi:
                    violations.append(phi)

            if to_num(restrictions.rei_hours) > 0:
                violations.append(rei_warning(
                    product, field_id, field_name, to_num(restrictions.rei_hours), applied_at
                ))

        if restrictions.max_rate_per_season:
            seasonal = check_seasonal_max_rate(
                prior, product, field_id, field_name, candidate, restrictions.max_rate_per_season
            )
            if seasonal:
                violations.append(seasonal)

        if restrictions.max_rate_per_application:
            per_app = check_max_rate_per_application(
                product, field_id, field_name, candidate, restrictions.max_rate_per_application
            )
            if per_app:
                violations.append(per_app)

        max_applications = int(to_num(restrictions.max_applications_per_season))
        if max_applications > 0:
            count = check_max_applications(prior, product, field_id, field_name, max_applications)
            if count:
                violations.append(count)

    logger.debug(
        f"Restriction check {field_id}/{crop_id}/{timing_id}: {len(violations)} violation(s)"
    )
    return violations


# ==================== HELPERS ====================

def get_overridable_violations(violations: List[RestrictionViolation]) -> List[RestrictionViolation]:
    return [v for v in violations if v.can_override]


def get_violations_by_severity(violations: List[RestrictionViolation], severity: str) -> List[RestrictionViolation]:
    return [v for v in violations if v.severity == severity]


def group_violations_by_product(violations: List[RestrictionViolation]) -> Dict[str, List[RestrictionViolation]]:
    grouped: Dict[str, List[RestrictionViolation]] = {}
    for v in violations:
        grouped.setdefault(v.product_id, []).append(v)
    return grouped


def has_blocking_violations(violations: List[RestrictionViolation]) -> bool:
    """True when any error-severity violation is present (all errors are overridable)."""
    return any(v.severity == SEVERITY_ERROR and v.can_override for v in violations)
