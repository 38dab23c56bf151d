"""
Application Variance Service.

Compares recorded field applications against the crop plan, per
(crop, timing, product):

- actual_rate: acre-weighted mean of recorded rates (simple mean when every
  matching record has zero acres; None when nothing was recorded)
- actual_acres / actual_total: sums over matching records
- status: not-applied -> complete / over-applied (coverage >= 95%) -> partial

Over-application is judged on totals: a row with full coverage is
'over-applied' only when the applied total exceeds plan by more than 5%.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from farmcalc.services.farm_models import ApplicationRecord, Product, Season
from farmcalc.services.planning_rules import COMPLETE_COVERAGE_RATIO, OVER_APPLICATION_RATIO
from farmcalc.services.units import to_non_negative
from farmcalc.services.usage_aggregator import extract_planned_applications

logger = logging.getLogger(__name__)

STATUS_NOT_APPLIED = "not-applied"
STATUS_PARTIAL = "partial"
STATUS_COMPLETE = "complete"
STATUS_OVER_APPLIED = "over-applied"


@dataclass
class ApplicationVarianceRow:
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
    actual_rate: Optional[float]
    actual_acres: float
    actual_total: float
    rate_variance: Optional[float]
    rate_variance_pct: Optional[float]
    total_variance: Optional[float]
    total_variance_pct: Optional[float]
    status: str
    application_count: int


@dataclass
class ApplicationVarianceTotals:
    planned_acres: float = 0.0
    applied_acres: float = 0.0
    passes_planned: int = 0
    passes_started: int = 0
    passes_complete: int = 0


@dataclass
class ApplicationVarianceSummary:
    rows: List[ApplicationVarianceRow] = field(default_factory=list)
    totals: ApplicationVarianceTotals = field(default_factory=ApplicationVarianceTotals)


@dataclass
class _ActualAccumulator:
    total_applied: float = 0.0
    total_acres: float = 0.0
    weighted_rate_sum: float = 0.0
    rate_sum: float = 0.0
    count: int = 0

    @property
    def actual_rate(self) -> Optional[float]:
        if self.count == 0:
            return None
        if self.total_acres > 0:
            return self.weighted_rate_sum / self.total_acres
        return self.rate_sum / self.count


def _aggregate_actuals(
    records: List[ApplicationRecord],
    season_id: Optional[str],
) -> Dict[Tuple[str, str, str], _ActualAccumulator]:
    actuals: Dict[Tuple[str, str, str], _ActualAccumulator] = {}
    for record in records or []:
        if season_id and record.season_id != season_id:
            continue
        acres = to_non_negative(record.acres_treated)
        for prod in record.products:
            key = (record.crop_id, record.timing_id, prod.product_id)
            acc = actuals.setdefault(key, _ActualAccumulator())
            rate = to_non_negative(prod.actual_rate)
            acc.total_applied += to_non_negative(prod.total_applied)
            acc.total_acres += acres
            acc.weighted_rate_sum += rate * acres
            acc.rate_sum += rate
            acc.count += 1
    return actuals


def classify_application_status(
    application_count: int,
    actual_acres: float,
    planned_acres: float,
    actual_total: float,
    planned_total: float,
) -> str:
    if application_count == 0:
        return STATUS_NOT_APPLIED
    if planned_acres > 0:
        coverage = actual_acres / planned_acres
    else:
        coverage = 1.0 if actual_acres > 0 else 0.0
    if coverage >= COMPLETE_COVERAGE_RATIO:
        if actual_total > planned_total * OVER_APPLICATION_RATIO:
            return STATUS_OVER_APPLIED
        return STATUS_COMPLETE
    return STATUS_PARTIAL


def _pct(delta: float, base: float) -> Optional[float]:
    return delta / base * 100 if base > 0 else None


def compute_application_variance(
    season: Optional[Season],
    products: List[Product],
    application_records: List[ApplicationRecord],
) -> ApplicationVarianceSummary:
    planned = extract_planned_applications(season, products)
    actuals = _aggregate_actuals(application_records, season.id if season else None)

    rows: List[ApplicationVarianceRow] = []
    totals = ApplicationVarianceTotals()

    for p in planned:
        acc = actuals.get((p.crop_id, p.timing_id, p.product_id))
        count = acc.count if acc else 0
        actual_rate = acc.actual_rate if acc else None
        actual_acres = acc.total_acres if acc else 0.0
        actual_total = acc.total_applied if acc else 0.0

        rate_variance = rate_variance_pct = None
        if actual_rate is not None:
            rate_variance = actual_rate - p.planned_rate
            rate_variance_pct = _pct(rate_variance, p.planned_rate)

        total_variance = total_variance_pct = None
        if count > 0:
            total_variance = actual_total - p.planned_total
            total_variance_pct = _pct(total_variance, p.planned_total)

        rows.append(ApplicationVarianceRow(
            crop_id=p.crop_id,
            crop_name=p.crop_name,
            timing_id=p.timing_id,
            timing_name=p.timing_name,
            product_id=p.product_id,
            product_name=p.product_name,
            rate_unit=p.rate_unit,
            planned_rate=p.planned_rate,
            planned_acres=p.planned_acres,
            planned_total=p.planned_total,
            actual_rate=actual_rate,
            actual_acres=actual_acres,
            actual_total=actual_total,
            rate_variance=rate_variance,
            rate_variance_pct=rate_variance_pct,
            total_variance=total_variance,
            total_variance_pct=total_variance_pct,
            status=classify_application_status(count, actual_acres, p.planned_acres, actual_total, p.planned_total),
            application_count=count,
        ))
        totals.planned_acres += p.planned_acres
        totals.applied_acres += actual_acres

    passes: Dict[Tuple[str, str], List[ApplicationVarianceRow]] = {}
    for row in rows:
        passes.setdefault((row.crop_id, row.timing_id), []).append(row)

    totals.passes_planned = len(passes)
    for pass_rows in passes.values():
        if any(r.application_count > 0 for r in pass_rows):
            totals.passes_started += 1
        if all(r.status in (STATUS_COMPLETE, STATUS_OVER_APPLIED) for r in pass_rows):
            totals.passes_complete += 1

    rows.sort(key=lambda r: (r.crop_name, r.timing_name, r.product_name))

    logger.debug(
        f"Application variance: {len(rows)} rows, "
        f"{totals.passes_started}/{totals.passes_planned} passes started"
    )
    return ApplicationVarianceSummary(rows=rows, totals=totals)
