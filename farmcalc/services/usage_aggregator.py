"""
Usage Aggregator.

Flattens a season's crop plans (crops x timings x tiered product rates) into
required product quantities with provenance:

    quantity = rate x crop.total_acres x tier.percentage / 100

Seed treatments add rate_per_cwt x planting rate / 100 x crop.total_acres.

Every other engine starts from this output.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple
import logging

from farmcalc.services.farm_models import Application, ApplicationTiming, Crop, Product, Season, SeedTreatment
from farmcalc.services.planning_rules import FL_OZ_PER_GAL, GRAMS_PER_LB, LBS_PER_CWT
from farmcalc.services.units import quantity_unit, to_non_negative

logger = logging.getLogger(__name__)

UNKNOWN_TIMING_NAME = "Unknown"
SEED_TREATMENT_TIMING_ID = "seed-treatment"
SEED_TREATMENT_TIMING_NAME = "Seed Treatment"


@dataclass
class UsageContribution:
    """One (crop, timing, tier) contribution to a product requirement."""
    crop_id: str
    crop_name: str
    timing_id: str
    timing_name: str
    tier_id: Optional[str]
    acres_treated: float
    quantity_needed: float


@dataclass
class PlannedUsageItem:
    product_id: str
    unit: str
    total_needed: float = 0.0
    usages: List[UsageContribution] = field(default_factory=list)


@dataclass
class PlannedApplication:
    """Planned target for one (crop, timing, product) triple."""
    crop_id: str
    crop_name: str
    timing_id: str
    timing_name: str
    product_id: str
    product_name: str
    planned_rate: float
    rate_unit: str
    planned_acres: float
    planned_total: float


def _treated_acres(crop: Crop, app: Application) -> Iterator[Tuple[Optional[str], float]]:
    """
    Yield (tier_id, acres) for each zone an application targets.

    An explicit acres_percentage wins over tiers. When none of the targeted
    tiers exist on the crop the application covers the whole crop.
    """
    total_acres = to_non_negative(crop.total_acres)

    if app.acres_percentage is not None:
        yield None, total_acres * to_non_negative(app.acres_percentage) / 100
        return

    resolved = False
    for tier_id in app.targeted_tier_ids():
        tier = crop.find_tier(tier_id)
        if tier is None:
            logger.debug(f"Crop {crop.id}: application {app.id} targets unknown tier {tier_id}")
            continue
        resolved = True
        yield tier_id, total_acres * to_non_negative(tier.percentage) / 100

    if not resolved:
        yield None, total_acres


def iter_plan_contributions(
    season: Optional[Season],
    products: List[Product],
) -> Iterator[Tuple[Crop, Optional[ApplicationTiming], Application, Product, Optional[str], float, float]]:
    """
    Walk every planned (crop, application, tier) combination.

    Yields (crop, timing, application, product, tier_id, acres, quantity).
    Applications whose product is not in the catalog are skipped.
    """
    if season is None:
        return

    catalog: Dict[str, Product] = {p.id: p for p in products or []}

    for crop in season.crops:
        for app in crop.applications:
            product = catalog.get(app.product_id)
            if product is None:
                logger.debug(f"Skipping application {app.id}: product {app.product_id} not in catalog")
                continue
            timing = crop.find_timing(app.timing_id)
            rate = to_non_negative(app.rate)
            for tier_id, acres in _treated_acres(crop, app):
                yield crop, timing, app, product, tier_id, acres, rate * acres


def _seed_treatment_per_acre(st: SeedTreatment) -> Tuple[float, str]:
    """Product per acre for a seed treatment: oz/cwt -> gal, g/cwt -> lbs."""
    cwt_per_acre = to_non_negative(st.planting_rate_lbs_per_acre) / LBS_PER_CWT
    amount = to_non_negative(st.rate_per_cwt) * cwt_per_acre
    if (st.rate_unit or "oz").strip().lower() == "g":
        return amount / GRAMS_PER_LB, "lbs"
    return amount / FL_OZ_PER_GAL, "gal"


def iter_seed_treatment_contributions(
    season: Optional[Season],
    products: List[Product],
) -> Iterator[Tuple[Crop, SeedTreatment, str, float]]:
    """
    Walk every seed treatment of the season.

    Yields (crop, seed_treatment, unit, quantity). Treatments cover the whole
    crop; those whose product is not in the catalog are skipped.
    """
    if season is None:
        return

    catalog_ids = {p.id for p in products or []}

    for crop in season.crops:
        for st in crop.seed_treatments:
            if st.product_id not in catalog_ids:
                logger.debug(f"Skipping seed treatment {st.id}: product {st.product_id} not in catalog")
                continue
            per_acre, unit = _seed_treatment_per_acre(st)
            yield crop, st, unit, per_acre * to_non_negative(crop.total_acres)


def aggregate_usage(season: Optional[Season], products: List[Product]) -> List[PlannedUsageItem]:
    """
    Total required quantity per product for the season.

    Lines are keyed by (product_id, quantity unit); the same product entered
    in two different units yields two lines. Seed treatments are listed under
    the "Seed Treatment" pass. A None season yields [].
    """
    usage_map: Dict[Tuple[str, str], PlannedUsageItem] = {}

    def add(product_id: str, unit: str, contribution: UsageContribution):
        item = usage_map.get((product_id, unit))
        if item is None:
            item = PlannedUsageItem(product_id=product_id, unit=unit)
            usage_map[(product_id, unit)] = item
        item.total_needed += contribution.quantity_needed
        item.usages.append(contribution)

    for crop, timing, app, _product, tier_id, acres, quantity in iter_plan_contributions(season, products):
        add(app.product_id, quantity_unit(app.rate_unit), UsageContribution(
            crop_id=crop.id,
            crop_name=crop.name,
            timing_id=app.timing_id,
            timing_name=timing.name if timing else UNKNOWN_TIMING_NAME,
            tier_id=tier_id,
            acres_treated=acres,
            quantity_needed=quantity,
        ))

    for crop, st, unit, quantity in iter_seed_treatment_contributions(season, products):
        add(st.product_id, unit, UsageContribution(
            crop_id=crop.id,
            crop_name=crop.name,
            timing_id=SEED_TREATMENT_TIMING_ID,
            timing_name=SEED_TREATMENT_TIMING_NAME,
            tier_id=None,
            acres_treated=to_non_negative(crop.total_acres),
            quantity_needed=quantity,
        ))

    return list(usage_map.values())


def extract_planned_applications(season: Optional[Season], products: List[Product]) -> List[PlannedApplication]:
    """
    Planned targets per (crop, timing, product).

    A product planned on several tiers of the same pass is merged; its
    planned rate is the acre-weighted rate across those tiers. Crops with no
    acreage and applications on unknown timings are left out.
    """
    result: Dict[Tuple[str, str, str], PlannedApplication] = {}

    for crop, timing, app, product, _tier_id, acres, quantity in iter_plan_contributions(season, products):
        if timing is None or to_non_negative(crop.total_acres) <= 0:
            continue

        key = (crop.id, app.timing_id, app.product_id)
        planned = result.get(key)
        if planned is None:
            planned = PlannedApplication(
                crop_id=crop.id,
                crop_name=crop.name,
                timing_id=app.timing_id,
                timing_name=timing.name,
                product_id=app.product_id,
                product_name=product.name,
                planned_rate=to_non_negative(app.rate),
                rate_unit=app.rate_unit,
                planned_acres=0.0,
                planned_total=0.0,
            )
            result[key] = planned

        planned.planned_acres += acres
        planned.planned_total += quantity

    for planned in result.values():
        if planned.planned_acres > 0:
            planned.planned_rate = planned.planned_total / planned.planned_acres

    return list(result.values())
