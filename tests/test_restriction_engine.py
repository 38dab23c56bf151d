"""
Tests for label restriction checks (rotation, PHI, REI, rate and count caps).
"""
from datetime import datetime

import pytest
from farmcalc.services.farm_models import (
    ApplicationProductRecord,
    ApplicationRecord,
    ChemicalData,
    Crop,
    Field,
    FieldAssignment,
    MaxRate,
    PhiByCrop,
    Product,
    Restrictions,
    RotationRestriction,
    Season,
)
from farmcalc.services.restriction_engine import (
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    CandidateProduct,
    RestrictionCheckContext,
    check_restrictions,
    get_field_crop_history,
    get_overridable_violations,
    get_violations_by_severity,
    group_violations_by_product,
    has_blocking_violations,
)


def chem(pid="h1", name="Atrazine 4L", **restrictions):
    return Product(id=pid, name=name, chemical_data=ChemicalData(restrictions=Restrictions(**restrictions)))


def make_context(products, records=None, historical=None):
    season = Season(id="s1", year=2025, created_at="2025-01-15",
                    crops=[Crop(id="c1", name="Corn", total_acres=160)])
    return RestrictionCheckContext(
        season=season,
        fields=[Field(id="f1", name="North 40", acres=40)],
        field_assignments=[
            FieldAssignment(id="fa1", season_id="s1", field_id="f1", crop_id="c1", acres=40,
                            previous_crop_name="Soybeans"),
        ],
        application_records=records or [],
        products=products,
        historical_seasons=historical or [],
    )


def prior(rec_id, product_id, rate, unit="pt/ac", season_id="s1", field_id="f1"):
    return ApplicationRecord(
        id=rec_id, season_id=season_id, crop_id="c1", field_id=field_id, timing_id="t0",
        date_applied="2025-05-01", acres_treated=40,
        products=[ApplicationProductRecord(product_id=product_id, actual_rate=rate, rate_unit=unit)],
    )


def run(context, candidates, date_applied="2025-06-01", harvest_date=None):
    return check_restrictions(context, "f1", "c1", "t1", date_applied, candidates, harvest_date=harvest_date)


def by_type(violations, vtype):
    return [v for v in violations if v.type == vtype]


class TestPhi:
    """Pre-harvest interval."""

    def test_five_days_against_seven_day_phi(self):
        context = make_context([chem(phi_days=7)])
        violations = run(context, [CandidateProduct("h1", 1, "pt/ac")], harvest_date="2025-06-06")
        phi = by_type(violations, "phi")
        assert len(phi) == 1
        assert phi[0].severity == SEVERITY_ERROR
        assert phi[0].can_override
        assert phi[0].field_name == "North 40"

    def test_no_harvest_date_no_phi(self):
        context = make_context([chem(phi_days=7)])
        assert by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "phi") == []

    def test_exact_interval_passes(self):
        context = make_context([chem(phi_days=5)])
        violations = run(context, [CandidateProduct("h1", 1, "pt/ac")], harvest_date="2025-06-06")
        assert by_type(violations, "phi") == []

    def test_crop_specific_phi(self):
        context = make_context([chem(phi_days=3, phi_by_crop=[PhiByCrop(crop="corn", days=30)])])
        violations = run(context, [CandidateProduct("h1", 1, "pt/ac")], harvest_date="2025-06-11")
        assert len(by_type(violations, "phi")) == 1


class TestRotationAndRei:

    def test_previous_crop_inside_window(self):
        product = chem(rotation_restrictions=[RotationRestriction(crop="Soybean", months=18, notes="Carryover")])
        violations = run(make_context([product]), [CandidateProduct("h1", 1, "pt/ac")])
        rotation = by_type(violations, "rotation")
        assert len(rotation) == 1
        assert rotation[0].severity == SEVERITY_WARNING
        assert rotation[0].id == "rotation-h1-f1-Soybean"
        assert "Carryover" in rotation[0].details

    def test_window_elapsed(self):
        product = chem(rotation_restrictions=[RotationRestriction(crop="Soybean", days=120)])
        assert by_type(run(make_context([product]), [CandidateProduct("h1", 1, "pt/ac")]), "rotation") == []

    def test_history_sources(self):
        past = Season(id="s0", year=2023, crops=[Crop(id="c9", name="Sugar Beets")])
        context = make_context([], historical=[past])
        context.field_assignments.append(FieldAssignment(id="fa0", season_id="s0", field_id="f1", crop_id="c9"))
        names = sorted(h.crop_name for h in get_field_crop_history(context, "f1"))
        assert names == ["Corn", "Soybeans", "Sugar Beets"]
        assert get_field_crop_history(context, "f2") == []

    def test_rei_warning_not_overridable(self):
        violations = run(make_context([chem(rei_hours=12)]), [CandidateProduct("h1", 1, "pt/ac")])
        rei = by_type(violations, "rei")
        assert len(rei) == 1
        assert rei[0].can_override is False
        assert rei[0].reentry_at == datetime(2025, 6, 1, 12, 0)

    def test_unparseable_date_skips_date_checks(self):
        product = chem(rei_hours=12, phi_days=7,
                       max_rate_per_application=MaxRate(value=1, unit="pt/ac"))
        violations = run(make_context([product]), [CandidateProduct("h1", 2, "pt/ac")],
                         date_applied="someday", harvest_date="2025-06-06")
        assert [v.type for v in violations] == ["max-per-application"]


class TestRateCaps:
    """Seasonal, per-application and application-count caps."""

    def test_seasonal_max_exceeded(self):
        product = chem(max_rate_per_season=MaxRate(value=4, unit="pt/acre"))
        context = make_context([product], records=[prior("r1", "h1", 2), prior("r2", "h1", 1.5)])
        seasonal = by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "max-per-season")
        assert len(seasonal) == 1
        assert "4.50" in seasonal[0].details

    def test_seasonal_max_at_cap_passes(self):
        product = chem(max_rate_per_season=MaxRate(value=4, unit="pt/ac"))
        context = make_context([product], records=[prior("r1", "h1", 3)])
        assert by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "max-per-season") == []

    def test_seasonal_ignores_other_units_fields_and_seasons(self):
        product = chem(max_rate_per_season=MaxRate(value=4, unit="pt/ac"))
        records = [
            prior("r1", "h1", 10, unit="oz/ac"),
            prior("r2", "h1", 10, field_id="f2"),
            prior("r3", "h1", 10, season_id="s0"),
        ]
        context = make_context([product], records=records)
        assert by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "max-per-season") == []

    def test_unit_mismatch_skips_rate_checks(self):
        product = chem(max_rate_per_season=MaxRate(value=1, unit="oz/ac"),
                       max_rate_per_application=MaxRate(value=1, unit="oz/ac"))
        assert run(make_context([product]), [CandidateProduct("h1", 5, "pt/ac")]) == []

    def test_per_application_max(self):
        product = chem(max_rate_per_application=MaxRate(value=2, unit="fl oz/acre"))
        violations = run(make_context([product]), [CandidateProduct("h1", 3, "oz/ac")])
        assert [v.type for v in violations] == ["max-per-application"]

    def test_max_applications_reached(self):
        product = chem(max_applications_per_season=2)
        context = make_context([product], records=[prior("r1", "h1", 1), prior("r2", "h1", 1)])
        count = by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "max-applications")
        assert len(count) == 1
        assert "2 times" in count[0].details

    def test_max_applications_below_cap(self):
        product = chem(max_applications_per_season=2)
        context = make_context([product], records=[prior("r1", "h1", 1)])
        assert run(context, [CandidateProduct("h1", 1, "pt/ac")]) == []

    def test_non_numeric_max_applications_ignored(self):
        product = chem(max_applications_per_season=float("nan"))
        context = make_context([product], records=[prior("r1", "h1", 1), prior("r2", "h1", 1)])
        assert by_type(run(context, [CandidateProduct("h1", 1, "pt/ac")]), "max-applications") == []


class TestHelpers:

    @pytest.fixture
    def violations(self):
        products = [
            chem("h1", "Atrazine 4L", rei_hours=12, phi_days=7),
            chem("h2", "Glyphosate", max_rate_per_application=MaxRate(value=1, unit="qt/ac")),
        ]
        candidates = [CandidateProduct("h1", 1, "pt/ac"), CandidateProduct("h2", 2, "qt/ac"),
                      CandidateProduct("missing", 1, "pt/ac")]
        return run(make_context(products), candidates, harvest_date="2025-06-03")

    def test_grouping(self, violations):
        grouped = group_violations_by_product(violations)
        assert sorted(grouped) == ["h1", "h2"]
        assert len(grouped["h1"]) == 2

    def test_severity_and_override(self, violations):
        assert len(get_violations_by_severity(violations, SEVERITY_ERROR)) == 2
        assert len(get_overridable_violations(violations)) == 2
        assert has_blocking_violations(violations)

    def test_warnings_only_not_blocking(self):
        violations = run(make_context([chem(rei_hours=4)]), [CandidateProduct("h1", 1, "pt/ac")])
        assert not has_blocking_violations(violations)

    def test_products_without_restrictions_skipped(self):
        context = make_context([Product(id="plain", name="Plain")])
        assert run(context, [CandidateProduct("plain", 100, "gal/ac")]) == []

    def test_deterministic(self):
        context = make_context([chem(rei_hours=12, phi_days=7)])
        first = run(context, [CandidateProduct("h1", 1, "pt/ac")], harvest_date="2025-06-03")
        second = run(context, [CandidateProduct("h1", 1, "pt/ac")], harvest_date="2025-06-03")
        assert first == second
