"""Tests for CoralQueryService over the seeded mock dataset."""

import numpy as np
import pytest

from coralstats.api.service import CoralQueryService
from coralstats.demography.population_matrix import dominant_eigenvalue
from coralstats.demography.scenarios import SCENARIOS, apply_improvement, scenario_cells
from coralstats.errors import (
    InsufficientData,
    InvalidBreakpoints,
    InvalidParameter,
    InvalidRange,
    NoDataFound,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def service(mock_repository, make_config):
    return CoralQueryService(mock_repository, make_config(bootstrap_replicates=200))


class TestSurvival:

    def test_individual_unfiltered(self, service, mock_repository):
        result = service.survival_individual()

        assert len(result.data) == len(mock_repository.survival_data)
        assert result.meta["total_records"] == len(result.data)
        assert "Florida" in result.meta["regions"]

    def test_region_filter(self, service):
        result = service.survival_individual(region="Florida,USVI")

        assert set(result.data["region"]) <= {"Florida", "USVI"}

    def test_unknown_region(self, service):
        with pytest.raises(NoDataFound) as exc:
            service.survival_individual(region="Atlantis")

        assert exc.value.status_code == 404
        assert exc.value.details["filters"]["region"] == ["Atlantis"]

    def test_invalid_data_type(self, service):
        with pytest.raises(InvalidParameter) as exc:
            service.survival_individual(data_type="lab")

        assert exc.value.details["parameter"] == "data_type"

    def test_reversed_years(self, service):
        with pytest.raises(InvalidRange):
            service.survival_individual(year_min="2020", year_max="2010")

    def test_year_out_of_bounds(self, service):
        with pytest.raises(InvalidParameter):
            service.survival_individual(year_min="1800")

    def test_by_size_default_classes(self, service):
        result = service.survival_by_size()
        classes = [r["size_class"] for r in result.data]

        assert classes == sorted(classes)
        assert sum(r["n"] for r in result.data) == result.meta["total_records"]
        assert result.meta["labels"] == ["SC1", "SC2", "SC3", "SC4", "SC5"]
        for r in result.data:
            assert 0.0 <= r["ci_lower"] <= r["rate"] <= r["ci_upper"] <= 1.0

    def test_by_size_custom_breaks(self, service):
        result = service.survival_by_size(breaks="0,100,Inf")

        assert result.meta["labels"] == ["SC1", "SC2"]
        assert len(result.data) == 2

    def test_by_size_bad_breaks(self, service):
        with pytest.raises(InvalidBreakpoints):
            service.survival_by_size(breaks="100,50")

    def test_model(self, service):
        result = service.survival_model()

        assert result.data.coefficients["log_size"]["estimate"] > 0
        assert result.meta["formula"] == "survived ~ log(size_cm2)"
        assert result.meta["n"] == result.data.n

    def test_by_size_and_type(self, service):
        result = service.survival_by_size_and_type()

        assert set(result.meta["coral_types"]) == {"Natural", "Restored"}
        assert {r["coral_type"] for r in result.data} == {"Natural", "Restored"}

    def test_by_study_sorted_by_n(self, service):
        ns = [r["n"] for r in service.survival_by_study().data]

        assert ns == sorted(ns, reverse=True)

    def test_stratified(self, service):
        result = service.survival_by_study_stratified(fragment_status="Y")

        assert {r["fragment_status"] for r in result.data} == {"fragment"}
        assert result.meta["quality"].sample_size == result.meta["total_n"]


class TestGrowth:

    def test_by_size_is_continuous(self, service):
        result = service.growth_by_size()

        assert all("median" in r and "pct_positive" in r for r in result.data)

    def test_transitions(self, service):
        table = service.growth_transitions().data

        np.testing.assert_allclose(table[["SC1", "SC2", "SC3", "SC4", "SC5"]].sum(axis=1), 1.0)

    def test_transitions_insufficient(self, mock_repository, make_config):
        service = CoralQueryService(mock_repository,
                                    make_config(aggregation={"min_n_transitions": 10000}))
        with pytest.raises(InsufficientData) as exc:
            service.growth_transitions()

        assert exc.value.details["minimum_required"] == 10000

    def test_positive_growth_probability(self, service):
        result = service.positive_growth_probability()

        assert 0 < result.meta["pct_positive"] < 100
        assert result.meta["pct_shrinking"] == pytest.approx(100 - result.meta["pct_positive"])
        assert result.data.outcome == "positive_growth"

    def test_fragmentation_by_size(self, service):
        result = service.growth_fragmentation_by_size()

        assert all(0.0 <= r["rate"] <= 1.0 for r in result.data)


class TestAnalysis:

    def test_meta_analysis(self, service, mock_repository):
        result = service.meta_analysis()

        assert result.data.k == mock_repository.survival_data["study"].nunique()
        assert result.meta["total_n"] == result.data.total_n

    def test_quality(self, service, mock_repository):
        result = service.quality_metrics()

        assert result.data.sample_size == len(mock_repository.survival_data)
        assert result.data.r_squared is not None
        assert result.meta["using_mock_data"] is True

    def test_quality_no_data(self, service):
        with pytest.raises(NoDataFound):
            service.quality_metrics(region="Atlantis")


class TestPopulation:

    def test_matrix(self, service):
        result = service.elasticity_matrix()

        assert len(result.data) == 25
        assert result.meta["total_elasticity"] == pytest.approx(100.0, abs=0.5)
        assert result.meta["lambda"] > 0

    def test_breakdown_filtered_and_sorted(self, service):
        result = service.elasticity_breakdown()
        values = [e["elasticity_pct"] for e in result.data["transitions"]]

        assert values == sorted(values, reverse=True)
        assert min(values) >= 0.5
        assert {t["category"] for t in result.data["category_totals"]} <= {
            "Survival", "Growth", "Shrinkage", "Reproduction"}

    def test_summary(self, service):
        result = service.elasticity_summary()
        lam = result.data["lambda"]

        assert lam["ci_lower"] <= lam["estimate"] <= lam["ci_upper"]
        assert 0 <= lam["p_decline"] <= 100
        assert sum(result.data["elasticity"].values()) == pytest.approx(100.0, abs=0.5)
        assert sum(result.data["stable_stage_distribution"].values()) == pytest.approx(1.0)
        assert result.meta["low_confidence"] is True

    def test_projection(self, service):
        result = service.elasticity_projection(years="5")

        assert [r["year"] for r in result.data] == [0, 1, 2, 3, 4, 5]
        assert result.data[0]["population"] == 100.0

    @pytest.mark.parametrize("years", ["0", "101", "2.5", "ten"])
    def test_projection_bad_years(self, service, years):
        with pytest.raises(InvalidParameter) as exc:
            service.elasticity_projection(years=years)

        assert exc.value.details["parameter"] == "years"

    def test_scenarios(self, service):
        result = service.elasticity_scenarios(improvement_pct="10")
        deltas = [c["delta_lambda"] for c in result.data["combined"]]

        assert len(result.data["combined"]) == 5
        assert deltas == sorted(deltas, reverse=True)
        assert {p["feasibility"] for p in result.data["path_to_stability"]} <= {
            "feasible", "moderate", "difficult", "unreachable"}
        assert result.data["stability_target"]["scenario_id"] == "elasticity_significant"

    def test_single_scenario(self, service):
        result = service.elasticity_scenarios(scenario="protect_adults")

        assert [c["scenario_id"] for c in result.data["combined"]] == ["protect_adults"]
        assert result.meta["improvement_pct"] == 10.0

    @pytest.mark.parametrize("kwargs", [
        {"improvement_pct": "0"},
        {"improvement_pct": "150"},
        {"scenario": "dredging"},
    ])
    def test_scenario_bad_parameters(self, service, kwargs):
        with pytest.raises(InvalidParameter):
            service.elasticity_scenarios(**kwargs)


class TestDescriptive:

    def test_sites(self, service):
        everything = service.sites(region="all")
        florida = service.sites(region="Florida")

        assert set(florida.data["region"]) == {"Florida"}
        assert len(florida.data) < len(everything.data)
        assert {"site_id", "name", "latitude", "longitude", "studies"} <= set(florida.data.columns)

    def test_sites_no_match(self, service):
        with pytest.raises(NoDataFound):
            service.sites(region="Atlantis")

    def test_regions(self, service, mock_repository):
        data = service.regions().data

        assert set(data["region"]) == set(mock_repository.survival_data["region"])
        assert data["n_observations"].is_monotonic_decreasing

    def test_overview(self, service, mock_repository):
        data = service.overview().data

        assert data["survival_observations"] == len(mock_repository.survival_data)
        assert data["total_observations"] == (len(mock_repository.survival_data)
                                              + len(mock_repository.growth_data))
        assert sum(data["region_breakdown"].values()) == data["survival_observations"]


class TestErrorPrecedence:

    @pytest.mark.parametrize("route", [
        "survival_by_size_and_type",
        "growth_fragmentation_by_size",
        "growth_transitions",
        "positive_growth_probability",
        "elasticity_matrix",
        "elasticity_summary",
        "outplant_recommendation",
        "compare_size_classes",
    ])
    def test_unknown_region_is_no_data(self, service, route):
        with pytest.raises(NoDataFound) as exc:
            getattr(service, route)(region="Atlantis")

        assert exc.value.status_code == 404
        assert exc.value.details["filters"]["region"] == ["Atlantis"]


class TestSizeClassCoverage:

    def test_finite_last_breakpoint_keeps_every_row(self, service):
        result = service.survival_by_size(breaks="0,25,100")

        assert result.meta["labels"] == ["SC1", "SC2"]
        assert sum(r["n"] for r in result.data) == result.meta["total_records"]


class TestScenarioFeasibility:

    def test_combined_scenarios_stop_at_feasible_bound(self, service):
        result = service.elasticity_scenarios(improvement_pct="100")
        _, model, _ = service._population()
        matrix = model.matrix

        assert any(c["capped"] for c in result.data["combined"])
        for c in result.data["combined"]:
            definition = SCENARIOS[c["scenario_id"]]
            cells = scenario_cells(matrix, c["scenario_id"])

            assert c["requested_pct"] == 100.0
            assert c["applied_pct"] <= 100.0
            assert c["capped"] == (c["applied_pct"] < 100.0)
            improved = apply_improvement(matrix, cells, c["applied_pct"], definition.mode)
            assert (improved.survival_part.sum(axis=0) <= 1.0 + 1e-9).all()
            assert dominant_eigenvalue(improved.values) == pytest.approx(c["new_lambda"])


class TestFragmentationFilter:

    def test_region_filters_fragmentation(self, service, mock_repository):
        regions = ["Florida", "USVI", "Puerto Rico"]
        counts, _, pooled = service._population(region=",".join(regions))
        frag = mock_repository.fragmentation()

        assert pooled == []
        assert counts.fragmentation_n.sum() == frag["region"].isin(regions).sum()
        assert counts.fragmentation_n.sum() < len(frag)

    def test_pooling_reported_in_meta(self, service):
        assert service.elasticity_matrix().meta["fragmentation_pooled_over"] == []
        assert service.elasticity_matrix(data_type="field").meta[
            "fragmentation_pooled_over"] == ["data_type"]


class TestRecommendation:

    def test_outplant(self, service, mock_repository):
        result = service.outplant_recommendation(goal="survival")
        rec = result.data
        best_rate = max(c.survival_rate for c in rec.classes)

        assert rec.goal == "survival"
        assert rec.recommended.survival_rate == best_rate
        assert rec.classes[0] is rec.recommended
        assert rec.confidence in {"high", "medium", "low", "very_low"}
        assert rec.caveats[-1] == "Local site conditions may significantly affect outcomes"
        assert result.meta["total_survival_records"] == len(mock_repository.survival_data)
        assert result.meta["scoring"] == "100% survival rate weight"
        assert 0.0 <= result.meta["i_squared"] <= 100.0

    def test_default_goal_is_balance(self, service):
        assert service.outplant_recommendation().data.goal == "balance"

    def test_regional_caveat(self, service):
        caveats = service.outplant_recommendation(region="Florida,USVI,Puerto Rico").data.caveats

        assert "Regional estimates may differ from pooled data shown" in caveats

    def test_fragment_caveat(self, service):
        caveats = service.outplant_recommendation(fragment="Y").data.caveats

        assert "Fragment survival typically lower than whole colonies" in caveats
        assert "Regional estimates may differ from pooled data shown" not in caveats

    def test_invalid_goal(self, service):
        with pytest.raises(InvalidParameter) as exc:
            service.outplant_recommendation(goal="speed")

        assert exc.value.details["parameter"] == "goal"
        assert exc.value.details["allowed"] == ["survival", "growth", "balance"]

    def test_compare_sorted_with_one_recommended(self, service):
        result = service.compare_size_classes(goal="growth")
        scores = [r["score"] for r in result.data]

        assert scores == sorted(scores, reverse=True)
        assert [r["is_recommended"] for r in result.data].count(True) == 1
        assert result.data[0]["is_recommended"] is True
        assert all(r["score"] == r["score_growth"] for r in result.data)
        assert result.meta["interpretation"].startswith("For goal 'growth'")

    def test_prediction_interval_contains_confidence_interval(self, service):
        for r in service.compare_size_classes().data:
            assert r["survival_pi_lower"] <= r["survival_ci_lower"] <= r["survival_rate"]
            assert r["survival_rate"] <= r["survival_ci_upper"] <= r["survival_pi_upper"]
