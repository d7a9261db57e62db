"""Tests for random-effects meta-analysis."""

import numpy as np
import pandas as pd
import pytest
from scipy.special import logit

from coralstats.demography.meta_analysis import (
    _study_effect,
    analyze,
    egger_test,
    interpret_i_squared,
    study_effects_from_observations,
)
from coralstats.errors import InsufficientData

pytestmark = pytest.mark.unit

RATES = [0.86, 0.57, 0.81, 0.65]


@pytest.fixture
def meta_config(internal_config):
    return internal_config.meta_analysis


@pytest.fixture
def four_studies():
    return [_study_effect(f"study_{i}", 100, int(round(r * 100)), 0.5)
            for i, r in enumerate(RATES)]


class TestFourStudyExample:

    def test_pooled_estimate_within_inputs(self, four_studies, meta_config):
        result = analyze(four_studies, meta_config)

        assert min(RATES) < result.pooled_estimate < max(RATES)
        assert result.ci_lower < result.pooled_estimate < result.ci_upper
        assert result.k == 4
        assert result.total_n == 400

    def test_considerable_heterogeneity(self, four_studies, meta_config):
        het = analyze(four_studies, meta_config).heterogeneity

        assert het.i_squared > 75
        assert het.interpretation == "considerable"
        assert het.tau_squared > 0
        assert het.q_df == 3
        assert het.thresholds == {"moderate": 25.0, "substantial": 50.0, "considerable": 75.0}

    def test_prediction_interval_wider_than_ci(self, four_studies, meta_config):
        result = analyze(four_studies, meta_config)

        assert result.pi_lower < result.ci_lower
        assert result.pi_upper > result.ci_upper

    def test_weights_sum_to_one_and_sorted(self, four_studies, meta_config):
        effects = analyze(four_studies, meta_config).per_study_effects

        assert sum(e.weight for e in effects) == pytest.approx(1.0)
        weights = [e.weight for e in effects]
        assert weights == sorted(weights, reverse=True)
        for e in effects:
            assert e.ci_lower < e.proportion < e.ci_upper

    def test_leave_one_out(self, four_studies, meta_config):
        result = analyze(four_studies, meta_config)
        loo = {r.excluded_study: r for r in result.leave_one_out}

        assert set(loo) == {"study_0", "study_1", "study_2", "study_3"}
        # dropping the lowest study raises the pooled estimate
        assert loo["study_1"].pooled_estimate > result.pooled_estimate
        assert loo["study_1"].change > 0

    def test_publication_bias_present(self, four_studies, meta_config):
        """Equal n gives near-equal precision; the test may be None but never fabricated."""
        bias = analyze(four_studies, meta_config).publication_bias

        if bias is not None:
            assert 0.0 <= bias.p_value <= 1.0


class TestHeterogeneity:

    def test_homogeneous_studies(self, meta_config):
        effects = [_study_effect(s, 100, 70, 0.5) for s in "abc"]
        result = analyze(effects, meta_config)

        assert result.heterogeneity.i_squared == 0.0
        assert result.heterogeneity.tau_squared == 0.0
        assert result.heterogeneity.interpretation == "low"
        assert result.pooled_estimate == pytest.approx(0.70)

    def test_interpretation_thresholds_configurable(self, make_config):
        thresholds = make_config(meta_analysis={"i2_thresholds": {
            "moderate": 10, "substantial": 20, "considerable": 95}}).meta_analysis.i2_thresholds

        assert interpret_i_squared(90, thresholds) == "substantial"
        assert interpret_i_squared(96, thresholds) == "considerable"
        assert interpret_i_squared(5, thresholds) == "low"


class TestSmallK:

    def test_single_study(self, meta_config):
        result = analyze([_study_effect("only", 50, 40, 0.5)], meta_config)

        assert result.k == 1
        assert result.pooled_estimate == pytest.approx(0.8)
        assert result.heterogeneity.i_squared == 0.0
        assert result.heterogeneity.q_pvalue is None
        assert result.publication_bias is None
        assert result.leave_one_out == ()

    def test_two_studies_no_egger(self, meta_config):
        effects = [_study_effect("a", 50, 40, 0.5), _study_effect("b", 80, 30, 0.5)]

        assert analyze(effects, meta_config).publication_bias is None
        assert egger_test(effects) is None

    def test_no_studies(self, meta_config):
        with pytest.raises(InsufficientData):
            analyze([], meta_config)


class TestStudyEffects:

    def test_continuity_correction(self):
        all_survived = _study_effect("x", 20, 20, 0.5)

        assert all_survived.proportion == 1.0
        assert all_survived.effect == pytest.approx(np.log(20.5 / 0.5))
        assert np.isfinite(all_survived.variance)

    def test_logit_effect(self):
        effect = _study_effect("x", 100, 86, 0.5)

        assert effect.effect == pytest.approx(logit(0.86))
        assert effect.variance == pytest.approx(1 / 86 + 1 / 14)

    def test_from_observations(self):
        frame = pd.DataFrame({
            "study": ["a"] * 4 + ["b"] * 3 + [None],
            "survived": [1, 1, 0, 1, 0, 0, 1, 1],
            "fragment_status": ["fragment"] * 4 + ["colony", "fragment", "colony", "colony"],
        })
        effects = {e.study: e for e in study_effects_from_observations(frame)}

        assert set(effects) == {"a", "b"}
        assert (effects["a"].n, effects["a"].events) == (4, 3)
        assert effects["a"].fragment_status == "fragment"
        assert effects["b"].fragment_status == "mixed"

    def test_stratified_by_fragment_status(self, meta_config):
        effects = [
            _study_effect("a", 100, 80, 0.5, "fragment"),
            _study_effect("b", 100, 70, 0.5, "fragment"),
            _study_effect("c", 100, 50, 0.5, "colony"),
        ]
        strata = analyze(effects, meta_config).stratified

        assert set(strata) == {"fragment", "colony"}
        assert strata["fragment"].k == 2
        assert strata["colony"].pooled_estimate == pytest.approx(0.5)
