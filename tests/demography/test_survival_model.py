"""Tests for the logistic size-survival model."""

import numpy as np
import pandas as pd
import pytest

from coralstats.demography.survival_model import fit, fit_logistic, size_at_probability
from coralstats.errors import InsufficientData, ModelFittingFailed

pytestmark = pytest.mark.unit


class TestFitLogistic:

    def test_fit_recovers_positive_slope(self, survival_frame):
        result = fit(survival_frame)

        assert result.outcome == "survived"
        assert result.n == 400
        assert result.coefficients["log_size"]["estimate"] > 0
        assert set(result.coefficients["intercept"]) == {"estimate", "se", "z", "p_value"}

    def test_pseudo_r_squared_in_unit_interval(self, survival_frame):
        result = fit(survival_frame)

        assert 0.0 <= result.pseudo_r_squared <= 1.0
        assert result.pseudo_r_squared == pytest.approx(1 - result.deviance / result.null_deviance)
        assert result.deviance_explained_pct == round(result.pseudo_r_squared * 100, 1)

    def test_prediction_curve(self, survival_frame):
        result = fit(survival_frame, n_points=50)
        curve = result.prediction_curve
        sizes = [pt.size for pt in curve]

        assert len(curve) == 50
        assert sizes == sorted(sizes)
        assert sizes[0] == pytest.approx(result.size_range[0])
        assert sizes[-1] == pytest.approx(result.size_range[1])
        for pt in curve:
            assert 0.0 <= pt.ci_lower <= pt.probability <= pt.ci_upper <= 1.0
        # monotone in size for a positive slope
        probs = [pt.probability for pt in curve]
        assert probs == sorted(probs)

    def test_log_grid(self, survival_frame):
        curve = fit(survival_frame, n_points=10, grid="log").prediction_curve
        ratios = np.diff(np.log([pt.size for pt in curve]))

        assert np.allclose(ratios, ratios[0])

    def test_ten_rows_insufficient(self, survival_frame):
        with pytest.raises(InsufficientData) as exc:
            fit(survival_frame.head(10), min_n=30)
        assert exc.value.details == {"n": 10, "minimum_required": 30}
        assert exc.value.status_code == 400

    def test_non_positive_sizes_excluded(self, survival_frame):
        frame = survival_frame.copy()
        frame.loc[:9, "size_cm2"] = 0.0
        frame.loc[10:14, "size_cm2"] = np.nan

        assert fit(frame).n == 385

    def test_no_variation_fails(self, survival_frame):
        frame = survival_frame.assign(survived=1)
        with pytest.raises(ModelFittingFailed, match="no variation"):
            fit(frame)

    def test_perfect_separation_fails(self):
        sizes = np.linspace(1, 1000, 60)
        frame = pd.DataFrame({"size_cm2": sizes, "survived": (sizes > 500).astype(int)})
        with pytest.raises(ModelFittingFailed) as exc:
            fit(frame)
        assert exc.value.code == "MODEL_FITTING_FAILED"

    def test_other_binary_outcome(self, survival_frame):
        frame = survival_frame.assign(positive_growth=survival_frame["survived"])
        result = fit_logistic(frame, "positive_growth", min_n=50)

        assert result.outcome == "positive_growth"
        assert result.n_events == int(frame["survived"].sum())


def test_size_at_probability(survival_frame):
    result = fit(survival_frame)
    size = size_at_probability(result, 0.7)
    nearest = min(result.prediction_curve, key=lambda pt: abs(pt.probability - 0.7))

    assert size == nearest.size
