"""Tests for group summaries."""

import math

import numpy as np
import pandas as pd
import pytest

from coralstats.demography.aggregator import aggregate, wald_interval
from coralstats.demography.size_classes import SizeClassifier
from coralstats.errors import InvalidParameter

pytestmark = pytest.mark.unit


@pytest.fixture
def frame():
    return pd.DataFrame({
        "study": ["a"] * 6 + ["b"] * 3 + ["c"],
        "survived": [1, 1, 1, 0, 1, 0, 0, 0, 1, 1],
        "growth_cm2_yr": [10.0, -5.0, 20.0, 0.0, 15.0, 30.0, -40.0, 5.0, 5.0, 12.0],
        "size_cm2": [10, 20, 30, 40, 50, 60, 700, 800, 900, 3000],
        "survey_year": [2010] * 5 + [2012] * 5,
    })


class TestBinary:

    def test_rates_and_counts(self, frame):
        summaries = aggregate(frame, ["study"], "survived")
        by_study = {s.group_key["study"]: s for s in summaries}

        assert by_study["a"].n == 6
        assert by_study["a"].rate == pytest.approx(4 / 6)
        assert by_study["a"].stats["n_events"] == 4
        assert by_study["b"].rate == pytest.approx(1 / 3)

    def test_sorted_by_descending_n(self, frame):
        summaries = aggregate(frame, ["study"], "survived", sort="n")

        assert [s.group_key["study"] for s in summaries] == ["a", "b", "c"]
        assert [s.n for s in summaries] == [6, 3, 1]

    def test_ci_ordering(self, survival_frame):
        """0 <= ci_lower <= rate <= ci_upper <= 1 for every group."""
        for s in aggregate(survival_frame, ["study", "region"], "survived"):
            assert 0.0 <= s.ci_lower <= s.rate <= s.ci_upper <= 1.0

    def test_degenerate_group_collapses(self, frame):
        """A single-row group with rate 1 has a zero-width Wald interval."""
        c = [s for s in aggregate(frame, ["study"], "survived") if s.group_key["study"] == "c"][0]

        assert (c.rate, c.se, c.ci_lower, c.ci_upper) == (1.0, 0.0, 1.0, 1.0)

    def test_wald_interval_clipped(self):
        se, lo, hi = wald_interval(0.95, 10)

        assert se == pytest.approx(math.sqrt(0.95 * 0.05 / 10))
        assert hi == 1.0
        assert lo == pytest.approx(0.95 - 1.96 * se)

    def test_missing_outcome_dropped(self, frame):
        frame.loc[0, "survived"] = np.nan
        a = aggregate(frame, ["study"], "survived")[0]

        assert a.n == 5

    def test_non_binary_outcome_rejected(self, frame):
        frame.loc[0, "survived"] = 2
        with pytest.raises(InvalidParameter, match="0/1"):
            aggregate(frame, ["study"], "survived")

    def test_auxiliary_stats(self, frame):
        a = aggregate(frame, ["study"], "survived")[0]

        assert a.stats["size_min"] == 10
        assert a.stats["size_max"] == 60
        assert (a.stats["year_min"], a.stats["year_max"]) == (2010, 2012)

    def test_to_record(self, frame):
        record = aggregate(frame, ["study"], "survived")[0].to_record()

        assert record["study"] == "a"
        assert record["n"] == 6
        assert "ci_lower" in record and "n_events" in record


class TestContinuous:

    def test_mean_and_quartiles(self, frame):
        a = aggregate(frame, ["study"], "growth_cm2_yr", kind="continuous")[0]
        values = np.array([10.0, -5.0, 20.0, 0.0, 15.0, 30.0])

        assert a.rate == pytest.approx(values.mean())
        assert a.stats["sd"] == pytest.approx(values.std(ddof=1))
        assert a.se == pytest.approx(values.std(ddof=1) / math.sqrt(6))
        assert a.stats["median"] == pytest.approx(12.5)
        assert a.stats["pct_positive"] == pytest.approx(4 / 6 * 100)
        assert a.stats["pct_negative"] == pytest.approx(1 / 6 * 100)

    def test_single_row_has_no_interval(self, frame):
        c = [s for s in aggregate(frame, ["study"], "growth_cm2_yr", kind="continuous")
             if s.group_key["study"] == "c"][0]

        assert c.n == 1
        assert c.se is None and c.ci_lower is None and c.ci_upper is None
        assert c.stats["sd"] is None

    def test_negative_interval_allowed(self, frame):
        b = [s for s in aggregate(frame, ["study"], "growth_cm2_yr", kind="continuous")
             if s.group_key["study"] == "b"][0]

        assert b.rate < 0
        assert b.ci_lower < b.rate < b.ci_upper


class TestSizeClassGrouping:

    def test_key_order_follows_classes(self, frame):
        clf = SizeClassifier([0, 25, 100, 500, 2000, math.inf])
        frame["size_class"] = clf.classify_series(frame["size_cm2"])
        summaries = aggregate(frame, ["size_class"], "survived", sort="key")

        assert [s.group_key["size_class"] for s in summaries] == ["SC1", "SC2", "SC4", "SC5"]

    def test_empty_classes_not_emitted(self, frame):
        clf = SizeClassifier([0, 25, 100, 500, 2000, math.inf])
        frame["size_class"] = clf.classify_series(frame["size_cm2"])
        summaries = aggregate(frame, ["size_class"], "survived", sort="key")

        assert all(s.n > 0 for s in summaries)
        assert sum(s.n for s in summaries) == len(frame)


class TestValidation:

    def test_unknown_column(self, frame):
        with pytest.raises(InvalidParameter, match="Unknown column"):
            aggregate(frame, ["site"], "survived")

    def test_unknown_kind(self, frame):
        with pytest.raises(InvalidParameter, match="kind"):
            aggregate(frame, ["study"], "survived", kind="ordinal")

    def test_empty_frame(self, frame):
        assert aggregate(frame.iloc[0:0], ["study"], "survived") == []
